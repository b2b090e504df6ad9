"""HTTP transport for the memory service REST API."""

import logging
import warnings
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import requests

from ..config_loader import HttpSettings
from .models import Memory


logger = logging.getLogger(__name__)

# Self-signed certificates are the norm for local memory services.
warnings.filterwarnings("ignore", message="Unverified HTTPS request")

DEFAULT_HTTPS_PORT = 8443
DEFAULT_HTTP_PORT = 8889
REQUEST_TIMEOUT = 10  # seconds
QUALITY_TIMEOUT = 10  # seconds


def with_default_port(url: str) -> str:
    """Add the service's default port when the URL names none."""
    parts = urlsplit(url)
    if parts.port is not None or not parts.hostname:
        return url.rstrip("/")
    port = DEFAULT_HTTPS_PORT if parts.scheme == "https" else DEFAULT_HTTP_PORT
    return urlunsplit((parts.scheme, f"{parts.hostname}:{port}", parts.path, "", "")).rstrip("/")


def as_plain_http(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit(("http", parts.netloc, parts.path, parts.query, parts.fragment))


def parse_search_response(data: Any) -> List[Memory]:
    """Convert a `{results: [{memory, similarity_score}]}` body into Memory objects.

    Timestamps are normalized from seconds to milliseconds here, once.
    """
    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        return []
    memories = []
    for result in data["results"]:
        if not isinstance(result, dict) or not isinstance(result.get("memory"), dict):
            continue
        raw = {**result["memory"], "similarity_score": result.get("similarity_score")}
        memories.append(Memory.from_dict(raw, normalize=True))
    return memories


class HttpTransport:
    """Request/response client for the memory service.

    Args:
        settings: HTTP settings (endpoint, API key, health timeout).
    """

    def __init__(self, settings: HttpSettings):
        self.settings = settings
        self.base_url = with_default_port(settings.endpoint)
        self.available: Optional[bool] = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.settings.api_key:
            headers["X-API-Key"] = self.settings.api_key
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _attempt_health_check(self, base_url: str, path: str) -> Dict[str, Any]:
        try:
            response = requests.get(
                f"{base_url}{path}",
                headers=self._headers(),
                timeout=self.settings.health_check_timeout / 1000,
                verify=False,
            )
        except (requests.Timeout, requests.RequestException) as e:
            return {"success": False, "error": str(e), "fallback": True}

        if response.status_code != 200:
            return {"success": False, "error": f"HTTP {response.status_code}", "fallback": True}
        try:
            return {"success": True, "data": response.json()}
        except ValueError:
            return {"success": False, "error": "Invalid JSON response", "fallback": True}

    def check_health(self) -> Dict[str, Any]:
        """GET the health endpoint, retrying HTTPS failures over plain HTTP.

        Returns:
            Dict with `success` and either `data` or `error`.
        """
        path = "/api/health/detailed" if self.settings.use_detailed_health_check else "/api/health"
        if not urlsplit(self.base_url).hostname:
            return {"success": False, "error": f"Invalid endpoint URL: {self.settings.endpoint}"}

        result = self._attempt_health_check(self.base_url, path)
        if not result["success"] and self.base_url.startswith("https://"):
            http_url = as_plain_http(self.base_url)
            logger.debug("[Memory Client] HTTPS health check failed, trying %s", http_url)
            fallback = self._attempt_health_check(http_url, path)
            if fallback["success"]:
                self.base_url = http_url
            result = fallback

        self.available = result["success"]
        return result

    def _post(self, path: str, payload: Dict[str, Any], timeout: float = REQUEST_TIMEOUT) -> Optional[Any]:
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=self._headers(),
                timeout=timeout,
                verify=False,
            )
        except (requests.Timeout, requests.RequestException) as e:
            logger.warning("[Memory Client] HTTP network error on %s: %s", path, e)
            return None

        if response.status_code >= 400:
            logger.warning("[Memory Client] HTTP %s on %s", response.status_code, path)
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning("[Memory Client] HTTP parse error on %s: %s", path, e)
            return None

    def search(self, query: str, limit: int = 10, quality_boost: bool = False,
               quality_weight: Optional[float] = None) -> List[Memory]:
        payload: Dict[str, Any] = {"query": query, "n_results": limit}
        if quality_boost:
            payload["quality_boost"] = True
            if isinstance(quality_weight, (int, float)):
                payload["quality_weight"] = quality_weight
        return parse_search_response(self._post("/api/search", payload))

    def search_by_time(self, time_query: str, limit: int = 10,
                       semantic_query: Optional[str] = None) -> List[Memory]:
        payload: Dict[str, Any] = {"query": time_query, "n_results": limit}
        if semantic_query:
            payload["semantic_query"] = semantic_query
        return parse_search_response(self._post("/api/search/by-time", payload))

    def search_by_tag(self, tags: List[str], limit: int = 10,
                      semantic_query: Optional[str] = None) -> Optional[List[Memory]]:
        """Tag search. Returns None (not []) when the request itself failed."""
        payload: Dict[str, Any] = {"tags": list(tags), "limit": limit}
        if semantic_query:
            payload["query"] = semantic_query
        data = self._post("/api/search/by-tag", payload)
        if data is None:
            return None
        return parse_search_response(data)

    def store_memory(self, content: str, tags: List[str], memory_type: str,
                     metadata: Dict[str, Any]) -> Dict[str, Any]:
        """POST a new memory.

        Returns:
            Dict with `success` and, on success, the service's `content_hash`.
        """
        data = self._post("/api/memories", {
            "content": content,
            "tags": tags,
            "memory_type": memory_type,
            "metadata": metadata,
        })
        if not isinstance(data, dict):
            return {"success": False, "error": "store request failed"}
        if data.get("success") is False:
            return {"success": False, "error": data.get("message", "rejected by service")}
        return {
            "success": True,
            "content_hash": data.get("content_hash") or (data.get("memory") or {}).get("content_hash"),
            "response": data,
        }

    def evaluate_quality(self, content_hash: str) -> bool:
        data = self._post(f"/api/quality/memories/{content_hash}/evaluate", {}, timeout=QUALITY_TIMEOUT)
        return data is not None
