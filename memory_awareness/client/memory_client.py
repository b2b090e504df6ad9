"""Unified memory client over HTTP and JSON-RPC subprocess transports.

In auto mode the preferred transport is tried first and, when fallback is
enabled, the other one next. Whichever connects first is used for the rest of
the client's lifetime.
"""

import logging
import os
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config_loader import MemoryServiceConfig
from ..errors import TransportError
from .http_transport import HttpTransport
from .models import Memory, StorageInfo
from .rpc_transport import RpcTransport


logger = logging.getLogger(__name__)

TAG_OVERFETCH = 4

_background_tasks: List[threading.Thread] = []
_background_lock = threading.Lock()

_TIME_WINDOWS = [
    (re.compile(r"yesterday"), 1),
    (re.compile(r"last[\s-]week"), 7),
    (re.compile(r"last[\s-]2[\s-]weeks"), 14),
    (re.compile(r"last[\s-]month"), 30),
]


def parse_time_window_days(time_query: str) -> int:
    """Map a natural-language window to a number of days (default 30)."""
    lowered = (time_query or "").lower()
    for pattern, days in _TIME_WINDOWS:
        if pattern.search(lowered):
            return days
    return 30


def wait_for_background_tasks(timeout: float) -> bool:
    """Join pending background requests within one shared time bound.

    Returns:
        True if every task finished in time.
    """
    deadline = time.monotonic() + timeout
    with _background_lock:
        tasks = list(_background_tasks)
    for task in tasks:
        task.join(max(0.0, deadline - time.monotonic()))
    with _background_lock:
        _background_tasks[:] = [t for t in _background_tasks if t.is_alive()]
        return not _background_tasks


def filter_by_age(memories: List[Memory], max_days: float, now: Optional[datetime] = None) -> List[Memory]:
    now = now or datetime.now(timezone.utc)
    kept = []
    for memory in memories:
        age = memory.age_days(now)
        if age is not None and age <= max_days:
            kept.append(memory)
    return kept


class MemoryClient:
    """Memory service client with transport auto-selection.

    Args:
        config: The `memoryService` configuration section.
    """

    def __init__(self, config: MemoryServiceConfig):
        self.config = config
        self.protocol = config.protocol
        self.preferred_protocol = config.preferred_protocol
        self.fallback_enabled = config.fallback_enabled

        self.active_protocol: Optional[str] = None
        self.http_available: Optional[bool] = None
        self.mcp_available: Optional[bool] = None
        self.http: Optional[HttpTransport] = None
        self.rpc: Optional[RpcTransport] = None
        self._lock = threading.Lock()

    def connect(self) -> str:
        """Connect using the configured protocol. Idempotent.

        Returns:
            The active protocol name ("http" or "mcp").

        Raises:
            TransportError: If no transport could be connected.
        """
        with self._lock:
            if self.active_protocol:
                return self.active_protocol

            if self.protocol == "http":
                order = ["http"]
            elif self.protocol == "mcp":
                order = ["mcp"]
            elif self.preferred_protocol == "mcp":
                order = ["mcp", "http"]
            else:
                order = ["http", "mcp"]
            if not self.fallback_enabled:
                order = order[:1]

            errors = []
            for protocol in order:
                try:
                    if protocol == "mcp":
                        self._connect_mcp()
                    else:
                        self._connect_http()
                except TransportError as e:
                    logger.info("[Memory Client] %s connection failed: %s", protocol.upper(), e)
                    errors.append(f"{protocol}: {e}")
                    continue
                self.active_protocol = protocol
                return protocol

            raise TransportError("Failed to connect using any available protocol: " + "; ".join(errors))

    def _connect_mcp(self) -> None:
        settings = self.config.mcp
        try:
            rpc = RpcTransport(
                settings.server_command,
                working_dir=settings.server_working_dir,
                connection_timeout=settings.connection_timeout,
                tool_call_timeout=settings.tool_call_timeout,
            )
            rpc.connect()
        except TransportError:
            self.mcp_available = False
            raise
        self.rpc = rpc
        self.mcp_available = True

    def _connect_http(self) -> None:
        http = HttpTransport(self.config.http)
        result = http.check_health()
        if not result["success"]:
            self.http_available = False
            raise TransportError(f"HTTP connection failed: {result.get('error')}")
        self.http = http
        self.http_available = True

    def _require_connection(self) -> str:
        if not self.active_protocol:
            raise TransportError("No active connection available")
        return self.active_protocol

    def get_health_status(self) -> Dict[str, Any]:
        if self._require_connection() == "mcp":
            return self.rpc.get_health_status()
        return self.http.check_health()

    def get_storage_info(self) -> StorageInfo:
        """Describe the storage backend from a health check, or from the environment."""
        env_backend = os.environ.get("MCP_MEMORY_STORAGE_BACKEND")
        try:
            health = self.get_health_status()
        except TransportError:
            health = {"success": False}
        if health.get("success"):
            return StorageInfo.from_health(health.get("data"), env_backend)
        return StorageInfo.from_health(None, env_backend)

    def query_memories(self, query: str, limit: int = 10, quality_boost: bool = False,
                       quality_weight: Optional[float] = None) -> List[Memory]:
        """Semantic search."""
        if self._require_connection() == "mcp":
            return self.rpc.query_memories(query, limit)
        return self.http.search(query, limit, quality_boost, quality_weight)

    def query_memories_by_time(self, time_query: str, limit: int = 10,
                               semantic_query: Optional[str] = None) -> List[Memory]:
        """Natural-language time search, optionally refined by a semantic query."""
        if self._require_connection() == "mcp":
            return self.rpc.query_memories_by_time(time_query, limit)
        return self.http.search_by_time(time_query, limit, semantic_query)

    def query_memories_by_tag_and_time(self, tags: List[str], time_query: str, limit: int = 10,
                                       semantic_query: Optional[str] = None) -> List[Memory]:
        """Tag filter on the server, time filter on the client."""
        if self._require_connection() == "mcp":
            return self.rpc.query_memories_by_time(time_query, limit)

        tagged = self.http.search_by_tag(tags, limit * TAG_OVERFETCH, semantic_query)
        if tagged is None:
            logger.warning("[Memory Client] Tag search failed, falling back to time-only search")
            return self.http.search_by_time(time_query, limit, semantic_query)

        filtered = filter_by_age(tagged, parse_time_window_days(time_query))
        logger.debug("[Memory Client] Tag-first filter: %d tagged -> %d within %s",
                     len(tagged), len(filtered), time_query)
        return filtered[:limit]

    def store_memory(self, content: str, tags: List[str], memory_type: str,
                     metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Store a memory. Storage always goes through HTTP."""
        http = self.http or HttpTransport(self.config.http)
        return http.store_memory(content, tags, memory_type, metadata or {})

    def evaluate_memory_quality(self, content_hash: str, background: bool = True) -> None:
        """Ask the service to score a stored memory, by default without waiting."""
        http = self.http or HttpTransport(self.config.http)
        if not background:
            http.evaluate_quality(content_hash)
            return
        # Non-daemon so a short-lived host process still sends the request.
        task = threading.Thread(
            target=http.evaluate_quality,
            args=(content_hash,),
            name="memory-quality-eval",
        )
        with _background_lock:
            _background_tasks[:] = [t for t in _background_tasks if t.is_alive()]
            _background_tasks.append(task)
        task.start()

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "active_protocol": self.active_protocol,
            "http_available": self.http_available,
            "mcp_available": self.mcp_available,
            "fallback_enabled": self.fallback_enabled,
            "preferred_protocol": self.preferred_protocol,
        }

    def disconnect(self) -> None:
        if self.rpc is not None:
            try:
                self.rpc.disconnect()
            except OSError as e:
                logger.debug("[Memory Client] Error during disconnect: %s", e)
            self.rpc = None

        self.http = None
        self.active_protocol = None
        self.http_available = None
        self.mcp_available = None
