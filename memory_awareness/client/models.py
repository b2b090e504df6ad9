"""Data models for memories returned by the memory service.

A Memory is never modified in place. Retrieval stages annotate memories by
creating copies with dataclasses.replace().
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


COMPRESSED_CLUSTER = "compressed_cluster"

# Epoch seconds for 2100-01-01; smaller numeric timestamps are seconds, not ms.
SECONDS_THRESHOLD = 4102444800

_KNOWN_KEYS = {
    "content_hash", "content", "tags", "memory_type", "created_at",
    "created_at_iso", "updated_at", "updated_at_iso", "similarity_score", "metadata",
}


def normalize_timestamp(value: Any) -> Any:
    """Convert epoch seconds to milliseconds; leave millisecond values as-is."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value and value < SECONDS_THRESHOLD:
        return value * 1000
    return value


@dataclass(frozen=True)
class StorageInfo:
    """Storage backend details reported by a health check."""

    backend: str = "unknown"
    type: str = "unknown"
    location: str = ""
    status: str = "unknown"
    total_memories: Optional[int] = None
    database_size_mb: Optional[float] = None
    unique_tags: Optional[int] = None
    embedding_model: Optional[str] = None
    accessible: Optional[bool] = None
    description: str = ""
    icon: str = "💾"

    @classmethod
    def from_health(cls, data: Optional[Dict[str, Any]], env_backend: Optional[str] = None) -> 'StorageInfo':
        """Build from a health response, or from an env-var backend name."""
        storage = (data or {}).get("storage") or {}
        backend = (storage.get("backend") or env_backend or "unknown").lower()

        if backend in ("sqlite", "sqlite_vec", "sqlite-vec"):
            kind, icon, description = "local", "🪶", "SQLite-vec (local)"
        elif backend == "cloudflare":
            kind, icon, description = "cloud", "☁️", "Cloudflare (cloud)"
        elif backend == "hybrid":
            kind, icon, description = "hybrid", "🔀", "Hybrid (local + cloud sync)"
        elif backend == "chromadb":
            kind, icon, description = "local", "📦", "ChromaDB (local)"
        else:
            kind, icon, description = "unknown", "💾", backend

        location = storage.get("database_path") or storage.get("location") or ""
        return cls(
            backend=backend,
            type=kind,
            location=location,
            status=storage.get("status", "unknown"),
            total_memories=storage.get("total_memories"),
            database_size_mb=storage.get("database_size_mb"),
            unique_tags=storage.get("unique_tags"),
            embedding_model=storage.get("embedding_model"),
            accessible=storage.get("accessible"),
            description=description,
            icon=icon,
        )


@dataclass(frozen=True)
class Memory:
    """A memory record plus retrieval annotations."""

    content_hash: str = ""
    content: str = ""
    tags: List[str] = field(default_factory=list)
    memory_type: Optional[str] = None
    created_at: Optional[float] = None  # epoch milliseconds
    created_at_iso: Optional[str] = None
    updated_at: Optional[float] = None  # epoch milliseconds
    similarity_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Annotations added during retrieval and scoring
    git_context_type: Optional[str] = None
    git_context_source: Optional[str] = None
    git_context_weight: Optional[float] = None
    relevance_score: Optional[float] = None
    original_score: Optional[float] = None
    was_boosted: bool = False
    score_breakdown: Optional[Dict[str, float]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], normalize: bool = False) -> 'Memory':
        """Create from a service response dict.

        Args:
            data: Memory dict as returned by the service.
            normalize: Convert second-resolution timestamps to milliseconds.
                Only the transport boundary passes True.
        """
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        if normalize:
            created_at = normalize_timestamp(created_at)
            updated_at = normalize_timestamp(updated_at)
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            created_at = None
        if not isinstance(updated_at, (int, float)) or isinstance(updated_at, bool):
            updated_at = None

        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",") if t.strip()]

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        if extra:
            metadata = {**metadata, "_extra": extra}

        return cls(
            content_hash=str(data.get("content_hash") or data.get("hash") or ""),
            content=str(data.get("content") or ""),
            tags=list(tags),
            memory_type=data.get("memory_type") or data.get("type"),
            created_at=created_at,
            created_at_iso=data.get("created_at_iso"),
            updated_at=updated_at,
            similarity_score=data.get("similarity_score"),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "content_hash": self.content_hash,
            "content": self.content,
            "tags": list(self.tags),
            "memory_type": self.memory_type,
            "created_at": self.created_at,
            "created_at_iso": self.created_at_iso,
            "updated_at": self.updated_at,
            "similarity_score": self.similarity_score,
            "metadata": dict(self.metadata),
        }
        if self.relevance_score is not None:
            result["relevance_score"] = self.relevance_score
        if self.git_context_type:
            result["git_context_type"] = self.git_context_type
            result["git_context_weight"] = self.git_context_weight
        return result

    @property
    def is_cluster(self) -> bool:
        return self.memory_type == COMPRESSED_CLUSTER

    def created_datetime(self) -> Optional[datetime]:
        """Creation time as an aware datetime, preferring the ISO string."""
        if self.created_at_iso:
            try:
                parsed = datetime.fromisoformat(self.created_at_iso.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
            except ValueError:
                pass
        if self.created_at:
            try:
                return datetime.fromtimestamp(self.created_at / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
        return None

    def age_days(self, now: Optional[datetime] = None) -> Optional[float]:
        created = self.created_datetime()
        if created is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - created).total_seconds() / 86400

    def with_git_context(self, context_type: str, source: str, weight: float) -> 'Memory':
        return replace(self, git_context_type=context_type, git_context_source=source,
                       git_context_weight=weight)

    def with_score(self, score: float, breakdown: Optional[Dict[str, float]] = None) -> 'Memory':
        return replace(self, relevance_score=score, score_breakdown=breakdown)
