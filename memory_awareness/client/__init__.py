"""Memory service client and transports."""

from .memory_client import MemoryClient, filter_by_age, parse_time_window_days, wait_for_background_tasks
from .models import COMPRESSED_CLUSTER, Memory, StorageInfo, normalize_timestamp

__all__ = [
    "COMPRESSED_CLUSTER",
    "Memory",
    "MemoryClient",
    "StorageInfo",
    "filter_by_age",
    "normalize_timestamp",
    "parse_time_window_days",
    "wait_for_background_tasks",
]
