"""Host event entry points: session start, mid-conversation, topic change,
on-demand retrieval and session end."""

from .base import HookContext, call_with_timeout, run_with_timeout
from .memory_retrieval import MemoryRetrievalHook, on_memory_retrieval
from .mid_conversation import (
    MidConversationHook,
    TriggerDecision,
    get_hook_instance,
    on_mid_conversation,
    reset_hook_instance,
)
from .session_end import SessionAnalysis, SessionEndHook, analyze_conversation, on_session_end
from .session_start import SessionStartHook, on_session_start, query_memory_service
from .topic_change import DynamicContextUpdater, get_updater, on_topic_change, reset_updaters

__all__ = [
    "DynamicContextUpdater",
    "HookContext",
    "MemoryRetrievalHook",
    "MidConversationHook",
    "SessionAnalysis",
    "SessionEndHook",
    "SessionStartHook",
    "TriggerDecision",
    "analyze_conversation",
    "call_with_timeout",
    "get_hook_instance",
    "get_updater",
    "on_memory_retrieval",
    "on_mid_conversation",
    "on_session_end",
    "on_session_start",
    "on_topic_change",
    "query_memory_service",
    "reset_hook_instance",
    "reset_updaters",
    "run_with_timeout",
]
