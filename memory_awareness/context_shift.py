"""Detects context changes between turns that warrant a memory refresh."""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


logger = logging.getLogger(__name__)

MEMORY_REQUEST_PHRASES = (
    "remember", "recall", "what did we", "previous", "history",
    "context", "background", "refresh", "load memories",
    "show me what", "bring up", "retrieve",
)

MIN_TOPIC_SHIFT_SCORE = 0.4
MIN_FRAMEWORK_OVERLAP = 0.5
DEPTH_INCREASE_THRESHOLD = 5


@dataclass
class ConversationSnapshot:
    """The state compared across turns."""

    working_directory: str
    timestamp: float  # epoch ms
    user_message: str = ""
    topics: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    conversation_depth: int = 0
    last_memory_refresh: float = 0  # epoch ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConversationSnapshot':
        def get(snake: str, camel: str, default: Any) -> Any:
            value = data.get(snake, data.get(camel))
            return default if value is None else value

        return cls(
            working_directory=get("working_directory", "workingDirectory", ""),
            timestamp=get("timestamp", "timestamp", time.time() * 1000),
            user_message=get("user_message", "userMessage", ""),
            topics=list(get("topics", "topics", [])),
            frameworks=list(get("frameworks", "frameworks", [])),
            conversation_depth=get("conversation_depth", "conversationDepth", 0),
            last_memory_refresh=get("last_memory_refresh", "lastMemoryRefresh", 0),
        )


@dataclass
class Shift:
    type: str
    confidence: float
    description: str


@dataclass
class ShiftDetection:
    should_refresh: bool
    reason: str
    total_score: float = 0.0
    shifts: List[Shift] = field(default_factory=list)
    description: str = ""


@dataclass(frozen=True)
class RefreshStrategy:
    priority: str
    max_memories: int
    include_scores: bool
    message: str


REFRESH_STRATEGIES = {
    "user-request": RefreshStrategy("high", 8, True, "🔍 Refreshing memory context as requested..."),
    "project-change": RefreshStrategy("high", 6, False, "📁 Loading memories for new project context..."),
    "topic-shift": RefreshStrategy("medium", 5, False, "💭 Updating context for topic shift..."),
    "framework-change": RefreshStrategy("medium", 5, False, "⚡ Refreshing context for technology change..."),
    "time-based": RefreshStrategy("low", 3, False, "⏰ Periodic memory context refresh..."),
    "conversation-depth": RefreshStrategy("low", 4, False, "💬 Loading additional context for deep conversation..."),
}
DEFAULT_STRATEGY = RefreshStrategy("low", 3, False, "🧠 Loading relevant memory context...")


def _topic_name(topic: Any) -> str:
    if isinstance(topic, dict):
        return str(topic.get("name", "")).lower()
    return str(topic).lower()


def calculate_overlap(first: Iterable[Any], second: Iterable[Any]) -> float:
    """Jaccard overlap of two collections, case-insensitive. Both empty is 1."""
    a = {_topic_name(t) for t in first}
    b = {_topic_name(t) for t in second}
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def detect_context_shift(current: ConversationSnapshot, previous: Optional[ConversationSnapshot],
                         time_threshold_minutes: int = 30,
                         detect_user_requests: bool = True) -> ShiftDetection:
    """Score how much the context changed since `previous`.

    Refresh is advised when the summed confidence exceeds 0.5 or any single
    shift is above 0.7.
    """
    if previous is None:
        return ShiftDetection(should_refresh=False, reason="no-previous-context",
                              description="No previous context to compare")

    shifts: List[Shift] = []

    if detect_user_requests and current.user_message:
        message = current.user_message.lower()
        if any(phrase in message for phrase in MEMORY_REQUEST_PHRASES):
            shifts.append(Shift("user-request", 0.9, "User explicitly requested memory/context"))

    if current.working_directory != previous.working_directory:
        shifts.append(Shift("project-change", 0.8,
                            f"Project changed: {previous.working_directory} -> {current.working_directory}"))

    if current.topics or previous.topics:
        overlap = calculate_overlap(current.topics, previous.topics)
        if overlap < 1 - MIN_TOPIC_SHIFT_SCORE:
            shifts.append(Shift("topic-shift", 1 - overlap,
                                f"Significant topic change detected (overlap: {overlap * 100:.1f}%)"))

    if current.frameworks or previous.frameworks:
        if calculate_overlap(current.frameworks, previous.frameworks) < MIN_FRAMEWORK_OVERLAP:
            shifts.append(Shift("framework-change", 0.6, "Framework/technology shift detected"))

    elapsed = current.timestamp - (previous.last_memory_refresh or 0)
    if elapsed > time_threshold_minutes * 60 * 1000:
        shifts.append(Shift("time-based", 0.3,
                            f"Long time since last refresh ({round(elapsed / 60000)} minutes)"))

    if current.conversation_depth and previous.conversation_depth:
        increase = current.conversation_depth - previous.conversation_depth
        if increase > DEPTH_INCREASE_THRESHOLD:
            shifts.append(Shift("conversation-depth", 0.4,
                                f"Conversation has deepened significantly ({increase} exchanges)"))

    total = sum(s.confidence for s in shifts)
    primary = max(shifts, key=lambda s: s.confidence) if shifts else None
    return ShiftDetection(
        should_refresh=total > 0.5 or any(s.confidence > 0.7 for s in shifts),
        reason=primary.type if primary else "no-shift",
        total_score=total,
        shifts=shifts,
        description=primary.description if primary else "No significant context shift detected",
    )


def get_refresh_strategy(reason: str) -> RefreshStrategy:
    return REFRESH_STRATEGIES.get(reason, DEFAULT_STRATEGY)


def extract_current_context(conversation_state: Optional[Dict[str, Any]],
                            working_directory: Optional[str] = None) -> ConversationSnapshot:
    """Build a snapshot from the host's conversation state."""
    state = conversation_state or {}

    def get(snake: str, camel: str, default: Any) -> Any:
        value = state.get(snake, state.get(camel))
        return default if value is None else value

    return ConversationSnapshot(
        working_directory=working_directory or os.getcwd(),
        timestamp=time.time() * 1000,
        user_message=get("last_user_message", "lastUserMessage", ""),
        topics=list(get("topics", "topics", [])),
        frameworks=list(get("frameworks", "frameworks", [])),
        conversation_depth=get("exchange_count", "exchangeCount", 0),
        last_memory_refresh=get("last_memory_refresh", "lastMemoryRefresh", 0),
    )
