"""Topic-change hook: load memories for new topics as a conversation evolves.

Each update analyzes the conversation so far, compares it with the previous
analysis and, on a significant shift, queries the memory service for the
new topics, intent and entities. Memories already injected this session are
never injected again. Updates are rate limited by a cooldown and a
per-session cap.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..client import Memory, MemoryClient
from ..config_loader import HooksConfig, load_config_safe
from ..errors import MemoryHooksError
from ..overrides import detect_user_overrides, message_text
from ..project_detector import ProjectContext, detect_project_context
from ..scoring import score_memory_relevance
from ..session_tracker import get_session_tracker
from ..topic_analysis import (
    ConversationAnalysis,
    TopicChanges,
    analyze_conversation_text,
    calculate_conversation_relevance,
    detect_topic_changes,
)
from .base import CONNECT_TIMEOUT, MID_CONVERSATION_TIMEOUT, HookContext, call_with_timeout, run_with_timeout
from .session_start import query_memory_service


logger = logging.getLogger(__name__)

TOPIC_QUERY_CONFIDENCE = 0.4
INTENT_QUERY_CONFIDENCE = 0.5
ENTITY_QUERY_CONFIDENCE = 0.7
MAX_ENTITY_QUERIES = 2
MAX_QUERIES = 4
MIN_RELEVANCE = 0.3
CONVERSATION_WEIGHT = 0.35

UPDATE_CONTENT_LENGTH = 100
MAX_DISPLAY_TAGS = 3
MAX_RECENT_SESSIONS = 2
RECENT_SESSION_DAYS = 3


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class TopicQuery:
    query: str
    type: str  # topic, intent, entity
    weight: float
    limit: int


def conversation_text(context: HookContext) -> str:
    """Conversation messages joined into one text, ending with the current user message."""
    messages = context.conversation_state.get("messages") or []
    parts = [message_text(m) if isinstance(m, dict) else str(m) for m in messages]
    if context.user_message and (not parts or parts[-1] != context.user_message):
        parts.append(context.user_message)
    return "\n".join(p for p in parts if p)


def _time_ago(timestamp: Optional[str]) -> str:
    if not timestamp:
        return "recently"
    try:
        when = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    except ValueError:
        return "recently"
    delta = datetime.now(when.tzinfo) - when
    minutes = int(delta.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes} minutes ago"
    if minutes < 24 * 60:
        return f"{minutes // 60} hours ago"
    if delta.days < 7:
        return f"{delta.days} days ago"
    return when.date().isoformat()


class DynamicContextUpdater:
    """Per-session state for topic-driven context updates.

    Args:
        config: Full hooks configuration; the `topicChange` section holds
            the threshold, cooldown and caps.
        client_factory: Callable building a memory client from the
            `memoryService` section.
    """

    def __init__(self, config: Optional[HooksConfig] = None, client_factory=MemoryClient):
        self.config = config or HooksConfig()
        self.client_factory = client_factory
        self.options = self.config.topic_change

        self.last_update_time: Optional[float] = None
        self.update_count = 0
        self.last_analysis: Optional[ConversationAnalysis] = None
        self.loaded_memory_hashes: Set[str] = set()
        self.project: Optional[ProjectContext] = None
        self._lock = threading.Lock()

    def initialize(self, project: Optional[ProjectContext] = None) -> None:
        """Start tracking a new session."""
        self.reset()
        self.project = project

    def should_process_update(self) -> bool:
        """False while in cooldown or once the session cap is reached."""
        if self.update_count >= self.options.max_updates_per_session:
            return False
        if self.last_update_time is None:
            return True
        return _now_ms() - self.last_update_time >= self.options.cooldown_period

    def generate_memory_queries(self, analysis: ConversationAnalysis, changes: TopicChanges) -> List[TopicQuery]:
        queries = [TopicQuery(t.name, "topic", t.confidence, 2)
                   for t in changes.new_topics if t.confidence > TOPIC_QUERY_CONFIDENCE]

        if changes.changed_intent and analysis.intent and analysis.intent.confidence > INTENT_QUERY_CONFIDENCE:
            project_name = self.project.name if self.project else ""
            queries.append(TopicQuery(f"{analysis.intent.name} {project_name}".strip(), "intent",
                                      analysis.intent.confidence, 1))

        entities = [e for e in analysis.entities if e.confidence > ENTITY_QUERY_CONFIDENCE]
        for entity in entities[:MAX_ENTITY_QUERIES]:
            queries.append(TopicQuery(f"{entity.name} {entity.type}", "entity", entity.confidence, 1))

        queries.sort(key=lambda q: q.weight, reverse=True)
        return queries[:MAX_QUERIES]

    def retrieve_memories(self, client: Optional[MemoryClient], queries: List[TopicQuery]) -> List[Memory]:
        """Run each query, skipping memories already injected or already found."""
        found: List[Memory] = []
        seen = set(self.loaded_memory_hashes)
        for q in queries:
            for memory in query_memory_service(client, self.config, q.query, q.limit):
                if memory.content_hash and memory.content_hash in seen:
                    continue
                seen.add(memory.content_hash)
                found.append(memory)
        return found

    def score_memories(self, memories: List[Memory], analysis: ConversationAnalysis) -> List[Memory]:
        """Blend project relevance with how well each memory matches the conversation."""
        scoring = self.config.memory_scoring
        project = self.project or ProjectContext(name="unknown", directory="")
        blended = []
        for memory in score_memory_relevance(memories, project, scoring.weights, scoring.time_decay_rate):
            conversation = calculate_conversation_relevance(memory, analysis)
            score = (memory.relevance_score or 0.0) * (1 - CONVERSATION_WEIGHT) + conversation * CONVERSATION_WEIGHT
            breakdown = dict(memory.score_breakdown or {}, conversationRelevance=conversation)
            blended.append(memory.with_score(min(score, 1.0), breakdown))
        blended.sort(key=lambda m: m.relevance_score, reverse=True)
        return blended

    def _cross_session_context(self) -> Optional[Dict[str, Any]]:
        if not self.options.cross_session_context or self.project is None:
            return None
        return get_session_tracker().get_conversation_context(
            self.project.name, max_previous=MAX_RECENT_SESSIONS, max_days_back=RECENT_SESSION_DAYS)

    def format_context_update(self, memories: List[Memory], analysis: ConversationAnalysis,
                              changes: TopicChanges,
                              cross_session: Optional[Dict[str, Any]] = None) -> str:
        lines = ["", "🧠 **Dynamic Context Update**", ""]
        if changes.new_topics:
            lines.append(f"**New topics detected**: {', '.join(t.name for t in changes.new_topics)}")
        if changes.changed_intent and analysis.intent:
            lines.append(f"**Focus shifted to**: {analysis.intent.name}")
        lines.append("")

        sessions = (cross_session or {}).get("recent_sessions") or []
        if sessions:
            lines.append("**Recent session context**:")
            for session in sessions[:MAX_RECENT_SESSIONS]:
                outcome = (session.get("outcome") or {}).get("type") or "Session"
                lines.append(f"• {outcome} completed {_time_ago(session.get('end_time'))}")
            lines.append("")

        lines.append("**Relevant context**:")
        for memory in memories[:self.options.max_memories_per_update]:
            content = memory.content
            if len(content) > UPDATE_CONTENT_LENGTH:
                content = content[:UPDATE_CONTENT_LENGTH] + "..."
            score = memory.relevance_score or 0.0
            marker = "🔥" if score > 0.7 else "⭐" if score > 0.5 else "💡"
            lines.append(f"{marker} {content}")
            if memory.tags:
                lines.append(f"   *{', '.join(memory.tags[:MAX_DISPLAY_TAGS])}*")
            lines.append("")
        lines.append("---")
        return "\n".join(lines) + "\n"

    def process_conversation_update(self, text: str, context: HookContext) -> Dict[str, Any]:
        """Analyze `text` and inject a context update when the topic shifted.

        Returns:
            Dict with `processed` and, when nothing was injected, a `reason`.
        """
        if not self.should_process_update():
            return {"processed": False, "reason": "rate_limited"}

        analysis = analyze_conversation_text(text)
        changes = detect_topic_changes(self.last_analysis, analysis)
        self.last_analysis = analysis

        if not changes.has_topic_shift or changes.significance_score < self.options.update_threshold:
            logger.info("[Topic Change] No significant change (score: %.2f)", changes.significance_score)
            return {"processed": False, "reason": "insufficient_change",
                    "significance_score": changes.significance_score}

        logger.info("[Topic Change] Shift detected (score: %.2f), new topics: %s",
                    changes.significance_score, ", ".join(t.name for t in changes.new_topics) or "none")

        queries = self.generate_memory_queries(analysis, changes)
        if not queries:
            return {"processed": False, "reason": "no_actionable_queries"}

        if self.project is None:
            self.project = detect_project_context(context.working_directory)

        client = self.client_factory(self.config.memory_service)
        try:
            try:
                call_with_timeout(client.connect, CONNECT_TIMEOUT)
            except MemoryHooksError as e:
                logger.warning("[Topic Change] Memory service unavailable: %s", e)
                return {"processed": False, "reason": "service_unavailable", "error": str(e)}
            memories = self.retrieve_memories(client, queries)
        finally:
            client.disconnect()

        if not memories:
            return {"processed": False, "reason": "no_relevant_memories"}

        selected = [m for m in self.score_memories(memories, analysis)
                    if (m.relevance_score or 0.0) > MIN_RELEVANCE][:self.options.max_memories_per_update]
        if not selected:
            return {"processed": False, "reason": "no_high_relevance_memories"}

        cross_session = self._cross_session_context()
        message = self.format_context_update(selected, analysis, changes, cross_session)

        with self._lock:
            # Another update may have landed while this one was querying.
            if not self.should_process_update():
                return {"processed": False, "reason": "rate_limited"}
            self.loaded_memory_hashes.update(m.content_hash for m in selected if m.content_hash)
            self.last_update_time = _now_ms()
            self.update_count += 1

        context.inject(message)
        logger.info("[Topic Change] Update #%d injected %d memories", self.update_count, len(selected))
        return {
            "processed": True,
            "update_count": self.update_count,
            "memories_injected": len(selected),
            "significance_score": changes.significance_score,
            "topics": [t.name for t in changes.new_topics],
            "has_cross_session_context": bool(cross_session),
            "context_message": message,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "update_count": self.update_count,
            "loaded_memories_count": len(self.loaded_memory_hashes),
            "last_update_time": self.last_update_time,
            "has_project": self.project is not None,
            "last_analysis": self.last_analysis.to_dict() if self.last_analysis else None,
        }

    def reset(self) -> None:
        with self._lock:
            self.last_update_time = None
            self.update_count = 0
            self.last_analysis = None
            self.loaded_memory_hashes.clear()
            self.project = None


_updaters: Dict[str, DynamicContextUpdater] = {}
_updaters_lock = threading.Lock()


def get_updater(session_id: Optional[str], config: Optional[HooksConfig] = None) -> DynamicContextUpdater:
    """One updater per session; the config is only used on first creation."""
    key = session_id or "default"
    with _updaters_lock:
        updater = _updaters.get(key)
        if updater is None:
            updater = DynamicContextUpdater(config or load_config_safe())
            _updaters[key] = updater
        return updater


def reset_updaters() -> None:
    with _updaters_lock:
        _updaters.clear()


def on_topic_change(context: HookContext, config: Optional[HooksConfig] = None) -> Optional[Dict[str, Any]]:
    """Host entry point. Never raises and never exceeds the mid-conversation budget."""
    updater = get_updater(context.session_id, config)
    if not updater.options.enabled:
        logger.info("[Topic Change] Disabled, skipping")
        return None

    if detect_user_overrides(context.user_message)["force_skip"]:
        logger.info("[Topic Change] Skipped by user override (#skip)")
        return None

    text = conversation_text(context)
    if not text:
        return None

    try:
        completed, result = run_with_timeout(lambda: updater.process_conversation_update(text, context),
                                             MID_CONVERSATION_TIMEOUT, "topic-change")
    except Exception as e:
        logger.error("[Topic Change] Update failed: %s", e)
        return None
    return result if completed else None
