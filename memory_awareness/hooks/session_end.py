"""Session-end hook: distil the conversation into a stored memory."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..client import MemoryClient
from ..config_loader import HooksConfig, load_config_safe
from ..formatter import format_session_consolidation
from ..overrides import detect_user_overrides, extract_user_message, message_text
from ..project_detector import ProjectContext, detect_project_context
from ..session_tracker import get_session_tracker
from .base import SESSION_END_TIMEOUT, HookContext, run_with_timeout


logger = logging.getLogger(__name__)

TOPIC_PATTERNS = {
    "implementation": re.compile(r"implement|implementing|implementation|build|building|create|creating"),
    "debugging": re.compile(r"debug|debugging|bug|error|fix|fixing|issue|problem"),
    "architecture": re.compile(r"architecture|design|structure|pattern|framework|system"),
    "performance": re.compile(r"performance|optimization|speed|memory|efficient|faster"),
    "testing": re.compile(r"test|testing|unit test|integration|coverage|spec"),
    "deployment": re.compile(r"deploy|deployment|production|staging|release"),
    "configuration": re.compile(r"config|configuration|setup|environment|settings"),
    "database": re.compile(r"database|db|sql|query|schema|migration"),
    "api": re.compile(r"api|endpoint|rest|graphql|service|interface"),
    "ui": re.compile(r"ui|interface|frontend|component|styling|css|html"),
}

DECISION_PATTERNS = [
    re.compile(r"decided to|decision to|chose to|choosing|will use|going with"),
    re.compile(r"better to|prefer|recommend|should use|opt for"),
    re.compile(r"concluded that|determined that|agreed to"),
]
INSIGHT_PATTERNS = [
    re.compile(r"learned that|discovered|realized|found out|turns out"),
    re.compile(r"insight|understanding|conclusion|takeaway|lesson"),
    re.compile(r"important to note|key finding|observation"),
]
CODE_CHANGE_PATTERNS = [
    re.compile(r"added|created|implemented|built|wrote"),
    re.compile(r"modified|updated|changed|refactored|improved"),
    re.compile(r"fixed|resolved|corrected|patched"),
]
NEXT_STEP_PATTERNS = [
    re.compile(r"next|todo|need to|should|will|plan to|going to"),
    re.compile(r"follow up|continue|proceed|implement next|work on"),
    re.compile(r"remaining|still need|outstanding|future"),
]

CODE_FILE_PATTERN = re.compile(r"\.(js|py|rs|go|java|cpp|c|ts|jsx|tsx)")
SENTENCE_SPLIT = re.compile(r"[.!?]+")

MAX_DECISIONS = 3
MAX_INSIGHTS = 3
MAX_CODE_CHANGES = 4
MAX_NEXT_STEPS = 4
CONFIDENCE_ITEMS = 10


@dataclass
class SessionAnalysis:
    """What was extracted from a conversation."""

    topics: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    code_changes: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    session_length: int = 0
    confidence: float = 0.0

    @property
    def total_extracted(self) -> int:
        return (len(self.topics) + len(self.decisions) + len(self.insights)
                + len(self.code_changes) + len(self.next_steps))


def _matching_sentences(text: str, patterns: List[re.Pattern], min_length: int) -> List[str]:
    found = []
    lowered = text.lower()
    for pattern in patterns:
        if not pattern.search(lowered):
            continue
        for sentence in SENTENCE_SPLIT.split(text):
            if len(sentence) > min_length and pattern.search(sentence.lower()):
                found.append(sentence.strip())
    return found


def analyze_conversation(messages: List[Dict[str, Any]]) -> SessionAnalysis:
    """Sweep the messages for topics, decisions, insights, code changes and next steps."""
    analysis = SessionAnalysis()
    if not messages:
        return analysis

    texts = [message_text(m) if isinstance(m, dict) else str(m) for m in messages]
    conversation = "\n".join(texts).lower()
    analysis.session_length = len(conversation)

    analysis.topics = [topic for topic, pattern in TOPIC_PATTERNS.items() if pattern.search(conversation)]

    for text in texts:
        analysis.decisions.extend(_matching_sentences(text, DECISION_PATTERNS, 20))
        analysis.insights.extend(_matching_sentences(text, INSIGHT_PATTERNS, 20))
        if "```" in text or CODE_FILE_PATTERN.search(text):
            analysis.code_changes.extend(_matching_sentences(text, CODE_CHANGE_PATTERNS, 15))
        analysis.next_steps.extend(_matching_sentences(text, NEXT_STEP_PATTERNS, 15))

    analysis.confidence = min(1.0, analysis.total_extracted / CONFIDENCE_ITEMS)

    analysis.decisions = analysis.decisions[:MAX_DECISIONS]
    analysis.insights = analysis.insights[:MAX_INSIGHTS]
    analysis.code_changes = analysis.code_changes[:MAX_CODE_CHANGES]
    analysis.next_steps = analysis.next_steps[:MAX_NEXT_STEPS]
    return analysis


def build_session_tags(analysis: SessionAnalysis, project: ProjectContext) -> List[str]:
    tags = [
        "project-assistant-session",
        "session-consolidation",
        project.name,
        f"language:{project.language}",
        *analysis.topics[:3],
        *project.frameworks[:2],
        f"confidence:{round(analysis.confidence * 100)}",
    ]
    return [t for t in tags if t]


class SessionEndHook:
    """Consolidates a finished session into one memory.

    Args:
        config: Full hooks configuration.
        client_factory: Callable building a memory client from the
            `memoryService` section.
    """

    def __init__(self, config: HooksConfig, client_factory=MemoryClient):
        self.config = config
        self.client_factory = client_factory

    def run(self, context: HookContext) -> Optional[Dict[str, Any]]:
        """Analyze and store the session.

        Returns:
            The store result, or None when nothing was stored.
        """
        messages = list(context.conversation_state.get("messages") or [])
        overrides = detect_user_overrides(extract_user_message(context))
        if overrides["force_skip"]:
            logger.info("[Memory Hook] Session consolidation skipped by user override (#skip)")
            return None

        if not self.config.memory_service.enable_session_consolidation:
            logger.info("[Memory Hook] Session consolidation disabled in config")
            return None

        gates = self.config.session_analysis
        force = overrides["force_remember"]
        if force:
            logger.info("[Memory Hook] Force consolidation requested (#remember)")
        else:
            total_length = sum(len(message_text(m)) for m in messages if isinstance(m, dict))
            if total_length < gates.min_session_length:
                logger.info("[Memory Hook] Session too short for consolidation")
                return None

        project = detect_project_context(context.working_directory)
        analysis = analyze_conversation(messages)
        if not force and analysis.confidence < gates.min_confidence:
            logger.info("[Memory Hook] Session analysis confidence too low, skipping consolidation")
            return None

        logger.info("[Memory Hook] Session analysis: %d topics, %d decisions, confidence: %.1f%%",
                    len(analysis.topics), len(analysis.decisions), analysis.confidence * 100)

        result = self.store(analysis, project)
        self._track_outcome(context, analysis)
        return result

    def store(self, analysis: SessionAnalysis, project: ProjectContext) -> Dict[str, Any]:
        content = format_session_consolidation(analysis, project)
        metadata = {
            "session_analysis": {
                "topics": analysis.topics,
                "decisions_count": len(analysis.decisions),
                "insights_count": len(analysis.insights),
                "code_changes_count": len(analysis.code_changes),
                "next_steps_count": len(analysis.next_steps),
                "session_length": analysis.session_length,
                "confidence": analysis.confidence,
            },
            "project_context": {
                "name": project.name,
                "language": project.language,
                "frameworks": project.frameworks,
            },
            "generated_by": "memory-awareness-session-end-hook",
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

        client = self.client_factory(self.config.memory_service)
        result = client.store_memory(content, build_session_tags(analysis, project), "session-summary", metadata)
        if not result.get("success"):
            logger.warning("[Memory Hook] Failed to store session consolidation: %s",
                           result.get("error", "Unknown error"))
            return result

        content_hash = result.get("content_hash")
        logger.info("[Memory Hook] Session consolidation stored successfully")
        if content_hash:
            logger.debug("[Memory Hook] Memory hash: %s...", content_hash[:8])
            client.evaluate_memory_quality(content_hash, background=True)
        return result

    def _track_outcome(self, context: HookContext, analysis: SessionAnalysis) -> None:
        if not context.session_id:
            return
        summary = (analysis.decisions or analysis.next_steps or analysis.topics or [""])[0]
        get_session_tracker().end_session(context.session_id, {
            "type": "partial" if analysis.next_steps else "completed",
            "summary": summary,
            "topics": analysis.topics,
        })


def on_session_end(context: HookContext, config: Optional[HooksConfig] = None) -> Optional[Dict[str, Any]]:
    """Host entry point. Never raises and never exceeds the session-end budget."""
    config = config or load_config_safe()
    hook = SessionEndHook(config)
    try:
        completed, result = run_with_timeout(lambda: hook.run(context), SESSION_END_TIMEOUT, "session-end")
    except Exception as e:
        logger.error("[Memory Hook] Error in session end: %s", e)
        return None
    return result if completed else None
