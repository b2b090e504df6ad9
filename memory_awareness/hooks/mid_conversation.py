"""Mid-conversation hook: decides per user message whether to pull memories.

The conversation monitor and the pattern detector share one performance
manager, so both see the same latency budget. Their signals are combined
into a single confidence and compared against the trigger threshold. A
cooldown, measured from the last accepted trigger, prevents back-to-back
retrievals.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..client import MemoryClient
from ..config_loader import HooksConfig, load_config_safe
from ..errors import MemoryHooksError
from ..formatter import format_memories_for_context
from ..overrides import detect_user_overrides, extract_user_message
from ..performance import PerformanceManager
from ..project_detector import detect_project_context
from ..scoring import score_memory_relevance
from ..triggers import AdaptivePatternDetector, MessageAnalysis, PatternResults, TieredConversationMonitor
from ..triggers.conversation_monitor import is_question, references_past_work
from .base import CONNECT_TIMEOUT, MID_CONVERSATION_TIMEOUT, HookContext, call_with_timeout, run_with_timeout
from .session_start import query_memory_service


logger = logging.getLogger(__name__)

PATTERN_WEIGHT = 0.6
CONVERSATION_WEIGHT = 0.4
SEMANTIC_SHIFT_BOOST = 0.2
QUESTION_BOOST = 0.1
PAST_WORK_BOOST = 0.15

MIN_CONVERSATION_PROBABILITY = 0.3
MIN_SEMANTIC_SHIFT = 0.6
SPEED_MODE_LATENCY = 200
SPEED_MODE_CONFIDENCE = 0.8
SPEED_MODE_REDUCTION = 0.8

LATENCY_SMOOTHING = 0.1
TRIGGER_CONTENT_LENGTH = 400
GLOBAL_COOLDOWN_KEY = "*"


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class TriggerDecision:
    """Outcome of analyzing one user message."""

    should_trigger: bool = False
    confidence: float = 0.0
    reasoning: str = ""
    type: str = "analysis"  # analysis, skipped, cooldown, override
    force_remember: bool = False
    force_skip: bool = False
    conversation_analysis: Optional[MessageAnalysis] = None
    pattern_results: Optional[PatternResults] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_trigger": self.should_trigger,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "type": self.type,
            "force_remember": self.force_remember,
            "force_skip": self.force_skip,
            "conversation_analysis": self.conversation_analysis.to_dict() if self.conversation_analysis else None,
            "pattern_results": self.pattern_results.to_dict() if self.pattern_results else None,
            "details": dict(self.details),
        }


class MidConversationHook:
    """Natural memory triggers for an ongoing conversation.

    Args:
        config: Full hooks configuration.
        client_factory: Callable building a memory client from the
            `memoryService` section.
    """

    def __init__(self, config: Optional[HooksConfig] = None, client_factory=MemoryClient):
        self.config = config or HooksConfig()
        self.client_factory = client_factory

        triggers = self.config.natural_triggers
        self.performance_manager = PerformanceManager({
            "defaultProfile": self.config.performance.default_profile,
            "profiles": self.config.performance.profiles,
        })
        self.conversation_monitor = TieredConversationMonitor({
            "contextWindow": self.config.conversation_monitor.context_window,
        }, self.performance_manager)
        self.pattern_detector = AdaptivePatternDetector({
            "sensitivity": self.config.pattern_detector.sensitivity,
            "adaptiveLearning": self.config.pattern_detector.adaptive_learning,
        }, self.performance_manager)

        self.is_enabled = triggers.enabled
        self.cooldown_period = triggers.cooldown_period
        self.trigger_threshold = triggers.trigger_threshold
        self.per_project_cooldown = triggers.per_project_cooldown
        self.last_trigger_times: Dict[str, float] = {}

        self.analytics = {
            "total_analyses": 0,
            "triggers_executed": 0,
            "user_acceptance_rate": 0.0,
            "average_latency": 0.0,
            "total_feedback": 0,
        }
        self._lock = threading.Lock()

    @property
    def last_trigger_time(self) -> Optional[float]:
        """Most recent accepted trigger across all projects (monotonic ms)."""
        return max(self.last_trigger_times.values(), default=None)

    def _cooldown_key(self, context: Dict[str, Any]) -> str:
        if not self.per_project_cooldown:
            return GLOBAL_COOLDOWN_KEY
        return str(context.get("working_directory") or context.get("project_name") or GLOBAL_COOLDOWN_KEY)

    def in_cooldown(self, context: Optional[Dict[str, Any]] = None) -> bool:
        last = self.last_trigger_times.get(self._cooldown_key(context or {}))
        return last is not None and _now_ms() - last < self.cooldown_period

    def analyze_message(self, user_message: str,
                        context: Optional[Dict[str, Any]] = None) -> Optional[TriggerDecision]:
        """Decide whether `user_message` should trigger a memory retrieval.

        Returns:
            TriggerDecision, or None when natural triggers are disabled.
        """
        if not self.is_enabled:
            return None

        context = context or {}
        overrides = detect_user_overrides(user_message)
        if overrides["force_skip"]:
            return TriggerDecision(reasoning="User override #skip", type="skipped", force_skip=True)

        key = self._cooldown_key(context)
        if overrides["force_remember"]:
            with self._lock:
                self.last_trigger_times.pop(key, None)
            return TriggerDecision(should_trigger=True, confidence=1.0, type="override",
                                   reasoning="User override #remember", force_remember=True)

        handle = self.performance_manager.start_timing("mid_conversation_analysis", "fast")
        try:
            with self._lock:
                self.analytics["total_analyses"] += 1
                if self.in_cooldown(context):
                    return TriggerDecision(reasoning="In cooldown period", type="cooldown")

            conversation = self.conversation_monitor.analyze_message(user_message, context)
            patterns = self.pattern_detector.detect_patterns(user_message, {
                **context,
                "conversation_analysis": conversation.to_dict(),
            })
            decision = self.make_trigger_decision(patterns, conversation, user_message, context)

            if decision.should_trigger:
                with self._lock:
                    # Another analysis may have claimed the window meanwhile.
                    if self.in_cooldown(context):
                        return TriggerDecision(reasoning="In cooldown period", type="cooldown")
                    self.last_trigger_times[key] = _now_ms()
            return decision
        finally:
            timing = self.performance_manager.end_timing(handle)
            with self._lock:
                avg = self.analytics["average_latency"]
                self.analytics["average_latency"] = (
                    timing["latency"] if avg == 0
                    else avg * (1 - LATENCY_SMOOTHING) + timing["latency"] * LATENCY_SMOOTHING
                )

    def make_trigger_decision(self, patterns: PatternResults, conversation: MessageAnalysis,
                              user_message: str = "",
                              context: Optional[Dict[str, Any]] = None) -> TriggerDecision:
        """Combine pattern and conversation signals into one decision."""
        context = context or {}
        confidence = 0.0
        reasons: List[str] = []

        if patterns.trigger_recommendation:
            confidence += patterns.confidence * PATTERN_WEIGHT
            reasons.append(f"Pattern match ({patterns.confidence:.2f})")

        if conversation.trigger_probability > MIN_CONVERSATION_PROBABILITY:
            confidence += conversation.trigger_probability * CONVERSATION_WEIGHT
            reasons.append(f"Conversation analysis ({conversation.trigger_probability:.2f})")

        if conversation.semantic_shift > MIN_SEMANTIC_SHIFT:
            confidence += SEMANTIC_SHIFT_BOOST
            reasons.append(f"Topic shift ({conversation.semantic_shift:.2f})")

        question = context.get("is_question")
        if question is None:
            question = is_question(user_message)
        if question:
            confidence += QUESTION_BOOST
            reasons.append("Question detected")

        past_work = context.get("mentions_past_work")
        if past_work is None:
            past_work = references_past_work(user_message)
        if past_work:
            confidence += PAST_WORK_BOOST
            reasons.append("References past work")

        budget = self.performance_manager.budget
        if budget.max_latency < SPEED_MODE_LATENCY and confidence < SPEED_MODE_CONFIDENCE:
            confidence *= SPEED_MODE_REDUCTION
            reasons.append("Speed mode adjustment")

        confidence = min(confidence, 1.0)
        return TriggerDecision(
            should_trigger=confidence >= self.trigger_threshold,
            confidence=confidence,
            reasoning="; ".join(reasons) or "No trigger signals",
            conversation_analysis=conversation,
            pattern_results=patterns,
            details={
                "threshold": self.trigger_threshold,
                "profile": self.performance_manager.active_profile,
                "processing_tier": patterns.processing_tier,
            },
        )

    def execute_memory_trigger(self, decision: TriggerDecision, context: HookContext) -> Dict[str, Any]:
        """Retrieve, score and inject memories for an accepted trigger."""
        limit = self.config.natural_triggers.max_memories_per_trigger
        project = detect_project_context(context.working_directory)

        topics = decision.conversation_analysis.topics if decision.conversation_analysis else []
        if topics:
            query = f"{' '.join(topics[:5])} {project.name}"
        else:
            query = f"{project.name} project context decisions"

        explicit = decision.pattern_results is not None and any(
            m.category == "explicitMemoryRequests" for m in decision.pattern_results.matches)
        time_filter = "last-week" if explicit else "last-month"

        client = self.client_factory(self.config.memory_service)
        try:
            try:
                call_with_timeout(client.connect, CONNECT_TIMEOUT)
            except MemoryHooksError as e:
                logger.warning("[Memory Hook] Memory service unavailable: %s", e)
                return {"success": False, "error": str(e), "memories_found": 0, "memories_used": 0}

            memories = query_memory_service(client, self.config, query, limit, time_filter)
        finally:
            client.disconnect()

        with self._lock:
            self.analytics["triggers_executed"] += 1

        if not memories:
            return {"success": True, "context_message": None, "memories_found": 0, "memories_used": 0}

        scoring = self.config.memory_scoring
        scored = [m for m in score_memory_relevance(memories, project, scoring.weights, scoring.time_decay_rate)
                  if (m.relevance_score or 0.0) > 0][:limit]
        if not scored:
            return {"success": True, "context_message": None,
                    "memories_found": len(memories), "memories_used": 0}

        message = format_memories_for_context(
            scored,
            project=project,
            max_memories=limit,
            include_score=self.config.output.show_scoring_details,
            group_by_category=False,
            max_content_length=TRIGGER_CONTENT_LENGTH,
            include_project_summary=False,
        )
        context.inject(message)
        logger.info("[Memory Hook] Natural trigger injected %d memories (%s)", len(scored), decision.reasoning)
        return {"success": True, "context_message": message,
                "memories_found": len(memories), "memories_used": len(scored)}

    def record_user_feedback(self, decision: TriggerDecision, was_helpful: bool,
                             context: Optional[Dict[str, Any]] = None) -> None:
        """Feed helpfulness back into acceptance stats, patterns and the latency budget."""
        with self._lock:
            total = self.analytics["total_feedback"]
            rate = self.analytics["user_acceptance_rate"]
            self.analytics["user_acceptance_rate"] = (rate * total + (1 if was_helpful else 0)) / (total + 1)
            self.analytics["total_feedback"] = total + 1

        if decision.pattern_results is not None:
            self.pattern_detector.record_user_feedback(was_helpful, decision.pattern_results, context)
        self.performance_manager.record_user_feedback(was_helpful, {
            **(context or {}),
            "latency": self.analytics["average_latency"],
        })

    def update_performance_profile(self, profile_name: str) -> None:
        self.performance_manager.switch_profile(profile_name)
        self.conversation_monitor.update_tier_configuration()

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        logger.info("[Memory Hook] Natural triggers %s", "enabled" if enabled else "disabled")

    def get_status(self) -> Dict[str, Any]:
        last = self.last_trigger_time
        elapsed = None if last is None else _now_ms() - last
        with self._lock:
            return {
                "enabled": self.is_enabled,
                "last_trigger_ms_ago": elapsed,
                "cooldown_remaining": 0.0 if elapsed is None else max(0.0, self.cooldown_period - elapsed),
                "analytics": dict(self.analytics),
                "performance": self.performance_manager.get_performance_report(),
                "conversation_monitor": self.conversation_monitor.get_performance_status(),
                "pattern_detector": self.pattern_detector.get_statistics(),
            }

    def cleanup(self) -> None:
        self.conversation_monitor.conversation_history.clear()
        self.conversation_monitor.semantic_cache.clear()
        self.last_trigger_times.clear()


_instance: Optional[MidConversationHook] = None
_instance_lock = threading.Lock()


def get_hook_instance(config: Optional[HooksConfig] = None) -> MidConversationHook:
    """Process-wide hook; the config is only used on first creation."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = MidConversationHook(config or load_config_safe())
        return _instance


def reset_hook_instance() -> None:
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.cleanup()
        _instance = None


def on_mid_conversation(context: HookContext, config: Optional[HooksConfig] = None) -> Optional[Dict[str, Any]]:
    """Host entry point. Never raises and never exceeds the mid-conversation budget."""
    hook = get_hook_instance(config)
    user_message = extract_user_message(context)
    if not user_message:
        return None

    def run() -> Optional[Dict[str, Any]]:
        decision = hook.analyze_message(user_message, {
            "working_directory": context.working_directory,
            "session_id": context.session_id,
        })
        if decision is None:
            return None
        result = {"decision": decision.to_dict(), "trigger": None}
        if decision.should_trigger:
            result["trigger"] = hook.execute_memory_trigger(decision, context)
        return result

    handle = hook.performance_manager.start_timing("mid_conversation", "intensive")
    try:
        completed, result = run_with_timeout(run, MID_CONVERSATION_TIMEOUT, "mid-conversation")
    except Exception as e:
        logger.error("[Memory Hook] Mid-conversation analysis failed: %s", e)
        return None
    if not completed:
        # Counts as a degradation sample for the active profile.
        hook.performance_manager.end_timing(handle)
        return None
    return result
