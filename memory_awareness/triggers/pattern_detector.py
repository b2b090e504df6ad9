"""Adaptive pattern detection for natural memory triggers.

Patterns run in three tiers of increasing cost:

- instant: plain regular expressions (explicit requests, past-work references,
  questions about the project's approach)
- fast: regular expressions that earn a boost when the caller's context
  mentions one of the pattern's topics
- intensive: phrase bags scored by the fraction of phrases present

Each tier is gated by the PerformanceManager, if one is supplied.
"""

import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import ConfigError


logger = logging.getLogger(__name__)

TIER_WEIGHTS = {"instant": 1.0, "fast": 0.8, "intensive": 0.6}

MAX_ADJUSTMENT = 0.3
FEEDBACK_STEP = 0.05
MAX_FEEDBACK = 100


@dataclass(frozen=True)
class RegexPattern:
    pattern: re.Pattern
    confidence: float
    description: str
    context: tuple = ()


@dataclass(frozen=True)
class SemanticPattern:
    phrases: tuple
    confidence: float
    description: str


def _rx(expression: str) -> re.Pattern:
    return re.compile(expression, re.IGNORECASE)


INSTANT_PATTERNS: Dict[str, List[RegexPattern]] = {
    "explicitMemoryRequests": [
        RegexPattern(_rx(r"what (did|do) we (decide|choose|do|discuss) (about|regarding|for|with)"),
                     0.9, "Direct memory request"),
        RegexPattern(_rx(r"remind me (about|how|what|of|regarding)"), 0.9, "Explicit reminder request"),
        RegexPattern(_rx(r"remember (when|how|what|that) we"), 0.8, "Memory recall request"),
        RegexPattern(_rx(r"according to (our|the) (previous|earlier|last)"), 0.8, "Reference to past decisions"),
    ],
    "pastWorkReferences": [
        RegexPattern(_rx(r"similar to (what|how) we (did|used|implemented)"), 0.7, "Comparison to past work"),
        RegexPattern(_rx(r"like (we|the) (discussed|decided|implemented|chose) (before|earlier|previously)"),
                     0.7, "Reference to past implementation"),
        RegexPattern(_rx(r"the (same|approach|solution|pattern) (we|that) (used|implemented|chose)"),
                     0.6, "Reuse of past solutions"),
    ],
    "questionPatterns": [
        RegexPattern(_rx(r"^(how do|how did|how should|how can) we"), 0.5, "Implementation question"),
        RegexPattern(_rx(r"^(what is|what was|what should be) (our|the) (approach|strategy|pattern)"),
                     0.6, "Strategy question"),
        RegexPattern(_rx(r"^(why did|why do|why should) we (choose|use|implement)"), 0.5, "Rationale question"),
    ],
}

FAST_PATTERNS: Dict[str, List[RegexPattern]] = {
    "technicalDiscussions": [
        RegexPattern(_rx(r"\b(architecture|design|pattern|approach|strategy|implementation)\b"),
                     0.4, "Technical architecture discussion", ("technical", "decision")),
        RegexPattern(_rx(r"\b(authentication|authorization|security|oauth|jwt)\b"),
                     0.5, "Security implementation discussion", ("security", "implementation")),
        RegexPattern(_rx(r"\b(database|storage|persistence|schema|migration)\b"),
                     0.5, "Data layer discussion", ("data", "implementation")),
    ],
    "projectContinuity": [
        RegexPattern(_rx(r"\b(continue|continuing|resume|pick up where)\b"),
                     0.6, "Project continuation", ("continuation",)),
        RegexPattern(_rx(r"\b(next step|next phase|moving forward|proceed with)\b"),
                     0.4, "Project progression", ("progression",)),
    ],
    "problemSolving": [
        RegexPattern(_rx(r"\b(issue|problem|bug|error|failure) (with|in|regarding)"),
                     0.6, "Problem solving discussion", ("troubleshooting",)),
        RegexPattern(_rx(r"\b(fix|resolve|solve|debug|troubleshoot)\b"),
                     0.4, "Problem resolution", ("troubleshooting",)),
    ],
}

INTENSIVE_PATTERNS: Dict[str, List[SemanticPattern]] = {
    "contextualReferences": [
        SemanticPattern(("previous discussion", "earlier conversation", "past decision"),
                        0.7, "Contextual reference to past"),
        SemanticPattern(("established pattern", "agreed approach", "standard practice"),
                        0.6, "Reference to established practices"),
    ],
    "complexQuestions": [
        SemanticPattern(("best practice", "recommended approach", "optimal solution"),
                        0.5, "Best practice inquiry"),
    ],
}


@dataclass
class PatternMatch:
    """A single pattern hit."""

    type: str  # instant, fast, intensive
    category: str
    pattern: str
    confidence: float
    context_match: bool = False
    similarity: Optional[float] = None


@dataclass
class PatternResults:
    """Outcome of detect_patterns()."""

    matches: List[PatternMatch] = field(default_factory=list)
    confidence: float = 0.0
    processing_tier: str = "none"
    trigger_recommendation: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [asdict(m) for m in self.matches],
            "confidence": self.confidence,
            "processing_tier": self.processing_tier,
            "trigger_recommendation": self.trigger_recommendation,
        }


def check_semantic_match(message: str, phrases: tuple) -> Dict[str, Any]:
    """Fraction of phrases whose words all occur in the message."""
    if not phrases:
        return {"is_match": False, "similarity": 0.0}
    lowered = message.lower()
    hits = sum(1 for phrase in phrases if all(word in lowered for word in phrase.lower().split()))
    similarity = hits / len(phrases)
    return {"is_match": similarity > 0.3, "similarity": similarity}


def check_context_match(required: tuple, context: Optional[Dict[str, Any]]) -> bool:
    """True if any context key, or string value, mentions a required tag."""
    if not required or not context:
        return False
    for tag in required:
        tag = tag.lower()
        for key, value in context.items():
            if tag in str(key).lower():
                return True
            if isinstance(value, str) and tag in value.lower():
                return True
    return False


class AdaptivePatternDetector:
    """Detects phrasing that suggests the user wants past context.

    Args:
        config: The `patternDetector` section as a dict (sensitivity, adaptiveLearning).
        performance_manager: Optional PerformanceManager used for tier gating.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, performance_manager=None):
        self.config = config or {}
        self.performance_manager = performance_manager
        self.sensitivity = self._validate_sensitivity(self.config.get("sensitivity", 1.0))
        self.learning_enabled = self.config.get("adaptiveLearning", True) is not False

        self.confidence_adjustments: Dict[str, float] = {}
        self.total_matches = 0
        self.pattern_hits: Dict[str, int] = {}
        self.user_feedback: List[Dict[str, Any]] = []

    @staticmethod
    def _validate_sensitivity(value: Any) -> float:
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0 <= value <= 1:
            raise ConfigError(f"Pattern detector sensitivity must be within [0, 1], got {value!r}")
        return float(value)

    def detect_patterns(self, message: str, context: Optional[Dict[str, Any]] = None) -> PatternResults:
        """Run the tiered detection over a user message.

        Args:
            message: The user message.
            context: Optional dict of contextual hints (keys or values naming topics).

        Returns:
            PatternResults with matches, overall confidence and recommendation.
        """
        context = context or {}
        results = PatternResults()

        if self._should_run_tier("instant"):
            instant = self._timed("instant", lambda: self.detect_instant_patterns(message))
            results.matches.extend(instant)
            results.processing_tier = "instant"

            best = max((m.confidence for m in instant), default=0.0)
            if best > 0.8:
                results.confidence = best
                results.trigger_recommendation = True
                self._record_pattern_match(results)
                return results

        if self._should_run_tier("fast"):
            fast = self._timed("fast", lambda: self.detect_fast_patterns(message, context))
            results.matches.extend(fast)
            results.processing_tier = "fast"

        if self._should_run_tier("intensive") and self._should_run_intensive(results.matches):
            intensive = self._timed("intensive", lambda: self.detect_intensive_patterns(message))
            results.matches.extend(intensive)
            results.processing_tier = "intensive"

        results.confidence = self.calculate_overall_confidence(results.matches)
        results.trigger_recommendation = self.should_recommend_trigger(results)
        self._record_pattern_match(results)
        return results

    def _timed(self, tier: str, func):
        if self.performance_manager is None:
            return func()
        handle = self.performance_manager.start_timing(f"pattern_detection_{tier}", tier)
        try:
            return func()
        finally:
            self.performance_manager.end_timing(handle)

    def detect_instant_patterns(self, message: str) -> List[PatternMatch]:
        matches = []
        for category, patterns in INSTANT_PATTERNS.items():
            for definition in patterns:
                if definition.pattern.search(message):
                    matches.append(PatternMatch(
                        type="instant",
                        category=category,
                        pattern=definition.description,
                        confidence=self.adjust_confidence(definition.confidence, category),
                    ))
        return matches

    def detect_fast_patterns(self, message: str, context: Dict[str, Any]) -> List[PatternMatch]:
        matches = []
        for category, patterns in FAST_PATTERNS.items():
            for definition in patterns:
                if definition.pattern.search(message):
                    context_match = check_context_match(definition.context, context)
                    boost = 0.2 if context_match else 0.0
                    matches.append(PatternMatch(
                        type="fast",
                        category=category,
                        pattern=definition.description,
                        confidence=self.adjust_confidence(definition.confidence + boost, category),
                        context_match=context_match,
                    ))
        return matches

    def detect_intensive_patterns(self, message: str) -> List[PatternMatch]:
        matches = []
        for category, patterns in INTENSIVE_PATTERNS.items():
            for definition in patterns:
                semantic = check_semantic_match(message, definition.phrases)
                if semantic["is_match"]:
                    matches.append(PatternMatch(
                        type="intensive",
                        category=category,
                        pattern=definition.description,
                        confidence=self.adjust_confidence(
                            definition.confidence * semantic["similarity"], category),
                        similarity=semantic["similarity"],
                    ))
        return matches

    def adjust_confidence(self, base: float, category: str) -> float:
        """Apply sensitivity and the learned category adjustment, clipped to [0, 1]."""
        adjusted = base * self.sensitivity + self.confidence_adjustments.get(category, 0.0)
        return max(0.0, min(1.0, adjusted))

    @staticmethod
    def calculate_overall_confidence(matches: List[PatternMatch]) -> float:
        if not matches:
            return 0.0
        weighted = 0.0
        total = 0.0
        for match in matches:
            weight = TIER_WEIGHTS.get(match.type, 0.5)
            weighted += match.confidence * weight
            total += weight
        return weighted / total if total else 0.0

    @staticmethod
    def should_recommend_trigger(results: PatternResults) -> bool:
        confidence = results.confidence
        count = len(results.matches)

        if confidence >= 0.8:
            return True
        if confidence >= 0.6 and count >= 2:
            return True
        if any(m.category == "explicitMemoryRequests" and m.confidence >= 0.5 for m in results.matches):
            return True
        return count > 0 and confidence >= 0.4

    @staticmethod
    def _should_run_intensive(matches: List[PatternMatch]) -> bool:
        return bool(matches) and max(m.confidence for m in matches) < 0.7

    def _should_run_tier(self, tier: str) -> bool:
        if self.performance_manager is None:
            return True
        return self.performance_manager.should_run_hook(f"pattern_detection_{tier}", tier)

    def _record_pattern_match(self, results: PatternResults) -> None:
        self.total_matches += 1
        for match in results.matches:
            key = f"{match.category}:{match.pattern}"
            self.pattern_hits[key] = self.pattern_hits.get(key, 0) + 1

    def record_user_feedback(self, is_positive: bool, results: PatternResults,
                             context: Optional[Dict[str, Any]] = None) -> None:
        """Shift category adjustments toward (or away from) the matched categories."""
        if not self.learning_enabled:
            return

        self.user_feedback.append({
            "positive": is_positive,
            "categories": [m.category for m in results.matches],
            "overall_confidence": results.confidence,
            "trigger_recommendation": results.trigger_recommendation,
            "timestamp": time.time(),
            "context": context or {},
        })

        step = FEEDBACK_STEP if is_positive else -FEEDBACK_STEP
        for match in results.matches:
            current = self.confidence_adjustments.get(match.category, 0.0)
            self.confidence_adjustments[match.category] = max(-MAX_ADJUSTMENT, min(MAX_ADJUSTMENT, current + step))

        if len(self.user_feedback) > MAX_FEEDBACK:
            del self.user_feedback[:20]

    def get_statistics(self) -> Dict[str, Any]:
        recent = self.user_feedback[-20:]
        positive_rate = sum(1 for f in recent if f["positive"]) / len(recent) if recent else 0
        return {
            "total_matches": self.total_matches,
            "pattern_hit_counts": dict(self.pattern_hits),
            "positive_rate": round(positive_rate * 100),
            "confidence_adjustments": dict(self.confidence_adjustments),
            "sensitivity": self.sensitivity,
            "learning_enabled": self.learning_enabled,
        }

    def update_sensitivity(self, sensitivity: float) -> None:
        """Set a new sensitivity.

        Raises:
            ConfigError: If the value is outside [0, 1].
        """
        self.sensitivity = self._validate_sensitivity(sensitivity)

    def reset_learning(self) -> None:
        self.confidence_adjustments.clear()
        self.user_feedback = []
        self.pattern_hits.clear()
        self.total_matches = 0
