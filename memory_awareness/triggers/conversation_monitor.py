"""Tiered conversation monitoring.

Tracks recent messages and their topics, and estimates how likely a new
message is to benefit from memory retrieval. Work is split across the same
instant / fast / intensive tiers used by the PerformanceManager.
"""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..performance import PerformanceManager


logger = logging.getLogger(__name__)

TRIGGER_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"what (did|do) we (decide|choose|do)",
        r"remind me (about|how|what)",
        r"similar to (what|how) we",
        r"like we (discussed|did|decided)",
        r"according to (our|previous)",
        r"remember when we",
        r"last time we",
    )
]

TECH_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\b(react|vue|angular|node|python|java|docker|kubernetes)\b",
        r"\b(api|database|frontend|backend|ui|ux)\b",
        r"\b(authentication|oauth|security|performance)\b",
    )
]

QUESTION_PATTERNS = [
    re.compile(r"^(what|how|why|when|where|which|who)", re.IGNORECASE),
    re.compile(r"\?$"),
    re.compile(r"^(can|could|would|should|do|does|did|is|are|was|were)", re.IGNORECASE),
]

PAST_WORK_PATTERNS = [
    re.compile(r"\b(previous|earlier|before|last time|remember|recall)\b", re.IGNORECASE),
    re.compile(r"\b(we (did|used|chose|decided|implemented))\b", re.IGNORECASE),
    re.compile(r"\b(our (approach|solution|decision|choice))\b", re.IGNORECASE),
]

COMPLEXITY_PATTERN = re.compile(r"\b(implement|architecture|design|strategy|approach)\b", re.IGNORECASE)

TECHNICAL_TERMS = frozenset({
    "react", "vue", "angular", "node", "python", "java", "javascript",
    "api", "database", "frontend", "backend", "authentication", "oauth",
    "docker", "kubernetes", "security", "performance", "architecture",
    "component", "service", "endpoint", "middleware", "framework",
})

CACHE_LIMIT = 100
CACHE_KEEP = 50


@dataclass
class MessageAnalysis:
    """Result of analyze_message()."""

    topics: List[str] = field(default_factory=list)
    semantic_shift: float = 0.0
    trigger_probability: float = 0.0
    processing_tier: str = "none"
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": list(self.topics),
            "semantic_shift": self.semantic_shift,
            "trigger_probability": self.trigger_probability,
            "processing_tier": self.processing_tier,
            "confidence": self.confidence,
        }


def tokenize_message(message: str) -> List[str]:
    return [t for t in re.sub(r"[^\w\s]", " ", message.lower()).split() if len(t) > 2]


def extract_key_phrases(tokens: List[str]) -> List[str]:
    return [t for t in tokens if t in TECHNICAL_TERMS]


def merge_topics(first: List[str], second: List[str]) -> List[str]:
    return list(dict.fromkeys([*first, *second]))


def is_question(message: str) -> bool:
    stripped = message.strip()
    return any(p.search(stripped) for p in QUESTION_PATTERNS)


def references_past_work(message: str) -> bool:
    return any(p.search(message) for p in PAST_WORK_PATTERNS)


def cache_key(message: str) -> str:
    return re.sub(r"[^\w]", "", message.lower())[:50]


class TieredConversationMonitor:
    """Sliding-window conversation analyzer.

    Args:
        config: Dict with optional `contextWindow` and `performance` keys.
        performance_manager: Shared PerformanceManager; a private one is
            created from config["performance"] when omitted.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 performance_manager: Optional[PerformanceManager] = None):
        self.config = config or {}
        self.performance_manager = performance_manager or PerformanceManager(self.config.get("performance"))

        self.conversation_history: List[Dict[str, Any]] = []
        self.current_topics: set = set()
        self.context_window = self.config.get("contextWindow", 10)
        self.semantic_cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

        self.tier_enabled = {"instant": True, "fast": True, "intensive": False}
        self.update_tier_configuration()

    def update_tier_configuration(self) -> None:
        tiers = self.performance_manager.budget.enabled_tiers
        for tier in self.tier_enabled:
            self.tier_enabled[tier] = tier in tiers

    def analyze_message(self, message: str, context: Optional[Dict[str, Any]] = None) -> MessageAnalysis:
        """Analyze a user message and append it to the history."""
        context = context or {}
        analysis = MessageAnalysis()
        try:
            self._run_tiers(message, context, analysis)
        finally:
            self._update_history(message, analysis)
        return analysis

    def _run_tiers(self, message: str, context: Dict[str, Any], analysis: MessageAnalysis) -> None:
        pm = self.performance_manager

        if self.tier_enabled["instant"]:
            handle = pm.start_timing("instant_analysis", "instant")
            try:
                instant = self.instant_analysis(message)
            finally:
                pm.end_timing(handle)
            analysis.topics.extend(instant["topics"])
            analysis.trigger_probability = max(analysis.trigger_probability, instant["trigger_probability"])
            analysis.processing_tier = "instant"

            if instant["confidence"] > 0.8 or not self.tier_enabled["fast"]:
                analysis.confidence = instant["confidence"]
                return

        if self.tier_enabled["fast"] and pm.should_run_hook("fast_analysis", "fast"):
            handle = pm.start_timing("fast_analysis", "fast")
            try:
                fast = self.fast_analysis(message)
            finally:
                pm.end_timing(handle)
            analysis.topics = merge_topics(analysis.topics, fast["topics"])
            analysis.semantic_shift = fast["semantic_shift"]
            analysis.trigger_probability = max(analysis.trigger_probability, fast["trigger_probability"])
            analysis.processing_tier = "fast"
            analysis.confidence = fast["confidence"]

            if fast["confidence"] > 0.7 or not self.tier_enabled["intensive"]:
                return

        if (self.tier_enabled["intensive"]
                and pm.should_run_hook("intensive_analysis", "intensive")
                and analysis.trigger_probability > 0.3):
            handle = pm.start_timing("intensive_analysis", "intensive")
            try:
                intensive = self.intensive_analysis(message, context, analysis)
            finally:
                pm.end_timing(handle)
            analysis.topics = intensive["topics"]
            analysis.semantic_shift = intensive["semantic_shift"]
            analysis.trigger_probability = intensive["trigger_probability"]
            analysis.confidence = intensive["confidence"]
            analysis.processing_tier = "intensive"

    def instant_analysis(self, message: str) -> Dict[str, Any]:
        """Cache lookup, then explicit-request and technology regexes."""
        key = cache_key(message)
        cached = self.semantic_cache.get(key)
        if cached is not None:
            self.semantic_cache.move_to_end(key)
            cached["last_used"] = time.time()
            return {**cached, "confidence": 0.9}

        probability = 0.0
        topics: List[str] = []

        for pattern in TRIGGER_PATTERNS:
            if pattern.search(message):
                probability = 0.8
                topics.append("memory-request")
                break

        for pattern in TECH_PATTERNS:
            found = pattern.search(message)
            if found:
                topics.append(found.group(1).lower())
                probability = max(probability, 0.4)

        result = {
            "topics": list(dict.fromkeys(topics)),
            "trigger_probability": probability,
            "confidence": 0.8 if probability > 0.5 else 0.4,
            "last_used": time.time(),
        }
        self.semantic_cache[key] = result
        self._clean_cache()
        return result

    def fast_analysis(self, message: str) -> Dict[str, Any]:
        """Key-phrase extraction and topic-shift estimation."""
        phrases = extract_key_phrases(tokenize_message(message))
        shift = self.calculate_semantic_shift(phrases)

        probability = 0.0
        if is_question(message):
            probability += 0.3
        if references_past_work(message):
            probability += 0.4
        if len(phrases) > 3:
            probability += 0.2
        if shift > 0.5:
            probability += 0.3

        return {
            "topics": phrases,
            "semantic_shift": shift,
            "trigger_probability": min(probability, 1.0),
            "confidence": 0.7,
        }

    def intensive_analysis(self, message: str, context: Dict[str, Any],
                           prior: MessageAnalysis) -> Dict[str, Any]:
        """Blend history, message complexity and project relevance into the fast result."""
        topics = merge_topics(prior.topics, self.analyze_conversation_context())

        length_weight = min(len(message) / 500, 1.0)
        complexity = len(COMPLEXITY_PATTERN.findall(message)) * 0.1
        shift = min(prior.semantic_shift + length_weight * 0.2 + complexity, 1.0)

        probability = prior.trigger_probability
        if len(self.conversation_history) > 5:
            probability += self.calculate_history_relevance(message) * 0.2
        project = context.get("project_context")
        if project:
            probability += self.calculate_project_relevance(message, project) * 0.3

        return {
            "topics": topics,
            "semantic_shift": shift,
            "trigger_probability": min(probability, 1.0),
            "confidence": 0.9,
        }

    def calculate_semantic_shift(self, phrases: List[str]) -> float:
        """1 - Jaccard(current topics, phrases); updates the current topics."""
        new_topics = set(phrases)
        previous = self.current_topics
        self.current_topics = new_topics

        if not previous:
            return 0.0
        union = previous | new_topics
        if not union:
            return 0.0
        return 1 - len(previous & new_topics) / len(union)

    def analyze_conversation_context(self) -> List[str]:
        counts: Dict[str, int] = {}
        for entry in self.conversation_history[-self.context_window:]:
            for topic in entry["analysis"].topics:
                counts[topic] = counts.get(topic, 0) + 1
        return [topic for topic, count in counts.items() if count > 1]

    def calculate_history_relevance(self, message: str) -> float:
        if not self.conversation_history:
            return 0.0
        message_topics = set(extract_key_phrases(tokenize_message(message)))
        history_topics = {t for entry in self.conversation_history for t in entry["analysis"].topics}
        return len(message_topics & history_topics) / max(len(message_topics), 1)

    def calculate_project_relevance(self, message: str, project: Any) -> float:
        if isinstance(project, dict):
            name, language, frameworks = project.get("name"), project.get("language"), project.get("frameworks", [])
        else:
            name, language, frameworks = project.name, project.language, project.frameworks
        terms = [t.lower() for t in [name, language, *(frameworks or [])] if t]

        tokens = tokenize_message(message)
        relevant = [tok for tok in tokens if any(term in tok or tok in term for term in terms)]
        return len(relevant) / max(len(tokens), 1)

    def _update_history(self, message: str, analysis: MessageAnalysis) -> None:
        self.conversation_history.append({
            "message": message,
            "analysis": analysis,
            "timestamp": time.time(),
        })
        if len(self.conversation_history) > self.context_window * 2:
            del self.conversation_history[:len(self.conversation_history) - self.context_window]

    def _clean_cache(self) -> None:
        if len(self.semantic_cache) > CACHE_LIMIT:
            while len(self.semantic_cache) > CACHE_KEEP:
                self.semantic_cache.popitem(last=False)

    def get_performance_status(self) -> Dict[str, Any]:
        return {
            "tier_config": dict(self.tier_enabled),
            "cache_size": len(self.semantic_cache),
            "history_length": len(self.conversation_history),
            "current_topics": sorted(self.current_topics),
            "performance_report": self.performance_manager.get_performance_report(),
        }

    def update_performance_profile(self, profile_name: str) -> None:
        self.performance_manager.switch_profile(profile_name)
        self.update_tier_configuration()
