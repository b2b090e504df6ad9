"""Performance management for the memory hooks.

Tracks per-operation latency, enforces tier budgets for the active profile and
adapts the adaptive profile to observed latency and user feedback.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigError


logger = logging.getLogger(__name__)

TIERS: Dict[str, Dict[str, Any]] = {
    "instant": {"max_latency": 50, "priority": "critical"},
    "fast": {"max_latency": 150, "priority": "high"},
    "intensive": {"max_latency": 500, "priority": "medium"},
}

PROFILE_NAMES = ("speed_focused", "balanced", "memory_aware", "adaptive")

MAX_TOTAL_SAMPLES = 100
MAX_HOOK_SAMPLES = 50
MAX_FEEDBACK = 50


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class PerformanceBudget:
    """Latency budget of a profile."""

    max_latency: float
    enabled_tiers: List[str]
    background_processing: bool = True
    degrade_threshold: float = 400
    auto_adjust: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceBudget':
        """Build from a camelCase profile dict as found in the config file."""
        return cls(
            max_latency=data.get("maxLatency", 200),
            enabled_tiers=list(data.get("enabledTiers") or ["instant", "fast"]),
            background_processing=data.get("backgroundProcessing", True),
            degrade_threshold=data.get("degradeThreshold", 400),
            auto_adjust=data.get("autoAdjust", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxLatency": self.max_latency,
            "enabledTiers": list(self.enabled_tiers),
            "backgroundProcessing": self.background_processing,
            "degradeThreshold": self.degrade_threshold,
            "autoAdjust": self.auto_adjust,
        }


@dataclass
class TimingHandle:
    """Opaque handle returned by start_timing()."""

    hook_name: str
    tier: str
    start_time: float
    expected_latency: float


@dataclass
class _Sample:
    latency: float
    tier: str
    timestamp: float = field(default_factory=time.time)


class PerformanceManager:
    """Monitors hook latency and decides which analysis tiers may run.

    Args:
        config: The raw `performance` section (camelCase keys), or None.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.total_latency: List[float] = []
        self.hook_latencies: Dict[str, List[_Sample]] = {}
        self.degradation_events = 0
        self.suggestions: List[Dict[str, Any]] = []

        self.tolerance_level = 0.5  # 0 = speed focused, 1 = memory focused
        self.learning_enabled = self.config.get("learningEnabled", True)
        self.feedback_history: List[Dict[str, Any]] = []

        profile = self.config.get("defaultProfile", "balanced")
        self.active_profile = profile if profile in PROFILE_NAMES else "balanced"
        self.budget = self.get_profile_budget(self.active_profile)

    def get_profile_budget(self, profile_name: str) -> PerformanceBudget:
        """Resolve a profile, preferring configured profiles over built-ins."""
        configured = (self.config.get("profiles") or {}).get(profile_name)
        if configured:
            data = dict(configured)
            if profile_name == "adaptive":
                data["maxLatency"] = data.get("maxLatency") or self.calculate_adaptive_latency()
                data["enabledTiers"] = data.get("enabledTiers") or self.calculate_adaptive_tiers()
            return self._ensure_instant(PerformanceBudget.from_dict(data))

        if profile_name == "speed_focused":
            return PerformanceBudget(100, ["instant"], False, 200)
        if profile_name == "memory_aware":
            return PerformanceBudget(500, ["instant", "fast", "intensive"], True, 1000)
        if profile_name == "adaptive":
            return PerformanceBudget(
                self.calculate_adaptive_latency(),
                self.calculate_adaptive_tiers(),
                True,
                800,
                auto_adjust=True,
            )
        return PerformanceBudget(200, ["instant", "fast"], True, 400)

    @staticmethod
    def _ensure_instant(budget: PerformanceBudget) -> PerformanceBudget:
        if "instant" not in budget.enabled_tiers:
            budget.enabled_tiers.insert(0, "instant")
        return budget

    def calculate_adaptive_latency(self) -> float:
        if len(self.total_latency) < 10:
            return 200
        avg = sum(self.total_latency) / len(self.total_latency)
        return min(500.0, max(100.0, avg * (1 + self.tolerance_level)))

    def calculate_adaptive_tiers(self) -> List[str]:
        if self.tolerance_level < 0.3:
            return ["instant"]
        if self.tolerance_level < 0.7:
            return ["instant", "fast"]
        return ["instant", "fast", "intensive"]

    def start_timing(self, hook_name: str, tier: str = "fast") -> TimingHandle:
        expected = TIERS.get(tier, {}).get("max_latency", 150)
        return TimingHandle(hook_name, tier, _now_ms(), expected)

    def end_timing(self, handle: TimingHandle) -> Dict[str, Any]:
        """Record the elapsed time of a timed operation.

        Returns:
            Dict with latency (ms), tier, within_budget and exceeds_threshold.
        """
        latency = _now_ms() - handle.start_time
        self._record_hook_latency(handle.hook_name, latency, handle.tier)
        self._record_total_latency(latency)

        exceeds = latency > self.budget.degrade_threshold
        if exceeds:
            self._handle_degradation(handle.hook_name, latency)

        return {
            "latency": latency,
            "tier": handle.tier,
            "within_budget": latency <= self.budget.max_latency,
            "exceeds_threshold": exceeds,
        }

    def _record_hook_latency(self, hook_name: str, latency: float, tier: str) -> None:
        samples = self.hook_latencies.setdefault(hook_name, [])
        samples.append(_Sample(latency, tier))
        if len(samples) > MAX_HOOK_SAMPLES:
            del samples[:len(samples) - MAX_HOOK_SAMPLES]

    def _record_total_latency(self, latency: float) -> None:
        self.total_latency.append(latency)
        if len(self.total_latency) > MAX_TOTAL_SAMPLES:
            del self.total_latency[:len(self.total_latency) - MAX_TOTAL_SAMPLES]

    def _handle_degradation(self, hook_name: str, latency: float) -> None:
        self.degradation_events += 1
        logger.warning("[Performance] Hook %r exceeded threshold: %.0fms", hook_name, latency)
        if self.budget.auto_adjust:
            self._adapt_to_performance(hook_name)

    def _adapt_to_performance(self, hook_name: str) -> Optional[Dict[str, Any]]:
        recent = self.hook_latencies.get(hook_name, [])[-10:]
        if len(recent) < 5:
            return None
        avg = sum(s.latency for s in recent) / len(recent)
        if avg <= self.budget.max_latency * 1.5:
            return None

        suggestion = {
            "hook_name": hook_name,
            "avg_latency": avg,
            "suggestion": "disable" if avg > 300 else "reduce_tier",
            "timestamp": time.time(),
        }
        self.suggestions.append(suggestion)
        del self.suggestions[:-MAX_HOOK_SAMPLES]
        logger.info("[Performance] Suggestion for %s: %s (avg: %.0fms)",
                    hook_name, suggestion["suggestion"], avg)
        return suggestion

    def should_run_hook(self, hook_name: str, tier: str = "fast") -> bool:
        """Check whether an operation of the given tier may run now."""
        if tier not in self.budget.enabled_tiers:
            return False

        samples = self.hook_latencies.get(hook_name)
        if samples and len(samples) > 5:
            recent = samples[-5:]
            avg = sum(s.latency for s in recent) / len(recent)
            if avg > self.budget.max_latency * 1.2:
                return False
        return True

    def switch_profile(self, profile_name: str) -> PerformanceBudget:
        """Replace the active budget.

        Raises:
            ConfigError: If the profile name is unknown.
        """
        if profile_name not in PROFILE_NAMES:
            raise ConfigError(f"Invalid profile: {profile_name}")

        self.active_profile = profile_name
        self.budget = self.get_profile_budget(profile_name)
        logger.info("[Performance] Switched to profile: %s", profile_name)
        return self.budget

    def record_user_feedback(self, is_positive: bool, context: Optional[Dict[str, Any]] = None) -> None:
        if not self.learning_enabled:
            return

        context = context or {}
        feedback = {
            "positive": is_positive,
            "context": context,
            "latency": context.get("latency", 0),
            "timestamp": time.time(),
        }
        self.feedback_history.append(feedback)
        self._update_tolerance(feedback)

        if len(self.feedback_history) > MAX_FEEDBACK:
            del self.feedback_history[:10]

    def _update_tolerance(self, feedback: Dict[str, Any]) -> None:
        if feedback["positive"] and feedback["latency"] > 200:
            self.tolerance_level = min(1.0, self.tolerance_level + 0.1)
        elif not feedback["positive"] and feedback["latency"] > 100:
            self.tolerance_level = max(0.0, self.tolerance_level - 0.1)

    def get_performance_report(self) -> Dict[str, Any]:
        total = len(self.total_latency)
        avg = sum(self.total_latency) / total if total else 0

        hooks = {}
        for name, samples in self.hook_latencies.items():
            hooks[name] = {
                "avg_latency": round(sum(s.latency for s in samples) / len(samples)),
                "calls": len(samples),
                "tier": samples[-1].tier if samples else "unknown",
            }

        return {
            "profile": self.active_profile,
            "total_requests": total,
            "avg_latency": round(avg),
            "degradation_events": self.degradation_events,
            "user_tolerance": self.tolerance_level,
            "hook_performance": hooks,
            "budget": self.budget.to_dict(),
        }

    def reset_metrics(self) -> None:
        self.total_latency = []
        self.hook_latencies = {}
        self.degradation_events = 0
        self.suggestions = []
