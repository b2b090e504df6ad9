"""Tests for the performance manager."""

from unittest.mock import patch

import pytest

from ..errors import ConfigError
from ..performance import PerformanceManager


def timed(manager, hook_name, latency, tier="fast"):
    with patch("memory_awareness.performance._now_ms", side_effect=[1000.0, 1000.0 + latency]):
        handle = manager.start_timing(hook_name, tier)
        return manager.end_timing(handle)


class TestProfiles:
    """Tests for profile budgets."""

    def test_default_is_balanced(self):
        manager = PerformanceManager()
        assert manager.active_profile == "balanced"
        assert manager.budget.max_latency == 200
        assert manager.budget.enabled_tiers == ["instant", "fast"]

    def test_speed_focused_disables_fast_tier(self):
        manager = PerformanceManager({"defaultProfile": "speed_focused"})
        assert manager.should_run_hook("analysis", "instant") is True
        assert manager.should_run_hook("analysis", "fast") is False

    def test_configured_profile_always_includes_instant(self):
        manager = PerformanceManager({
            "defaultProfile": "memory_aware",
            "profiles": {"memory_aware": {"maxLatency": 300, "enabledTiers": ["intensive"]}},
        })
        assert manager.budget.enabled_tiers == ["instant", "intensive"]
        assert manager.budget.max_latency == 300

    def test_unknown_default_falls_back(self):
        assert PerformanceManager({"defaultProfile": "turbo"}).active_profile == "balanced"

    def test_switch_profile(self):
        manager = PerformanceManager()
        budget = manager.switch_profile("memory_aware")
        assert manager.active_profile == "memory_aware"
        assert "intensive" in budget.enabled_tiers

    def test_switch_to_unknown_profile_raises(self):
        manager = PerformanceManager()
        with pytest.raises(ConfigError):
            manager.switch_profile("turbo")
        assert manager.active_profile == "balanced"


class TestTiming:
    """Tests for latency tracking."""

    def test_end_timing_reports_latency(self):
        manager = PerformanceManager()
        result = timed(manager, "hook", 120)
        assert result == {"latency": 120.0, "tier": "fast", "within_budget": True, "exceeds_threshold": False}

    def test_degradation_counted(self):
        manager = PerformanceManager()
        result = timed(manager, "hook", 450)
        assert result["exceeds_threshold"] is True
        assert manager.degradation_events == 1

    def test_slow_hook_is_skipped(self):
        manager = PerformanceManager()
        for _ in range(6):
            timed(manager, "slow_hook", 300)
        assert manager.should_run_hook("slow_hook", "fast") is False
        assert manager.should_run_hook("other_hook", "fast") is True

    def test_report(self):
        manager = PerformanceManager()
        timed(manager, "hook", 100)
        report = manager.get_performance_report()
        assert report["total_requests"] == 1
        assert report["hook_performance"]["hook"]["calls"] == 1
        assert report["budget"]["maxLatency"] == 200


class TestFeedback:
    """Tests for adaptive learning from feedback."""

    def test_positive_feedback_on_slow_responses_raises_tolerance(self):
        manager = PerformanceManager()
        for _ in range(3):
            manager.record_user_feedback(True, {"latency": 300})
        assert manager.tolerance_level == pytest.approx(0.8)
        assert manager.calculate_adaptive_tiers() == ["instant", "fast", "intensive"]

    def test_negative_feedback_lowers_tolerance(self):
        manager = PerformanceManager()
        for _ in range(3):
            manager.record_user_feedback(False, {"latency": 150})
        assert manager.calculate_adaptive_tiers() == ["instant"]

    def test_learning_disabled(self):
        manager = PerformanceManager({"learningEnabled": False})
        manager.record_user_feedback(True, {"latency": 300})
        assert manager.feedback_history == []
