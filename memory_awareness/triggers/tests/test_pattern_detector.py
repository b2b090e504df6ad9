"""Tests for the adaptive pattern detector."""

import pytest

from ...errors import ConfigError
from ...performance import PerformanceManager
from ..pattern_detector import AdaptivePatternDetector, check_context_match, check_semantic_match


class TestInstantTier:
    """Tests for explicit memory requests."""

    def test_explicit_request_short_circuits(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("What did we decide about the database schema?")

        assert results.processing_tier == "instant"
        assert results.confidence >= 0.9
        assert results.trigger_recommendation is True
        assert results.matches[0].category == "explicitMemoryRequests"

    def test_explicit_request_counts_in_statistics(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("What did we decide about the database schema?")

        stats = detector.get_statistics()
        assert stats["total_matches"] == 1
        key = f"explicitMemoryRequests:{results.matches[0].pattern}"
        assert stats["pattern_hit_counts"][key] == 1

    def test_no_match(self):
        results = AdaptivePatternDetector().detect_patterns("hello there")
        assert results.matches == []
        assert results.confidence == 0.0
        assert results.trigger_recommendation is False


class TestFastAndIntensiveTiers:
    """Tests for context boosts and phrase matching."""

    def test_context_match_boosts_confidence(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("Let's continue the database migration",
                                           {"topic": "data layer"})

        by_pattern = {m.pattern: m for m in results.matches}
        assert by_pattern["Data layer discussion"].context_match is True
        assert by_pattern["Data layer discussion"].confidence == pytest.approx(0.7)
        assert by_pattern["Project continuation"].confidence == pytest.approx(0.6)
        assert results.processing_tier == "fast"
        assert results.trigger_recommendation is True

    def test_intensive_runs_for_weak_matches(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("Is there a best practice or recommended approach here")

        intensive = [m for m in results.matches if m.type == "intensive"]
        assert results.processing_tier == "intensive"
        assert intensive[0].category == "complexQuestions"
        assert intensive[0].similarity == pytest.approx(2 / 3)

    def test_speed_profile_limits_to_instant(self):
        manager = PerformanceManager({"defaultProfile": "speed_focused"})
        detector = AdaptivePatternDetector({}, manager)
        results = detector.detect_patterns("Let's continue the database migration")
        assert results.processing_tier == "instant"
        assert results.matches == []

    def test_semantic_match(self):
        assert check_semantic_match("the best practice", ("best practice", "other thing")) == {
            "is_match": True, "similarity": 0.5}
        assert check_semantic_match("anything", ()) == {"is_match": False, "similarity": 0.0}

    def test_context_match_on_keys(self):
        assert check_context_match(("security",), {"security_review": True}) is True
        assert check_context_match(("security",), {}) is False


class TestLearning:
    """Tests for sensitivity and feedback."""

    def test_sensitivity_scales_confidence(self):
        detector = AdaptivePatternDetector({"sensitivity": 0.5})
        results = detector.detect_patterns("remind me about the deploy script")
        assert results.matches[0].confidence == pytest.approx(0.45)

    def test_invalid_sensitivity(self):
        with pytest.raises(ConfigError):
            AdaptivePatternDetector({"sensitivity": 1.5})
        detector = AdaptivePatternDetector()
        with pytest.raises(ConfigError):
            detector.update_sensitivity(-0.1)
        assert detector.sensitivity == 1.0

    def test_feedback_adjusts_category(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("we need to fix it")
        detector.record_user_feedback(True, results)

        assert detector.confidence_adjustments["problemSolving"] == pytest.approx(0.05)
        again = detector.detect_patterns("we need to fix it")
        assert again.matches[0].confidence == pytest.approx(0.45)

    def test_adjustment_is_bounded(self):
        detector = AdaptivePatternDetector()
        results = detector.detect_patterns("we need to fix it")
        for _ in range(10):
            detector.record_user_feedback(False, results)
        assert detector.confidence_adjustments["problemSolving"] == pytest.approx(-0.3)

    def test_learning_disabled(self):
        detector = AdaptivePatternDetector({"adaptiveLearning": False})
        results = detector.detect_patterns("we need to fix it")
        detector.record_user_feedback(True, results)
        assert detector.confidence_adjustments == {}
        assert detector.get_statistics()["learning_enabled"] is False
