"""Tests for the tiered conversation monitor."""

from ...performance import PerformanceManager
from ..conversation_monitor import (
    CACHE_KEEP,
    CACHE_LIMIT,
    TieredConversationMonitor,
    is_question,
    references_past_work,
    tokenize_message,
)


class TestHelpers:
    """Tests for message helpers."""

    def test_tokenize_drops_short_tokens(self):
        assert tokenize_message("Is the API up?") == ["the", "api"]

    def test_question(self):
        assert is_question("Which database should we use") is True
        assert is_question("Use the database") is False

    def test_past_work(self):
        assert references_past_work("like the approach we used earlier") is True
        assert references_past_work("write a new parser") is False


class TestTieredConversationMonitor:
    """Tests for message analysis."""

    def test_explicit_request(self):
        monitor = TieredConversationMonitor()
        analysis = monitor.analyze_message("What did we decide about the auth flow?")
        assert "memory-request" in analysis.topics
        assert analysis.trigger_probability >= 0.8

    def test_topic_shift(self):
        monitor = TieredConversationMonitor()
        first = monitor.analyze_message("Working on the react frontend component")
        second = monitor.analyze_message("Moving to kubernetes docker security")

        assert first.semantic_shift == 0.0
        assert second.semantic_shift == 1.0
        assert second.processing_tier == "fast"

    def test_speed_profile_runs_instant_only(self):
        monitor = TieredConversationMonitor({}, PerformanceManager({"defaultProfile": "speed_focused"}))
        analysis = monitor.analyze_message("Working on the react frontend component")
        assert analysis.processing_tier == "instant"
        assert monitor.tier_enabled == {"instant": True, "fast": False, "intensive": False}

    def test_profile_switch_enables_intensive(self):
        monitor = TieredConversationMonitor()
        monitor.update_performance_profile("memory_aware")
        assert monitor.tier_enabled["intensive"] is True

    def test_cache_hit(self):
        monitor = TieredConversationMonitor()
        monitor.instant_analysis("Tell me about the api")
        assert monitor.instant_analysis("tell me about the API!")["confidence"] == 0.9

    def test_cache_is_bounded(self):
        monitor = TieredConversationMonitor()
        for i in range(CACHE_LIMIT + 1):
            monitor.instant_analysis(f"message number {i}")
            assert len(monitor.semantic_cache) <= CACHE_LIMIT
        assert len(monitor.semantic_cache) == CACHE_KEEP
        assert "messagenumber100" in monitor.semantic_cache
        assert "messagenumber0" not in monitor.semantic_cache

    def test_history_is_bounded(self):
        monitor = TieredConversationMonitor({"contextWindow": 2})
        for i in range(6):
            monitor.analyze_message(f"message {i}")
        assert len(monitor.conversation_history) <= 4
        assert monitor.conversation_history[-1]["message"] == "message 5"
