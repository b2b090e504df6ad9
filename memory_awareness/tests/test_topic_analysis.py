"""Tests for conversation topic, entity and intent analysis."""

import pytest

from ..client.models import Memory
from ..topic_analysis import (
    ConversationAnalysis,
    Intent,
    Topic,
    analyze_conversation_text,
    calculate_conversation_relevance,
    detect_code_context,
    detect_intent,
    detect_topic_changes,
    extract_entities,
    extract_topics,
)


class TestExtraction:
    """Tests for the individual extractors."""

    def test_topics_scale_with_matches(self):
        topics = extract_topics("We need to fix the bug.")
        assert [t.name for t in topics] == ["debugging"]
        assert topics[0].confidence == pytest.approx(0.54)

    def test_topic_confidence_is_capped_and_sorted(self):
        topics = extract_topics("The sqlite schema migration broke the database query. Fix the bug.")
        assert topics[0].name == "database"
        assert topics[0].confidence == 1.0
        assert "debugging" in [t.name for t in topics]

    def test_single_weak_match_is_dropped(self):
        assert extract_topics("deploy") == []

    def test_entities_are_unique_and_lowercased(self):
        entities = extract_entities("Python with Flask and Redis; python again")
        assert [(e.name, e.type) for e in entities] == [
            ("python", "language"), ("flask", "framework"), ("redis", "database")]
        assert all(e.confidence == 0.8 for e in entities)

    def test_strongest_intent_wins(self):
        intent = detect_intent("How do I fix this error? Help me understand it.")
        assert intent.name == "learning"
        assert intent.confidence == pytest.approx(0.63)

    def test_no_intent(self):
        assert detect_intent("hello there") is None

    def test_code_context(self):
        context = detect_code_context("Run it:\n```python\nprint(1)\n```\nthen open app.py")
        assert context.has_code_blocks
        assert context.has_file_paths
        assert context.languages == ["python"]
        assert context.is_code_related

    def test_plain_text_is_not_code_related(self):
        assert not detect_code_context("nothing technical here").is_code_related


class TestAnalyzeConversationText:
    """Tests for the combined analysis."""

    def test_confidence_averages_available_factors(self):
        analysis = analyze_conversation_text("```python\nx = 1\n```")
        assert analysis.topics == []
        assert analysis.intent is None
        assert analysis.confidence == pytest.approx(0.8)

    def test_empty_text(self):
        analysis = analyze_conversation_text("")
        assert analysis.confidence == 0.0
        assert analysis.to_dict()["is_code_related"] is False


class TestDetectTopicChanges:
    """Tests for comparing consecutive analyses."""

    def test_first_analysis_counts_all_topics(self):
        current = ConversationAnalysis(topics=[Topic("database", 1.0), Topic("testing", 0.42)])
        changes = detect_topic_changes(None, current)
        assert [t.name for t in changes.new_topics] == ["database", "testing"]
        assert changes.significance_score == pytest.approx(0.8)
        assert changes.has_topic_shift

    def test_first_analysis_without_topics(self):
        changes = detect_topic_changes(None, ConversationAnalysis())
        assert not changes.has_topic_shift
        assert changes.significance_score == 0.0

    def test_new_topic_is_a_shift(self):
        previous = ConversationAnalysis(topics=[Topic("database", 1.0)], intent=Intent("development", 0.42))
        current = ConversationAnalysis(topics=[Topic("database", 1.0), Topic("testing", 0.42)],
                                       intent=Intent("development", 0.42))
        changes = detect_topic_changes(previous, current)
        assert [t.name for t in changes.new_topics] == ["testing"]
        assert not changes.changed_intent
        assert changes.significance_score == pytest.approx(0.3)
        assert changes.has_topic_shift

    def test_weak_new_topic_is_ignored(self):
        previous = ConversationAnalysis(topics=[Topic("database", 1.0)])
        current = ConversationAnalysis(topics=[Topic("database", 1.0), Topic("api", 0.4)])
        changes = detect_topic_changes(previous, current)
        assert changes.new_topics == []
        assert not changes.has_topic_shift

    def test_intent_change_alone_is_a_shift(self):
        previous = ConversationAnalysis(intent=Intent("learning", 0.6))
        current = ConversationAnalysis(intent=Intent("planning", 0.6))
        changes = detect_topic_changes(previous, current)
        assert changes.changed_intent
        assert changes.significance_score == pytest.approx(0.4)
        assert changes.has_topic_shift

    def test_losing_the_intent_is_not_a_change(self):
        previous = ConversationAnalysis(intent=Intent("learning", 0.6))
        changes = detect_topic_changes(previous, ConversationAnalysis())
        assert not changes.changed_intent
        assert not changes.has_topic_shift


class TestConversationRelevance:
    """Tests for matching memories against the conversation."""

    def test_neutral_without_analysis(self):
        assert calculate_conversation_relevance(Memory(content="anything"), None) == 0.3

    def test_topic_match(self):
        analysis = ConversationAnalysis(topics=[Topic("database", 1.0)])
        memory = Memory(content="Moved the database to sqlite")
        assert calculate_conversation_relevance(memory, analysis) == pytest.approx(0.2)

    def test_unrelated_memory_is_neutral(self):
        analysis = ConversationAnalysis(topics=[Topic("database", 1.0)])
        assert calculate_conversation_relevance(Memory(content="Frontend colors"), analysis) == 0.3
