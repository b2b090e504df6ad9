"""Tests for topic-driven dynamic context updates."""

import time
from unittest.mock import MagicMock, patch

import pytest

from ...client.models import Memory
from ...config_loader import HooksConfig
from ...errors import TransportError
from ...project_detector import ProjectContext
from ...topic_analysis import ConversationAnalysis, Entity, Intent, Topic, TopicChanges
from ..base import HookContext
from ..topic_change import (
    DynamicContextUpdater,
    conversation_text,
    get_updater,
    on_topic_change,
    reset_updaters,
)


PROJECT = ProjectContext(name="myapp", directory="/work/myapp", language="Python", tools=["pytest"])

DATABASE_TEXT = "We need to fix the database migration bug in the sqlite schema."
DEVOPS_TEXT = "Now set up docker and kubernetes for the deployment."


def make_memory(content_hash, content, tags=("myapp", "python")):
    return Memory(
        content_hash=content_hash,
        content=content,
        tags=list(tags),
        memory_type="decision",
        created_at=time.time() * 1000,
    )


SQLITE = make_memory("h-sqlite", "Decided to keep the myapp database on sqlite because the schema "
                                 "migration tooling was simpler for the Python services.")
UNRELATED = make_memory("h-css", "Picked a darker palette for the marketing site header.", tags=("design",))


def make_updater(memories=(SQLITE,), cooldown=0, **options):
    config = HooksConfig()
    config.topic_change.cooldown_period = cooldown
    config.topic_change.cross_session_context = False
    for key, value in options.items():
        setattr(config.topic_change, key, value)
    client = MagicMock()
    client.connect.return_value = "http"
    client.query_memories.return_value = list(memories)
    updater = DynamicContextUpdater(config, client_factory=lambda service: client)
    updater.initialize(PROJECT)
    return updater, client


def make_context(**kwargs):
    injected = []
    context = HookContext(working_directory="/work/myapp", inject_system_message=injected.append, **kwargs)
    return context, injected


@pytest.fixture(autouse=True)
def fresh_updaters():
    reset_updaters()
    yield
    reset_updaters()


class TestConversationText:
    """Tests for flattening the host conversation."""

    def test_messages_then_user_message(self):
        context, _ = make_context(
            conversation_state={"messages": [{"role": "user", "content": "first"},
                                             {"role": "assistant", "content": [{"type": "text", "text": "reply"}]}]},
            user_message="second",
        )
        assert conversation_text(context) == "first\nreply\nsecond"

    def test_user_message_already_last(self):
        context, _ = make_context(conversation_state={"messages": [{"role": "user", "content": "same"}]},
                                  user_message="same")
        assert conversation_text(context) == "same"


class TestRateLimiting:
    """Tests for cooldown and the per-session cap."""

    def test_fresh_updater_may_process(self):
        updater, _ = make_updater(cooldown=30000)
        assert updater.should_process_update()

    def test_cooldown(self):
        updater, _ = make_updater(cooldown=30000)
        updater.last_update_time = time.monotonic() * 1000
        assert not updater.should_process_update()
        assert updater.process_conversation_update(DATABASE_TEXT, make_context()[0]) == {
            "processed": False, "reason": "rate_limited"}

    def test_session_cap(self):
        updater, _ = make_updater(max_updates_per_session=2)
        updater.update_count = 2
        assert not updater.should_process_update()


class TestGenerateQueries:
    """Tests for turning changes into memory queries."""

    def test_queries_sorted_by_weight_and_capped(self):
        updater, _ = make_updater()
        analysis = ConversationAnalysis(
            topics=[Topic("database", 1.0), Topic("api", 0.42), Topic("testing", 0.35)],
            entities=[Entity("sqlite", "database"), Entity("docker", "tool"), Entity("redis", "database")],
            intent=Intent("planning", 0.63),
        )
        changes = TopicChanges(has_topic_shift=True, new_topics=analysis.topics, changed_intent=True,
                               significance_score=1.0)
        queries = updater.generate_memory_queries(analysis, changes)

        assert [(q.query, q.type) for q in queries] == [
            ("database", "topic"),
            ("sqlite database", "entity"),
            ("docker tool", "entity"),
            ("planning myapp", "intent"),
        ]
        assert queries[0].limit == 2

    def test_weak_intent_is_not_queried(self):
        updater, _ = make_updater()
        analysis = ConversationAnalysis(intent=Intent("review", 0.5))
        changes = TopicChanges(has_topic_shift=True, changed_intent=True, significance_score=0.4)
        assert updater.generate_memory_queries(analysis, changes) == []


class TestProcessConversationUpdate:
    """Tests for the full update cycle."""

    def test_injects_update_and_tracks_hashes(self):
        updater, client = make_updater()
        context, injected = make_context()

        result = updater.process_conversation_update(DATABASE_TEXT, context)

        assert result["processed"] is True
        assert result["memories_injected"] == 1
        assert set(result["topics"]) == {"database", "debugging"}
        assert updater.loaded_memory_hashes == {"h-sqlite"}
        assert updater.update_count == 1
        assert len(injected) == 1
        assert "Dynamic Context Update" in injected[0]
        assert "**New topics detected**: database, debugging" in injected[0]
        client.disconnect.assert_called_once()

    def test_loaded_memories_are_not_injected_again(self):
        updater, _ = make_updater()
        context, injected = make_context()
        updater.process_conversation_update(DATABASE_TEXT, context)

        result = updater.process_conversation_update(DEVOPS_TEXT, context)

        assert result == {"processed": False, "reason": "no_relevant_memories"}
        assert len(injected) == 1

    def test_same_topics_are_not_a_change(self):
        updater, _ = make_updater()
        context, _ = make_context()
        updater.process_conversation_update(DATABASE_TEXT, context)

        result = updater.process_conversation_update(DATABASE_TEXT, context)
        assert result["reason"] == "insufficient_change"

    def test_low_relevance_memories_are_dropped(self):
        updater, _ = make_updater(memories=[UNRELATED])
        context, injected = make_context()
        result = updater.process_conversation_update(DATABASE_TEXT, context)
        assert result["reason"] == "no_high_relevance_memories"
        assert injected == []
        assert updater.update_count == 0

    def test_service_unavailable(self):
        updater, client = make_updater()
        client.connect.side_effect = TransportError("down")
        result = updater.process_conversation_update(DATABASE_TEXT, make_context()[0])
        assert result["reason"] == "service_unavailable"
        client.query_memories.assert_not_called()
        client.disconnect.assert_called_once()

    def test_reset_clears_state(self):
        updater, _ = make_updater()
        updater.process_conversation_update(DATABASE_TEXT, make_context()[0])
        updater.reset()
        stats = updater.get_stats()
        assert stats["update_count"] == 0
        assert stats["loaded_memories_count"] == 0
        assert stats["last_analysis"] is None


class TestFormatContextUpdate:
    """Tests for the injected message."""

    def test_cross_session_and_markers(self):
        updater, _ = make_updater()
        analysis = ConversationAnalysis(intent=Intent("planning", 0.6))
        changes = TopicChanges(new_topics=[Topic("database", 1.0)], changed_intent=True)
        memory = SQLITE.with_score(0.8)
        cross_session = {"recent_sessions": [{"outcome": {"type": "implementation"}, "end_time": None}]}

        message = updater.format_context_update([memory], analysis, changes, cross_session)

        assert "**Focus shifted to**: planning" in message
        assert "• implementation completed recently" in message
        assert "🔥 " + SQLITE.content[:100] + "..." in message
        assert "*myapp, python*" in message
        assert message.rstrip().endswith("---")


class TestOnTopicChange:
    """Tests for the host entry point."""

    def test_one_updater_per_session(self):
        config = HooksConfig()
        assert get_updater("a", config) is get_updater("a")
        assert get_updater("a", config) is not get_updater("b", config)

    def test_disabled(self):
        config = HooksConfig()
        config.topic_change.enabled = False
        context, _ = make_context(session_id="s1", user_message=DATABASE_TEXT)
        assert on_topic_change(context, config) is None

    def test_skip_override(self):
        context, injected = make_context(session_id="s1", user_message=f"{DATABASE_TEXT} #skip")
        with patch.object(DynamicContextUpdater, "process_conversation_update") as process:
            assert on_topic_change(context, HooksConfig()) is None
        process.assert_not_called()
        assert injected == []

    def test_empty_conversation(self):
        context, _ = make_context(session_id="s1")
        assert on_topic_change(context, HooksConfig()) is None

    def test_errors_never_reach_the_host(self):
        context, _ = make_context(session_id="s1", user_message=DATABASE_TEXT)
        with patch.object(DynamicContextUpdater, "process_conversation_update", side_effect=RuntimeError("boom")):
            assert on_topic_change(context, HooksConfig()) is None
