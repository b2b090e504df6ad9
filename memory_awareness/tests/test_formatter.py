"""Tests for memory context rendering."""

from datetime import datetime, timedelta, timezone

from ..client.models import COMPRESSED_CLUSTER, Memory, StorageInfo
from ..formatter import (
    FOOTER,
    extract_meaningful_content,
    format_memories_for_context,
    format_memory,
    format_session_consolidation,
    group_memories_by_category,
    is_generic_session_summary,
)
from ..hooks.session_end import SessionAnalysis
from ..project_detector import ProjectContext


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
PROJECT = ProjectContext(name="myapp", directory="/work/myapp", language="Python", frameworks=["FastAPI"])

GENERIC = (
    "## 🎯 Topics Discussed\nimplementation\narchitecture\nperformance\ntesting\n"
    "We decided to use hooks for session management and implement automatic context injection\n"
    "Next we need to test the complete system\n"
)


def aged(content, days, **kwargs):
    created = (NOW - timedelta(days=days)).isoformat()
    return Memory(content_hash=content[:12], content=content, created_at_iso=created, **kwargs)


class TestContentExtraction:
    """Tests for condensing memory content."""

    def test_structured_summary_collapses_to_sections(self):
        content = ("# Session Summary - myapp\n"
                   "## 🏛️ Decisions Made\n- Use SQLite for local storage\n"
                   "## 📋 Next Steps\n- Add migration tests\n")
        assert extract_meaningful_content(content) == "Decisions: Use SQLite for local storage | Next: Add migration tests"

    def test_truncates_at_sentence_boundary(self):
        content = "The cache layer now uses a bounded queue. " * 10
        result = extract_meaningful_content(content, max_length=100)
        assert len(result) <= 100
        assert result.endswith(".")

    def test_strips_bold_markup(self):
        assert extract_meaningful_content("**Important** change") == "Important change"

    def test_empty(self):
        assert extract_meaningful_content("") == "No content available"

    def test_generic_summary_detection(self):
        assert is_generic_session_summary(GENERIC) is True
        assert is_generic_session_summary("Switched the cache layer to Redis") is False


class TestFormatMemory:
    """Tests for single memory rendering."""

    def test_date_score_and_visible_tags(self):
        memory = Memory(content="Switched the cache layer to Redis.", created_at_iso="2024-05-03T10:00:00Z",
                        tags=["myapp", "source:hook", "auto-generated", "db"], relevance_score=0.75)
        text = format_memory(memory, 0, include_score=True)
        assert text == "1. Switched the cache layer to Redis. (May 3) [score: 0.75]\n   Tags: myapp"

    def test_generic_summary_skipped(self):
        assert format_memory(Memory(content=GENERIC)) is None


class TestGrouping:
    """Tests for category grouping."""

    def test_categories(self):
        memories = [
            aged("Cluster of caching discussions across sessions", 60, memory_type=COMPRESSED_CLUSTER),
            aged("Moved background jobs onto a dedicated worker pool", 2),
            aged("Chose PostgreSQL over MySQL for transactional workloads", 40, memory_type="decision"),
            aged("Login endpoint returns intermittent gateway errors", 40, tags=["bug"]),
        ]
        groups = group_memories_by_category(memories, now=NOW)

        assert [m.content_hash for m in groups["consolidated-memories"]] == ["Cluster of c"]
        assert [m.content_hash for m in groups["recent-work"]] == ["Moved backgr"]
        assert [m.content_hash for m in groups["key-decisions"]] == ["Chose Postgr"]
        assert [m.content_hash for m in groups["current-problems"]] == ["Login endpoi"]
        assert groups["additional-context"] == []

    def test_duplicates_removed(self):
        text = "Configured the retry policy with exponential backoff for outbound requests"
        groups = group_memories_by_category([aged(text, 40), aged(text + " again", 41)], now=NOW)
        assert sum(len(members) for members in groups.values()) == 1


class TestFormatMemoriesForContext:
    """Tests for the full context block."""

    def test_no_memories(self):
        assert "No relevant memories found" in format_memories_for_context([])

    def test_flat_listing_with_project_and_storage(self):
        storage = StorageInfo.from_health({"storage": {"backend": "sqlite_vec", "total_memories": 12}})
        memories = [
            Memory(content="Switched the cache layer to Redis for session storage."),
            Memory(content="Rate limiting is enforced at the gateway, not in the app."),
        ]
        text = format_memories_for_context(memories, PROJECT, storage_info=storage, group_by_category=False)

        assert text.startswith("## 🧠 Memory Context Loaded")
        assert "**Project**: myapp (Python)" in text
        assert "**Frameworks**: FastAPI" in text
        assert "**Storage**: 🪶 SQLite-vec (local) - 12 memories" in text
        assert "**Loaded 2 relevant memories" in text
        assert "1. Switched the cache layer" in text
        assert "2. Rate limiting" in text
        assert text.endswith(FOOTER)

    def test_max_memories(self):
        memories = [Memory(content=f"Distinct memory number {i} about subsystem {i}") for i in range(5)]
        text = format_memories_for_context(memories, max_memories=2, group_by_category=False)
        assert "**Loaded 2 relevant memories" in text
        assert "3. " not in text

    def test_only_generic_memories(self):
        text = format_memories_for_context([Memory(content=GENERIC)])
        assert "filtered out generic content" in text


class TestSessionConsolidation:
    """Tests for the session summary document."""

    def test_sections_rendered(self):
        analysis = SessionAnalysis(topics=["database"], decisions=["we decided to use SQLite"],
                                   next_steps=["add migration tests"])
        text = format_session_consolidation(analysis, PROJECT)

        assert text.startswith("# Session Summary - myapp\n**Project**: myapp (Python)")
        assert "## 🎯 Topics Discussed\n- database" in text
        assert "## 🏛️ Decisions Made\n- we decided to use SQLite" in text
        assert "## 💡 Key Insights" not in text
