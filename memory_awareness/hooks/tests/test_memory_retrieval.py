"""Tests for on-demand memory retrieval."""

import time
from unittest.mock import MagicMock, patch

from ...client.models import Memory
from ...config_loader import HooksConfig
from ...errors import TransportError
from ...project_detector import ProjectContext
from ..base import HookContext
from ..memory_retrieval import MemoryRetrievalHook, build_retrieval_query, on_memory_retrieval


PROJECT = ProjectContext(name="myapp", directory="/work/myapp", language="Python", tools=["pytest"])

REDIS = Memory(
    content_hash="h-redis",
    content=("Decided to use Redis for the myapp cache layer because Python session "
             "lookups were too slow in the request handler."),
    tags=["myapp", "python"],
    memory_type="decision",
    created_at=time.time() * 1000,
)


def make_hook(memories=()):
    client = MagicMock()
    client.connect.return_value = "http"
    client.query_memories.return_value = list(memories)
    return MemoryRetrievalHook(HooksConfig(), client_factory=lambda service: client), client


def run(hook, **kwargs):
    injected = []
    context = HookContext(working_directory="/work/myapp", inject_system_message=injected.append, **kwargs)
    with patch("memory_awareness.hooks.memory_retrieval.detect_project_context", return_value=PROJECT):
        result = hook.run(context)
    return result, injected


class TestBuildQuery:
    """Tests for the semantic query."""

    def test_with_user_query(self):
        assert build_retrieval_query(PROJECT, "cache decisions") == "myapp cache decisions"

    def test_default(self):
        assert build_retrieval_query(PROJECT, "") == "myapp project context decisions architecture"


class TestMemoryRetrievalHook:
    """Tests for retrieval, scoring and display."""

    def test_found_memories_are_shown_with_scores(self):
        hook, client = make_hook([REDIS])
        result, injected = run(hook, user_message="cache decisions")

        client.query_memories.assert_called_once_with("myapp cache decisions", 8)
        assert result["success"] is True
        assert result["memories_found"] == 1
        assert result["memories_shown"] == 1
        assert injected == [result["context"]]
        assert "Redis" in result["context"]
        client.disconnect.assert_called_once()

    def test_nothing_found(self):
        hook, _ = make_hook()
        result, injected = run(hook)
        assert result["success"] is False
        assert 'No relevant memories found for query: "project context"' in result["context"]
        assert injected == [result["context"]]

    def test_service_unavailable(self):
        hook, client = make_hook()
        client.connect.side_effect = TransportError("connection refused")
        result, injected = run(hook, user_message="cache")
        assert result["success"] is False
        assert result["error"] == "connection refused"
        assert "Memory Retrieval Error" in injected[0]
        client.query_memories.assert_not_called()
        client.disconnect.assert_called_once()


def test_entry_point_reports_errors():
    context = HookContext(working_directory="/work/myapp")
    with patch.object(MemoryRetrievalHook, "run", side_effect=RuntimeError("boom")):
        result = on_memory_retrieval(context, HooksConfig())
    assert result["success"] is False
    assert result["error"] == "boom"
