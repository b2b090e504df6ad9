"""Tests for hook context parsing and timeout helpers."""

import threading

import pytest

from ...errors import TransportError
from ..base import HookContext, call_with_timeout, run_with_timeout


class TestHookContext:
    """Tests for HookContext."""

    def test_from_dict_camel_case(self):
        context = HookContext.from_dict({
            "workingDirectory": "/work/myapp",
            "sessionId": "abc",
            "userMessage": "hello",
            "conversationState": {"messages": [{"role": "user", "content": "hi"}]},
            "previousContext": {"topics": ["api"]},
            "trigger": "mid-conversation",
        })

        assert context.working_directory == "/work/myapp"
        assert context.session_id == "abc"
        assert context.user_message == "hello"
        assert context.conversation_state["messages"][0]["content"] == "hi"
        assert context.previous_context == {"topics": ["api"]}
        assert context.trigger == "mid-conversation"

    def test_from_dict_snake_case_and_conversation_fallback(self):
        context = HookContext.from_dict({
            "working_directory": "/work/other",
            "conversation": {"messages": [{"role": "user", "content": "earlier"}]},
        })

        assert context.working_directory == "/work/other"
        assert context.trigger == "session-start"
        assert context.conversation_state["messages"][0]["content"] == "earlier"

    def test_from_dict_drops_malformed_values(self):
        context = HookContext.from_dict({
            "workingDirectory": 42,
            "userMessage": {"text": "hi"},
            "conversationState": ["not", "an", "object"],
            "previousContext": "api",
            "trigger": None,
        })

        assert isinstance(context.working_directory, str)
        assert context.user_message is None
        assert context.conversation_state == {}
        assert context.previous_context is None
        assert context.trigger == "session-start"

    def test_from_dict_non_object(self):
        context = HookContext.from_dict(["session-start"])
        assert context.conversation_state == {}
        assert context.session_id is None

    def test_inject_without_host_callback(self):
        assert HookContext(working_directory="/tmp").inject("ctx") is False

    def test_inject_calls_host(self):
        received = []
        context = HookContext(working_directory="/tmp", inject_system_message=received.append)

        assert context.inject("ctx") is True
        assert received == ["ctx"]


class TestRunWithTimeout:
    """Tests for run_with_timeout."""

    def test_returns_result(self):
        assert run_with_timeout(lambda: 42, 1.0, "test") == (True, 42)

    def test_expired_worker_is_abandoned(self):
        release = threading.Event()
        try:
            completed, result = run_with_timeout(lambda: release.wait(5), 0.05, "slow")
        finally:
            release.set()

        assert completed is False
        assert result is None

    def test_worker_error_is_reraised(self):
        def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            run_with_timeout(fail, 1.0, "failing")


class TestCallWithTimeout:
    """Tests for call_with_timeout."""

    def test_passes_arguments(self):
        assert call_with_timeout(lambda a, b=0: a + b, 1.0, 2, b=3) == 5

    def test_timeout_raises_transport_error(self):
        release = threading.Event()
        try:
            with pytest.raises(TransportError, match="Query timeout after 0.05s"):
                call_with_timeout(release.wait, 0.05, 5)
        finally:
            release.set()

    def test_error_propagates(self):
        def fail():
            raise TransportError("refused")

        with pytest.raises(TransportError, match="refused"):
            call_with_timeout(fail, 1.0)
