"""Tests for #remember / #skip override detection."""

from ..hooks.base import HookContext
from ..overrides import describe_overrides, detect_user_overrides, extract_user_message, message_text


class TestDetectUserOverrides:
    """Tests for marker detection."""

    def test_no_message(self):
        assert detect_user_overrides(None) == {"force_remember": False, "force_skip": False}

    def test_remember_case_insensitive(self):
        assert detect_user_overrides("Please #REMEMBER this")["force_remember"] is True

    def test_skip_marker(self):
        result = detect_user_overrides("quick question #skip")
        assert result == {"force_remember": False, "force_skip": True}

    def test_marker_must_end_at_word_boundary(self):
        assert detect_user_overrides("#skipping ahead")["force_skip"] is False

    def test_describe(self):
        assert describe_overrides({"force_skip": True, "force_remember": True}) == "user override (#skip)"
        assert describe_overrides({"force_skip": False, "force_remember": False}) is None


class TestExtractUserMessage:
    """Tests for locating the user message in host contexts."""

    def test_explicit_message_wins(self):
        context = {"userMessage": "explicit", "messages": [{"role": "user", "content": "older"}]}
        assert extract_user_message(context) == "explicit"

    def test_last_user_turn_from_content_blocks(self):
        context = {"conversation": {"messages": [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": [{"type": "text", "text": "latest #remember"},
                                         {"type": "image", "source": {}}]},
        ]}}
        assert extract_user_message(context) == "latest #remember"

    def test_hook_context_object(self):
        context = HookContext(working_directory="/tmp",
                              conversation_state={"messages": [{"role": "user", "content": "from state"}]})
        assert extract_user_message(context) == "from state"

    def test_none_context(self):
        assert extract_user_message(None) is None

    def test_message_text_non_string(self):
        assert message_text({"content": 42}) == ""
