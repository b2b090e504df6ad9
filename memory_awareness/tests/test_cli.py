"""Tests for the command-line entry point."""

import json
from unittest.mock import patch

import pytest

from ..cli import build_parser, run_event, run_profile
from ..config_loader import HooksConfig


class TestParser:
    """Tests for argument parsing."""

    def test_event_subcommand(self):
        args = build_parser().parse_args(["--verbose", "session-start"])
        assert args.command == "session-start"
        assert args.verbose is True
        assert args.env_file == ".env"

    def test_profile_options_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["profile", "--list", "--switch", "balanced"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunProfile:
    """Tests for profile management."""

    def test_list_marks_active(self, capsys):
        args = build_parser().parse_args(["profile", "--list"])
        assert run_profile(args, HooksConfig()) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 4
        assert lines[1].startswith("* balanced")

    def test_switch_saves_config(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        args = build_parser().parse_args(["--config", str(path), "profile", "--switch", "speed_focused"])

        assert run_profile(args, HooksConfig()) == 0
        assert json.loads(path.read_text()) == {"performance": {"defaultProfile": "speed_focused"}}
        assert "Switched to speed_focused" in capsys.readouterr().out

    def test_switch_unknown_profile(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        args = build_parser().parse_args(["--config", str(path), "profile", "--switch", "turbo"])

        assert run_profile(args, HooksConfig()) == 1
        assert not path.exists()
        assert "Unknown profile: turbo" in capsys.readouterr().err

    def test_status(self, capsys):
        args = build_parser().parse_args(["profile"])
        run_profile(args, HooksConfig())
        out = capsys.readouterr().out
        assert "Active profile: balanced" in out
        assert "Max latency: 200ms" in out


class TestRunEvent:
    """Tests for hook event dispatch."""

    def test_dispatches_with_stdin_context(self):
        config = HooksConfig()
        with patch("memory_awareness.cli._read_stdin_context", return_value={"workingDirectory": "/work/app"}), \
                patch("memory_awareness.cli.on_session_end") as on_end:
            assert run_event("session-end", config) == 0

        context, passed_config = on_end.call_args[0]
        assert context.working_directory == "/work/app"
        assert passed_config is config

    def test_hook_result_never_fails_host(self):
        with patch("memory_awareness.cli._read_stdin_context", return_value={}), \
                patch("memory_awareness.cli.on_mid_conversation", return_value=None):
            assert run_event("mid-conversation", HooksConfig()) == 0

    @pytest.mark.parametrize("event, handler", [
        ("topic-change", "on_topic_change"),
        ("memory-retrieval", "on_memory_retrieval"),
    ])
    def test_dispatches_conversation_events(self, event, handler):
        args = build_parser().parse_args([event])
        with patch("memory_awareness.cli._read_stdin_context", return_value={"sessionId": "s1"}), \
                patch(f"memory_awareness.cli.{handler}") as hook:
            assert run_event(args.command, HooksConfig()) == 0
        assert hook.call_args[0][0].session_id == "s1"

    def test_waits_for_background_requests(self):
        with patch("memory_awareness.cli._read_stdin_context", return_value={}), \
                patch("memory_awareness.cli.on_session_end"), \
                patch("memory_awareness.cli.wait_for_background_tasks", return_value=True) as wait:
            assert run_event("session-end", HooksConfig()) == 0
        wait.assert_called_once_with(10)

    def test_non_object_conversation_state(self):
        payload = {"workingDirectory": "/work/app", "conversationState": ["not", "an", "object"]}
        with patch("memory_awareness.cli._read_stdin_context", return_value=payload), \
                patch("memory_awareness.cli.on_session_end") as on_end:
            assert run_event("session-end", HooksConfig()) == 0
        assert on_end.call_args[0][0].conversation_state == {}
