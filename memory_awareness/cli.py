"""Command-line entry point: hook events and performance profile control.

Hook events read the host context as JSON on stdin and print injected
context on stdout. Everything else, including logs, goes to stderr.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .client import wait_for_background_tasks
from .config_loader import DEFAULT_CONFIG_NAME, HooksConfig, find_config_path, load_config_safe, update_config_value
from .hooks import (
    HookContext,
    on_memory_retrieval,
    on_mid_conversation,
    on_session_end,
    on_session_start,
    on_topic_change,
)
from .performance import PROFILE_NAMES, PerformanceManager


logger = logging.getLogger(__name__)

BACKGROUND_JOIN_SECONDS = 10

PROFILE_DESCRIPTIONS = {
    "speed_focused": "Minimal latency, instant tier only",
    "balanced": "Instant and fast tiers, moderate latency",
    "memory_aware": "All tiers, maximum context awareness",
    "adaptive": "Budget learned from latency and feedback",
}

EVENTS = ("session-start", "mid-conversation", "topic-change", "memory-retrieval", "session-end")


def _read_stdin_context() -> Dict[str, Any]:
    if sys.stdin is None or sys.stdin.isatty():
        return {}
    data = sys.stdin.read()
    if not data.strip():
        return {}
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        logger.error("[Memory Hook] Failed to parse stdin JSON: %s", e)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _print_injection(message: str) -> None:
    print(message)
    sys.stdout.flush()


def run_event(event: str, config: HooksConfig) -> int:
    context = HookContext.from_dict(_read_stdin_context(), inject_system_message=_print_injection)
    if event == "session-start":
        on_session_start(context, config)
    elif event == "mid-conversation":
        on_mid_conversation(context, config)
    elif event == "topic-change":
        on_topic_change(context, config)
    elif event == "memory-retrieval":
        on_memory_retrieval(context, config)
    else:
        on_session_end(context, config)
    if not wait_for_background_tasks(BACKGROUND_JOIN_SECONDS):
        logger.warning("[Memory Hook] Background requests still pending at exit")
    # A hook never fails the host.
    return 0


def _config_path(explicit: str) -> Path:
    found = find_config_path(explicit)
    if found is not None:
        return found
    return Path.cwd() / ".memory-hooks" / DEFAULT_CONFIG_NAME


def run_profile(args: argparse.Namespace, config: HooksConfig) -> int:
    manager = PerformanceManager({
        "defaultProfile": config.performance.default_profile,
        "profiles": config.performance.profiles,
    })

    if args.list:
        for name in PROFILE_NAMES:
            marker = "*" if name == manager.active_profile else " "
            print(f"{marker} {name:<14} {PROFILE_DESCRIPTIONS[name]}")
        return 0

    if args.switch:
        if args.switch not in PROFILE_NAMES:
            print(f"Unknown profile: {args.switch}. Available: {', '.join(PROFILE_NAMES)}", file=sys.stderr)
            return 1
        path = _config_path(args.config)
        update_config_value(str(path), "performance", "defaultProfile", args.switch)
        budget = manager.switch_profile(args.switch)
        print(f"Switched to {args.switch} ({budget.max_latency:.0f}ms, tiers: {', '.join(budget.enabled_tiers)})")
        print(f"Saved to {path}")
        return 0

    report = manager.get_performance_report()
    budget = report["budget"]
    print(f"Active profile: {report['profile']}")
    print(f"Max latency: {budget['maxLatency']:.0f}ms")
    print(f"Enabled tiers: {', '.join(budget['enabledTiers'])}")
    print(f"Background processing: {budget['backgroundProcessing']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memory-hooks",
        description="Memory awareness hooks for coding assistants",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.json (default: $MEMORY_HOOKS_CONFIG or search paths)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log pipeline progress to stderr"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    for event in EVENTS:
        subparsers.add_parser(event, help=f"Run the {event} hook with host context JSON on stdin")

    profile = subparsers.add_parser("profile", help="Show or switch the performance profile")
    group = profile.add_mutually_exclusive_group()
    group.add_argument("--list", action="store_true", help="List available profiles")
    group.add_argument("--switch", metavar="NAME", help="Switch the default profile")
    group.add_argument("--status", action="store_true", help="Show the active profile (default)")
    return parser


def configure_logging(config: HooksConfig, verbose: bool) -> None:
    level = logging.INFO if (verbose or config.output.verbose) else logging.WARNING
    if config.output.clean_mode and not verbose:
        level = logging.WARNING
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(message)s",
    )


def main() -> int:
    args = build_parser().parse_args()
    load_dotenv(args.env_file)

    config = load_config_safe(args.config)
    configure_logging(config, args.verbose)

    if args.command == "profile":
        return run_profile(args, config)
    return run_event(args.command, config)


if __name__ == "__main__":
    sys.exit(main())
