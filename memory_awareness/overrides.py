"""Detection of explicit user override markers (#remember, #skip)."""

import re
from typing import Any, Dict, List, Optional


REMEMBER_PATTERN = re.compile(r"#remember\b", re.IGNORECASE)
SKIP_PATTERN = re.compile(r"#skip\b", re.IGNORECASE)


def detect_user_overrides(message: Optional[str]) -> Dict[str, bool]:
    """Return which override markers appear in a message.

    Args:
        message: Raw user message, may be None.

    Returns:
        Dict with `force_remember` and `force_skip` flags.
    """
    if not message or not isinstance(message, str):
        return {"force_remember": False, "force_skip": False}
    return {
        "force_remember": bool(REMEMBER_PATTERN.search(message)),
        "force_skip": bool(SKIP_PATTERN.search(message)),
    }


def message_text(message: Dict[str, Any]) -> str:
    content = message.get("content", "")
    if isinstance(content, list):
        parts: List[str] = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            elif isinstance(block, str):
                parts.append(block)
        return "\n".join(parts)
    return content if isinstance(content, str) else ""


def extract_user_message(context: Any) -> Optional[str]:
    """Find the most relevant user message in a host context.

    Looks at an explicit `user_message`/`userMessage` first, then falls back to
    the last user turn in the conversation messages.
    """
    if context is None:
        return None

    if isinstance(context, dict):
        explicit = context.get("user_message") or context.get("userMessage")
        messages = (context.get("conversation") or {}).get("messages") or context.get("messages") or []
    else:
        explicit = getattr(context, "user_message", None)
        state = getattr(context, "conversation_state", None) or {}
        messages = state.get("messages", []) if isinstance(state, dict) else []

    if explicit:
        return explicit

    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            text = message_text(message)
            if text:
                return text
    return None


def describe_overrides(overrides: Dict[str, bool]) -> Optional[str]:
    """Human-readable reason for an active override, or None."""
    if overrides.get("force_skip"):
        return "user override (#skip)"
    if overrides.get("force_remember"):
        return "user override (#remember)"
    return None
