"""Shared plumbing for the hook entry points: host context and timeouts."""

import logging
import os
import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from ..errors import TransportError


logger = logging.getLogger(__name__)

SESSION_START_TIMEOUT = 9.5
MID_CONVERSATION_TIMEOUT = 10.0
SESSION_END_TIMEOUT = 15.0
QUERY_TIMEOUT = 2.0
CONNECT_TIMEOUT = 2.0


@dataclass
class HookContext:
    """What the host hands to every hook event.

    `inject_system_message` is optional; without it the hook still runs but
    its output is only returned to the caller.
    """

    working_directory: str = field(default_factory=os.getcwd)
    session_id: Optional[str] = None
    user_message: Optional[str] = None
    conversation_state: Dict[str, Any] = field(default_factory=dict)
    previous_context: Optional[Dict[str, Any]] = None
    trigger: str = "session-start"
    inject_system_message: Optional[Callable[[str], Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  inject_system_message: Optional[Callable[[str], Any]] = None) -> 'HookContext':
        """Build a context from host JSON (snake_case or camelCase keys).

        Values of the wrong shape are dropped rather than rejected.
        """
        if not isinstance(data, dict):
            data = {}

        def get(snake: str, camel: str, default: Any = None) -> Any:
            value = data.get(snake, data.get(camel))
            return default if value is None else value

        state = get("conversation_state", "conversationState", None)
        if state is None:
            state = data.get("conversation")
        if not isinstance(state, dict):
            state = {}
        previous = get("previous_context", "previousContext")
        user_message = get("user_message", "userMessage")
        working_directory = get("working_directory", "workingDirectory")
        trigger = get("trigger", "trigger")
        return cls(
            working_directory=working_directory if isinstance(working_directory, str) else os.getcwd(),
            session_id=get("session_id", "sessionId"),
            user_message=user_message if isinstance(user_message, str) else None,
            conversation_state=dict(state),
            previous_context=previous if isinstance(previous, dict) else None,
            trigger=trigger if isinstance(trigger, str) else "session-start",
            inject_system_message=inject_system_message,
        )

    def inject(self, message: str) -> bool:
        """Hand a message to the host. Returns False when the host cannot receive it."""
        if self.inject_system_message is None:
            return False
        self.inject_system_message(message)
        return True


def run_with_timeout(func: Callable[[], Any], timeout: float, name: str) -> Tuple[bool, Any]:
    """Run `func` on a daemon thread and wait at most `timeout` seconds.

    Returns:
        Tuple of (completed, result). On expiry the worker is abandoned and
        (False, None) is returned.

    Raises:
        Exception: Whatever `func` raised, re-raised in the calling thread.
    """
    outcome: Dict[str, Any] = {}

    def worker():
        try:
            outcome["result"] = func()
        except Exception as e:  # re-raised below
            outcome["error"] = e

    thread = threading.Thread(target=worker, name=f"memory-hook-{name}", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        logger.warning("[Memory Hook] %s timed out after %.1fs", name, timeout)
        return False, None
    if "error" in outcome:
        raise outcome["error"]
    return True, outcome.get("result")


def call_with_timeout(func: Callable[..., Any], timeout: float, *args: Any, **kwargs: Any) -> Any:
    """Call `func` and wait for its result at most `timeout` seconds.

    Raises:
        TransportError: If the call did not finish in time.
    """
    future: Future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=runner, name="memory-hook-query", daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        raise TransportError(f"Query timeout after {timeout}s")
