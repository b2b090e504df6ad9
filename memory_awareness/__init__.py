"""Memory awareness hooks for conversational coding assistants.

Detects the project and its git activity, decides when past context is
worth retrieving, pulls memories from an external memory service, ranks
them and injects them into the conversation. At session end the
conversation is distilled into a new memory.
"""

from .config_loader import HooksConfig, load_config, load_config_safe
from .errors import ConfigError, ConfigValidationError, MemoryHooksError, ProtocolError, TransportError
from .hooks import HookContext, on_mid_conversation, on_session_end, on_session_start

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "HookContext",
    "HooksConfig",
    "MemoryHooksError",
    "ProtocolError",
    "TransportError",
    "load_config",
    "load_config_safe",
    "on_mid_conversation",
    "on_session_end",
    "on_session_start",
]
