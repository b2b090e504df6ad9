"""Exception types shared across the memory hooks."""

from typing import List


class MemoryHooksError(Exception):
    """Base class for all memory hook errors."""


class ConfigError(MemoryHooksError, ValueError):
    """Raised for invalid configuration values (unknown profile, out of range)."""


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class TransportError(MemoryHooksError):
    """Raised when the memory service cannot be reached or stops responding."""


class ProtocolError(MemoryHooksError):
    """Raised when the memory service sends a malformed or unexpected message."""
