"""
Exception types for TUI Bridge.

Only failures that change what a client sees are modelled here. Malformed
terminal output is never an error: it is passed through as literal text.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for bridge errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigError(BridgeError):
    """Configuration file or override has an invalid value."""


class SpawnError(BridgeError):
    """The upstream program could not be started."""

    def __init__(self, command: str, cause: BaseException):
        super().__init__(f"Failed to spawn {command!r}: {cause}", cause=cause)
        self.command = command

    @property
    def reason(self) -> str:
        """Short close reason sent to the client, e.g. ``spawn-failed:FileNotFoundError``."""
        name = type(self.cause).__name__ if self.cause else "Error"
        return f"spawn-failed:{name}"
