"""Exception taxonomy shared by the core and adapters."""

from __future__ import annotations


class WareactError(Exception):
    """Base class for errors raised by wareact."""


class ConfigError(WareactError):
    """Required configuration is missing or unusable."""


class TransportError(WareactError):
    """A transport command failed (send, list, resolve)."""

    def __init__(self, code: str, message: str, retryable: bool = False) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.retryable = retryable


class LoggedOutError(WareactError):
    """The session was logged out remotely and must be paired again."""
