from __future__ import annotations


class WatcherError(Exception):
    """Base class for every error raised by hlwatch."""


class ConfigError(WatcherError):
    """Configuration is missing or invalid; raised before any network activity."""


class TransientFetchError(WatcherError):
    """A request against the Hyperliquid info API failed. The current cycle is aborted."""

    def __init__(self, request_type: str, reason: str) -> None:
        super().__init__(f"{request_type}: {reason}")
        self.request_type = request_type
        self.reason = reason


class MalformedRecordError(WatcherError):
    """A fill or position record lacks a required field or cannot be parsed."""

    def __init__(self, reason: str, record: object = None) -> None:
        super().__init__(reason)
        self.record = record


class StreamError(WatcherError):
    """The WebSocket failed or was closed by the server. The stream reconnects after a delay."""


class IllegalTransition(WatcherError):
    """The stream supervisor was asked to make a state change its state machine forbids."""


class NotificationSendError(WatcherError):
    """The messaging provider rejected or failed to receive a message."""
