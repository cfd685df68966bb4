"""
exceptions.py — Ember Unified Error Hierarchy

All Ember-specific exceptions live here. Every layer of the stack raises
typed subclasses of EmberError — never bare Exception.

Import from here, not from individual modules:
    from ember.exceptions import NotOpenError, StreamingError

Hierarchy:
    EmberError
    ├── ConfigurationError
    │   ├── InvalidEndpointError
    │   └── MissingCredentialError
    ├── TransportError
    │   ├── NotOpenError
    │   ├── ConnectionClosedError
    │   └── ConnectionDroppedError
    ├── ProtocolError
    │   ├── GatewayServerError
    │   ├── ServerResponseError
    │   └── StreamingError
    └── StreamCancelledError
        ├── SubscriptionCancelledError
        └── ChatCancelledError

Frame decode failures are deliberately absent: a malformed frame is dropped
at the codec boundary and never becomes an exception.
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class EmberError(Exception):
    """Base class for all Ember exceptions."""

    @property
    def description(self) -> str:
        """One-line, user-facing description of the error."""
        return str(self)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class ConfigurationError(EmberError):
    """Invalid local configuration (endpoint, credential, settings)."""


class InvalidEndpointError(ConfigurationError):
    """The configured gateway URL cannot be used for a WebSocket connection."""

    def __init__(self, url: str, message: str = "") -> None:
        self.url = url
        super().__init__(message or f"Invalid gateway URL: {url!r}")


class MissingCredentialError(ConfigurationError):
    """The API key required by a provider is missing or empty."""

    def __init__(self, message: str = "") -> None:
        super().__init__(
            message or "Invalid or missing API key. Please check your API key in settings."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Transport
# ─────────────────────────────────────────────────────────────────────────────

class TransportError(EmberError):
    """I/O failure on the underlying transport (socket, HTTP stream)."""

    def __init__(self, message: str, underlying: Optional[BaseException] = None) -> None:
        self.underlying = underlying
        super().__init__(message)

    @property
    def description(self) -> str:
        return f"Network error: {self}. Please check your internet connection."


class NotOpenError(TransportError):
    """An operation needed an open connection and there was none."""

    def __init__(self, message: str = "Connection is not open") -> None:
        super().__init__(message)


class ConnectionClosedError(TransportError):
    """The connection object has been closed and cannot be reopened in place."""

    def __init__(self, message: str = "Connection is closed; create a new one") -> None:
        super().__init__(message)


class ConnectionDroppedError(TransportError):
    """The peer went away or the keepalive ping failed while the connection was open."""


# ─────────────────────────────────────────────────────────────────────────────
# Protocol
# ─────────────────────────────────────────────────────────────────────────────

class ProtocolError(EmberError):
    """The remote side answered, but with an error or an unusable response."""


class GatewayServerError(ProtocolError):
    """The gateway sent an `error` frame on the subscription stream."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def description(self) -> str:
        return f"Gateway error: {self.message}"


class ServerResponseError(ProtocolError):
    """Non-2xx HTTP status from the completions endpoint."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Server error ({status_code}): {body}")


class StreamingError(ProtocolError):
    """The server sent an explicit error unit in the middle of a token stream."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def description(self) -> str:
        return f"Streaming error: {self.message}"


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation
# ─────────────────────────────────────────────────────────────────────────────

class StreamCancelledError(EmberError):
    """A stream was cancelled by its consumer or by a newer stream replacing it."""


class SubscriptionCancelledError(StreamCancelledError):
    """The gateway event subscription was cancelled."""

    def __init__(self, message: str = "Inbox subscription cancelled.") -> None:
        super().__init__(message)


class ChatCancelledError(StreamCancelledError):
    """The in-flight chat request was cancelled."""

    def __init__(self, message: str = "Request was cancelled.") -> None:
        super().__init__(message)


__all__ = [
    "EmberError",
    # Configuration
    "ConfigurationError",
    "InvalidEndpointError",
    "MissingCredentialError",
    # Transport
    "TransportError",
    "NotOpenError",
    "ConnectionClosedError",
    "ConnectionDroppedError",
    # Protocol
    "ProtocolError",
    "GatewayServerError",
    "ServerResponseError",
    "StreamingError",
    # Cancellation
    "StreamCancelledError",
    "SubscriptionCancelledError",
    "ChatCancelledError",
]
