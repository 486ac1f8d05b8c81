"""Custom exceptions for bidilog."""

from typing import Any


class BidilogError(Exception):
    """Base exception for all bidilog errors."""


class BiDiConnectionError(BidilogError):
    """Failed to open or use a WebDriver BiDi connection."""


class DriverNotFoundError(BidilogError):
    """WebDriver executable not found or not running."""


class SessionNotCreatedError(BidilogError):
    """The WebDriver server refused to create a session."""


class MalformedEventError(BidilogError):
    """A raw log event could not be normalized."""

    def __init__(self, message: str, payload: Any = None) -> None:
        self.payload = payload
        super().__init__(message)


class BiDiProtocolError(BidilogError):
    """BiDi returned an error response."""

    def __init__(self, error: str, message: str) -> None:
        self.error = error
        self.message = message
        super().__init__(f"BiDi error {error}: {message}")


class CallbackError(BidilogError):
    """A registered log callback raised while handling an entry."""

    def __init__(self, subscription: Any, entry: Any, cause: BaseException) -> None:
        self.subscription = subscription
        self.entry = entry
        self.cause = cause
        super().__init__(f"Callback for subscription {subscription.id} failed: {cause!r}")
