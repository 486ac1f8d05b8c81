"""Core infrastructure for bidilog."""

from bidilog.core.bidi_client import BiDiClient, RawSubscription, open_channel
from bidilog.core.exceptions import (
    BiDiConnectionError,
    BidilogError,
    BiDiProtocolError,
    CallbackError,
    DriverNotFoundError,
    MalformedEventError,
    SessionNotCreatedError,
)
from bidilog.core.filters import AlwaysMatch, FilterBy, LevelEquals, LogFilter
from bidilog.core.log_entry import CallFrame, LogEntry, LogLevel, LogType, StackTrace, normalize
from bidilog.core.log_inspector import LogInspector, log_inspector
from bidilog.core.registry import Category, Subscription, SubscriptionRegistry

__all__ = [
    "BiDiClient",
    "RawSubscription",
    "open_channel",
    "BidilogError",
    "BiDiConnectionError",
    "BiDiProtocolError",
    "CallbackError",
    "DriverNotFoundError",
    "MalformedEventError",
    "SessionNotCreatedError",
    "LogFilter",
    "AlwaysMatch",
    "LevelEquals",
    "FilterBy",
    "LogEntry",
    "LogLevel",
    "LogType",
    "CallFrame",
    "StackTrace",
    "normalize",
    "LogInspector",
    "log_inspector",
    "Category",
    "Subscription",
    "SubscriptionRegistry",
]
