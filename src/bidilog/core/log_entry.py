"""Normalized log entry model for bidilog.

Every ``log.entryAdded`` payload (console API calls, javascript runtime errors
and any driver-specific entry types) is normalized into this single schema.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from bidilog.core.exceptions import MalformedEventError

LOG_ENTRY_ADDED = "log.entryAdded"


class LogLevel(str, Enum):
    """Log severity levels reported by WebDriver BiDi."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogType(str, Enum):
    """Known entry types. Drivers may report others."""

    CONSOLE = "console"
    JAVASCRIPT = "javascript"


class CallFrame(BaseModel):
    """One frame of a BiDi stack trace."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = ""
    function_name: str = Field(default="", alias="functionName")
    line_number: int = Field(default=0, alias="lineNumber")
    column_number: int = Field(default=0, alias="columnNumber")


class StackTrace(BaseModel):
    """Ordered call frames, innermost first."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    call_frames: tuple[CallFrame, ...] = Field(default=(), alias="callFrames")

    def format(self) -> str:
        lines: list[str] = []
        for frame in self.call_frames:
            fn_name = frame.function_name or "(anonymous)"
            lines.append(f"    at {fn_name} ({frame.url}:{frame.line_number}:{frame.column_number})")
        return "\n".join(lines)


class LogEntry(BaseModel):
    """Normalized log entry from a BiDi session.

    Built from ``log.entryAdded`` params of type:
    - console (console.log, console.error, etc.)
    - javascript (uncaught exceptions and runtime errors)
    - anything else the driver reports, kept as a generic entry
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(description="Entry type: console, javascript, or driver-specific")
    level: str = Field(description="Severity reported by the browser")
    text: str = Field(default="", description="Rendered message text")
    method: str | None = Field(default=None, description="Console method for console entries")
    realm: str | None = Field(default=None, description="Realm reported on the entry itself")
    source_realm: str | None = Field(default=None, description="Realm id from the entry source")
    context: str | None = Field(default=None, description="Browsing context id")
    args: tuple[Mapping[str, Any], ...] = Field(default=(), description="BiDi remote values, read-only")
    stack_trace: StackTrace | None = Field(default=None, alias="stackTrace")
    timestamp: int | None = Field(default=None, description="Milliseconds since epoch")

    @field_validator("args", mode="after")
    @classmethod
    def freeze_args(cls, args: tuple[Mapping[str, Any], ...]) -> tuple[Mapping[str, Any], ...]:
        # Nested remote values become read-only mappings and tuples.
        return tuple(_freeze(arg) for arg in args)

    @field_serializer("args")
    def serialize_args(self, args: tuple[Mapping[str, Any], ...]) -> list[dict[str, Any]]:
        return [_thaw(arg) for arg in args]

    @property
    def is_exception(self) -> bool:
        return self.type == LogType.JAVASCRIPT and self.stack_trace is not None

    @property
    def ts(self) -> datetime | None:
        if self.timestamp is None:
            return None
        return datetime.fromtimestamp(self.timestamp / 1000.0, tz=UTC)

    @property
    def arg_values(self) -> list[Any]:
        """Primitive Python values for the console arguments."""
        return [_deserialize_remote_value(arg) for arg in self.args]

    @classmethod
    def from_console(cls, params: Mapping[str, Any]) -> "LogEntry":
        """Create LogEntry from a console ``log.entryAdded`` payload."""
        args = params.get("args") or []
        if not isinstance(args, list) or not all(isinstance(a, Mapping) for a in args):
            raise MalformedEventError("console entry 'args' must be a list of remote values", params)

        method = params.get("method")
        if method is not None and not isinstance(method, str):
            raise MalformedEventError("console entry 'method' must be a string", params)

        # Console entries never expose a trace, even when the browser attached one.
        return cls(
            **_base_fields(params),
            method=method,
            args=tuple(args),
        )

    @classmethod
    def from_javascript(cls, params: Mapping[str, Any]) -> "LogEntry":
        """Create LogEntry from a javascript ``log.entryAdded`` payload."""
        return cls(
            **_base_fields(params),
            stack_trace=_parse_stack_trace(params.get("stackTrace"), params),
        )

    @classmethod
    def from_generic(cls, params: Mapping[str, Any]) -> "LogEntry":
        """Create LogEntry for entry types without a dedicated builder."""
        return cls(**_base_fields(params))

    def to_ndjson(self) -> str:
        """Serialize to newline-delimited JSON."""
        return self.model_dump_json(by_alias=True)

    def to_pretty(self) -> str:
        """Format for human-readable output."""
        ts = self.ts
        ts_str = ts.strftime("%H:%M:%S.%f")[:-3] if ts else "--:--:--.---"
        level_str = self.level.upper().ljust(5)
        kind = f"{self.type}.{self.method}" if self.method else self.type

        location = ""
        if self.stack_trace and self.stack_trace.call_frames:
            frame = self.stack_trace.call_frames[0]
            filename = frame.url.split("/")[-1]
            if filename:
                location = f" [{filename}:{frame.line_number}]"

        return f"{ts_str} {level_str} {kind}: {self.text}{location}"

    def to_tsv(self) -> str:
        """Format as tab-separated values for easy piping to cut/awk."""
        ts = self.ts
        ts_str = ts.strftime("%H:%M:%S.%f")[:-3] if ts else ""
        text_escaped = self.text.replace("\t", " ").replace("\n", "\\n")
        return f"{ts_str}\t{self.level.upper()}\t{self.type}\t{text_escaped}"


EntryBuilder = Callable[[Mapping[str, Any]], LogEntry]

_BUILDERS: dict[str, EntryBuilder] = {
    LogType.CONSOLE.value: LogEntry.from_console,
    LogType.JAVASCRIPT.value: LogEntry.from_javascript,
}


def register_entry_type(entry_type: str, builder: EntryBuilder) -> None:
    """Route payloads of ``entry_type`` through a custom builder."""
    _BUILDERS[entry_type] = builder


def normalize(raw: Mapping[str, Any]) -> LogEntry:
    """Build a LogEntry from ``log.entryAdded`` params or a full event message.

    Raises:
        MalformedEventError: the payload lacks a string ``type`` or ``level``,
            or one of its fields has the wrong shape.
    """
    if not isinstance(raw, Mapping):
        raise MalformedEventError(f"log event must be an object, got {type(raw).__name__}", raw)

    params: Mapping[str, Any] = raw
    if "params" in raw and "method" in raw:
        if raw["method"] != LOG_ENTRY_ADDED:
            raise MalformedEventError(f"not a {LOG_ENTRY_ADDED} event: {raw['method']!r}", raw)
        params = raw["params"]
        if not isinstance(params, Mapping):
            raise MalformedEventError("event params must be an object", raw)

    entry_type = params.get("type")
    if not isinstance(entry_type, str) or not entry_type:
        raise MalformedEventError("log event has no 'type' discriminator", raw)
    if not isinstance(params.get("level"), str):
        raise MalformedEventError("log event has no 'level'", raw)

    builder = _BUILDERS.get(entry_type, LogEntry.from_generic)
    return builder(params)


def _base_fields(params: Mapping[str, Any]) -> dict[str, Any]:
    text = params.get("text")
    if text is None:
        text = ""
    elif not isinstance(text, str):
        raise MalformedEventError("log event 'text' must be a string or null", params)

    source = params.get("source") or {}
    if not isinstance(source, Mapping):
        raise MalformedEventError("log event 'source' must be an object", params)

    timestamp = params.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
        timestamp = None

    return {
        "type": params["type"],
        "level": params["level"],
        "text": text,
        "realm": _optional_str(params.get("realm")),
        "source_realm": _optional_str(source.get("realm")),
        "context": _optional_str(source.get("context")),
        "timestamp": int(timestamp) if timestamp is not None else None,
    }


def _parse_stack_trace(raw: Any, params: Mapping[str, Any]) -> StackTrace | None:
    if raw is None:
        return None
    try:
        trace = StackTrace.model_validate(raw)
    except ValidationError as e:
        raise MalformedEventError(f"invalid stackTrace: {e}", params) from e
    # An empty trace carries nothing to inspect; treat it as absent.
    if not trace.call_frames:
        return None
    return trace


def _deserialize_remote_value(arg: Mapping[str, Any]) -> Any:
    """Map a BiDi RemoteValue to a plain Python value where one exists."""
    value_type = arg.get("type", "")
    value = arg.get("value")

    if value_type in ("string", "boolean"):
        return value
    if value_type == "number":
        specials = {"NaN": float("nan"), "-0": -0.0, "Infinity": float("inf"), "-Infinity": float("-inf")}
        if isinstance(value, str) and value in specials:
            return specials[value]
        return value
    if value_type == "bigint":
        return int(value) if isinstance(value, str) else value
    if value_type in ("undefined", "null"):
        return None
    if value_type == "array" and isinstance(value, list | tuple):
        return [_deserialize_remote_value(item) for item in value]
    return f"[{value_type or 'object'}]"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list | tuple):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
