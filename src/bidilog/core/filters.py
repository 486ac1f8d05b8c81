"""Declarative filters over log entries.

Filters are small frozen models rather than closures so they can be compared,
serialized and tested on their own.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from bidilog.core.log_entry import LogEntry, LogLevel


class LogFilter(BaseModel):
    """Base class for log entry predicates."""

    model_config = ConfigDict(frozen=True)

    def matches(self, entry: LogEntry) -> bool:
        raise NotImplementedError

    def __call__(self, entry: LogEntry) -> bool:
        return self.matches(entry)


class AlwaysMatch(LogFilter):
    """Accepts every entry. Used when no filter is given."""

    kind: Literal["always"] = "always"

    def matches(self, entry: LogEntry) -> bool:
        return True


class LevelEquals(LogFilter):
    """Accepts entries whose level equals ``level`` exactly (case-sensitive)."""

    kind: Literal["level_equals"] = "level_equals"
    level: str

    def matches(self, entry: LogEntry) -> bool:
        return entry.level == self.level


FilterSpec = Annotated[AlwaysMatch | LevelEquals, Field(discriminator="kind")]

_filter_adapter: TypeAdapter[AlwaysMatch | LevelEquals] = TypeAdapter(FilterSpec)

ALWAYS = AlwaysMatch()


def parse_filter(data: dict[str, Any]) -> LogFilter:
    """Rebuild a filter from its ``model_dump()`` form."""
    return _filter_adapter.validate_python(data)


class FilterBy:
    """Constructors for the supported filters."""

    @staticmethod
    def log_level(level: str | LogLevel) -> LevelEquals:
        if isinstance(level, LogLevel):
            level = level.value
        return LevelEquals(level=level)
