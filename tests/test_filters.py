"""Tests for log entry filters."""

import pytest
from conftest import console_params, exception_params

from bidilog.core.filters import ALWAYS, AlwaysMatch, FilterBy, LevelEquals, parse_filter
from bidilog.core.log_entry import LogLevel, normalize


class TestLevelEquals:
    """Tests for FilterBy.log_level."""

    def test_matching_level(self) -> None:
        assert FilterBy.log_level("info").matches(normalize(console_params()))

    def test_other_level(self) -> None:
        assert not FilterBy.log_level("error").matches(normalize(console_params()))

    def test_case_sensitive(self) -> None:
        assert not FilterBy.log_level("INFO").matches(normalize(console_params()))

    def test_no_threshold(self) -> None:
        warn_filter = FilterBy.log_level("warn")

        assert not warn_filter(normalize(exception_params()))

    def test_accepts_enum(self) -> None:
        level_filter = FilterBy.log_level(LogLevel.ERROR)

        assert level_filter == LevelEquals(level="error")
        assert level_filter(normalize(exception_params()))

    def test_unknown_level_string(self) -> None:
        params = console_params(level="verbose")

        assert FilterBy.log_level("verbose")(normalize(params))


class TestFilterValues:
    """Filters are plain values."""

    def test_always(self) -> None:
        assert ALWAYS(normalize(console_params()))
        assert ALWAYS(normalize(exception_params()))

    def test_equality_and_hash(self) -> None:
        assert FilterBy.log_level("info") == FilterBy.log_level("info")
        assert hash(FilterBy.log_level("info")) == hash(LevelEquals(level="info"))

    @pytest.mark.parametrize("log_filter", [AlwaysMatch(), LevelEquals(level="warn")])
    def test_dump_and_parse(self, log_filter) -> None:
        assert parse_filter(log_filter.model_dump()) == log_filter

    def test_parse_tagged(self) -> None:
        parsed = parse_filter({"kind": "level_equals", "level": "error"})

        assert isinstance(parsed, LevelEquals)
        assert parsed.level == "error"
