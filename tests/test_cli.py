"""Tests for the bidilog CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from bidilog.cli import _normalize_url, _parse_duration, app
from bidilog.core.exceptions import DriverNotFoundError

runner = CliRunner()


class TestHelpers:
    """Tests for CLI argument helpers."""

    @pytest.mark.parametrize(
        ("value", "seconds"),
        [("30s", 30.0), ("5m", 300.0), ("1h", 3600.0), ("2.5", 2.5), (" 10S ", 10.0)],
    )
    def test_parse_duration(self, value: str, seconds: float) -> None:
        assert _parse_duration(value) == seconds

    def test_normalize_url(self) -> None:
        assert _normalize_url("localhost:3000") == "http://localhost:3000"
        assert _normalize_url("https://example.com") == "https://example.com"
        assert _normalize_url("about:blank") == "about:blank"


class TestCommands:
    """Tests for command wiring."""

    def test_help(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "stream" in result.output
        assert "driver" in result.output

    def test_doctor_without_driver(self) -> None:
        with patch("bidilog.cli.find_driver", side_effect=DriverNotFoundError("geckodriver not found")):
            result = runner.invoke(app, ["doctor"])

        assert result.exit_code == 1
        assert "geckodriver not found" in result.output

    def test_doctor_driver_not_running(self) -> None:
        with (
            patch("bidilog.cli.find_driver", return_value="/usr/bin/geckodriver"),
            patch("bidilog.cli.get_driver_version", return_value="geckodriver 0.35.0"),
            patch("bidilog.cli.check_driver_status", new=AsyncMock(return_value=False)),
        ):
            result = runner.invoke(app, ["doctor", "--port", "4455"])

        assert result.exit_code == 0
        assert "geckodriver 0.35.0" in result.output
        assert "not available on port 4455" in result.output

    def test_stream_without_driver(self) -> None:
        create = AsyncMock(side_effect=DriverNotFoundError("Cannot connect to WebDriver"))
        with patch("bidilog.cli.WebDriverSession.create", new=create):
            result = runner.invoke(app, ["stream", "--driver-url", "http://127.0.0.1:1", "--level", "error"])

        assert result.exit_code == 1
        assert "Cannot connect to WebDriver" in result.output
        create.assert_awaited_once()

    def test_stream_without_browsing_context(self) -> None:
        session = MagicMock(capabilities={"webSocketUrl": "ws://127.0.0.1:1/session"}, delete=AsyncMock())
        client = MagicMock(get_tree=AsyncMock(return_value=[]), navigate=AsyncMock(), close=AsyncMock())
        inspector = MagicMock(on=AsyncMock(), close=AsyncMock())
        with (
            patch("bidilog.cli.WebDriverSession.create", new=AsyncMock(return_value=session)),
            patch("bidilog.cli.open_channel", new=AsyncMock(return_value=client)),
            patch("bidilog.cli.log_inspector", new=AsyncMock(return_value=inspector)),
        ):
            result = runner.invoke(app, ["stream", "--url", "localhost:3000"])

        assert result.exit_code == 1
        assert "no browsing context" in result.output
        client.navigate.assert_not_awaited()
        client.close.assert_awaited_once()
        session.delete.assert_awaited_once()

    def test_stream_rejects_unknown_category(self) -> None:
        result = runner.invoke(app, ["stream", "--category", "network"])

        assert result.exit_code != 0

    def test_driver_kill(self) -> None:
        with patch("bidilog.cli.kill_driver", return_value=2) as kill:
            result = runner.invoke(app, ["driver", "kill", "--port", "4455"])

        assert result.exit_code == 0
        assert "Killed 2" in result.output
        kill.assert_called_once_with(4455)

    def test_driver_kill_nothing(self) -> None:
        with patch("bidilog.cli.kill_driver", return_value=0):
            result = runner.invoke(app, ["driver", "kill"])

        assert "No driver processes" in result.output
