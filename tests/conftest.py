"""Pytest configuration for bidilog tests."""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest
from websockets import ConnectionClosed
from websockets.asyncio.server import ServerConnection, serve

from bidilog.core.bidi_client import BiDiClient
from bidilog.core.log_entry import LOG_ENTRY_ADDED

SENTINEL_EVENT = "test.sentinel"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (require a WebDriver server)",
    )


def console_params(text: str = "Hello, world!", level: str = "info", method: str = "log") -> dict[str, Any]:
    """log.entryAdded params for ``console.<method>(text)``."""
    return {
        "type": "console",
        "level": level,
        "method": method,
        "text": text,
        "timestamp": 1702828800000,
        "source": {"realm": "realm-1", "context": "context-1"},
        "args": [{"type": "string", "value": text}],
        "stackTrace": {
            "callFrames": [
                {"functionName": "onclick", "url": "http://localhost/logEntryAdded.html", "lineNumber": 1, "columnNumber": 9}
            ]
        },
    }


def exception_params(text: str = "Error: Not working") -> dict[str, Any]:
    """log.entryAdded params for an uncaught error thrown three frames deep."""
    return {
        "type": "javascript",
        "level": "error",
        "text": text,
        "timestamp": 1702828800500,
        "source": {"realm": "realm-1", "context": "context-1"},
        "stackTrace": {
            "callFrames": [
                {"functionName": "createError", "url": "http://localhost/logEntryAdded.html", "lineNumber": 33, "columnNumber": 12},
                {"functionName": "onClick", "url": "http://localhost/logEntryAdded.html", "lineNumber": 40, "columnNumber": 6},
                {"functionName": "onclick", "url": "http://localhost/logEntryAdded.html", "lineNumber": 1, "columnNumber": 0},
            ]
        },
    }


class FakeBiDiServer:
    """Minimal BiDi endpoint: acknowledges commands and pushes events on demand."""

    def __init__(self) -> None:
        self.url = ""
        self.commands: list[dict[str, Any]] = []
        self.responses: dict[str, dict[str, Any]] = {
            "session.subscribe": {"subscription": "subscription-1"},
            "session.status": {"ready": True, "message": "ok"},
        }
        self.errors: dict[str, tuple[str, str]] = {}
        self.silent: set[str] = set()
        self.connections: list[ServerConnection] = []
        self._connected = asyncio.Event()

    @property
    def methods(self) -> list[str]:
        return [command["method"] for command in self.commands]

    async def handler(self, connection: ServerConnection) -> None:
        self.connections.append(connection)
        self._connected.set()
        try:
            async for raw in connection:
                message = json.loads(raw)
                self.commands.append(message)
                method = message["method"]
                if method in self.silent:
                    continue
                if method in self.errors:
                    error, text = self.errors[method]
                    reply = {"type": "error", "id": message["id"], "error": error, "message": text}
                else:
                    reply = {"type": "success", "id": message["id"], "result": self.responses.get(method, {})}
                await connection.send(json.dumps(reply))
        except ConnectionClosed:
            pass

    async def send_raw(self, data: str) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=5.0)
        for connection in self.connections:
            with contextlib.suppress(ConnectionClosed):
                await connection.send(data)

    async def emit(self, method: str, params: dict[str, Any]) -> None:
        await self.send_raw(json.dumps({"type": "event", "method": method, "params": params}))

    async def emit_log(self, params: dict[str, Any]) -> None:
        await self.emit(LOG_ENTRY_ADDED, params)

    async def drain(self, client: BiDiClient) -> None:
        """Wait until every event emitted so far has been dispatched by ``client``."""
        seen = asyncio.Event()
        handle = client.subscribe_raw(SENTINEL_EVENT, lambda params: seen.set())
        try:
            await self.emit(SENTINEL_EVENT, {})
            await asyncio.wait_for(seen.wait(), timeout=5.0)
        finally:
            client.unsubscribe_raw(handle)


@pytest.fixture
async def bidi_server() -> AsyncIterator[FakeBiDiServer]:
    server = FakeBiDiServer()
    async with serve(server.handler, "127.0.0.1", 0) as ws_server:
        port = next(iter(ws_server.sockets)).getsockname()[1]
        server.url = f"ws://127.0.0.1:{port}/session"
        yield server


@pytest.fixture
async def client(bidi_server: FakeBiDiServer) -> AsyncIterator[BiDiClient]:
    client = BiDiClient(bidi_server.url, command_timeout=5.0)
    await client.connect()
    yield client
    await client.close()
