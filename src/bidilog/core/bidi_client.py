"""WebDriver BiDi client for bidilog.

Provides the async WebSocket channel to a browser session: command/response
correlation and ordered delivery of events to raw handlers.
"""

import asyncio
import inspect
import itertools
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import websockets
from websockets import ConnectionClosed
from websockets.asyncio.client import ClientConnection

from bidilog.core.exceptions import BiDiConnectionError, BiDiProtocolError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0

RawHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


@dataclass(frozen=True)
class RawSubscription:
    """Handle for a raw event handler registered on the channel."""

    id: int
    event: str


class BiDiClient:
    """Async client for a WebDriver BiDi WebSocket.

    Events are queued by the receive loop and handed to raw handlers by a
    single dispatcher task, so one event is fully handled before the next.
    """

    def __init__(self, url: str, *, command_timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        self.url = url
        self.command_timeout = command_timeout
        self.session_id: str | None = None
        self._ws: ClientConnection | None = None
        self._message_id = 0
        self._pending_commands: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._event_queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._handlers: dict[str, list[tuple[RawSubscription, RawHandler]]] = {}
        self._handler_ids = itertools.count(1)
        self._recv_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._event_holders: dict[tuple[tuple[str, ...], tuple[str, ...]], int] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._recv_task is not None and not self._recv_task.done()

    async def connect(self) -> None:
        """Open the WebSocket and start the background tasks."""
        if self._ws is not None:
            return
        try:
            self._ws = await websockets.connect(self.url, max_size=None)
        except Exception as e:
            raise BiDiConnectionError(f"Failed to connect to {self.url}: {e}") from e

        self._recv_task = asyncio.create_task(self._receive_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.debug("Connected to %s", self.url)

    async def close(self) -> None:
        """Release handlers, pending commands and the socket. Idempotent."""
        self._handlers.clear()
        current = asyncio.current_task()
        tasks = (self._recv_task, self._dispatch_task)

        for task in tasks:
            if task and task is not current:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Background task for %s failed", self.url)
        self._recv_task = None
        self._dispatch_task = None

        # Events that arrived but were not dispatched are dropped.
        while not self._event_queue.empty():
            self._event_queue.get_nowait()

        for future in self._pending_commands.values():
            if not future.done():
                future.set_exception(BiDiConnectionError("Connection closed"))
        self._pending_commands.clear()
        self._event_holders.clear()

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.debug("Closed connection to %s", self.url)

        # Closed from inside a handler: stop the dispatcher once close has finished.
        if current is not None and current in tasks:
            current.cancel()

    async def __aenter__(self) -> "BiDiClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def subscribe_raw(self, event: str, handler: RawHandler) -> RawSubscription:
        """Call ``handler(params)`` for every ``event`` received, in registration order."""
        handle = RawSubscription(id=next(self._handler_ids), event=event)
        self._handlers.setdefault(event, []).append((handle, handler))
        return handle

    def unsubscribe_raw(self, handle: RawSubscription) -> None:
        handlers = self._handlers.get(handle.event, [])
        self._handlers[handle.event] = [(h, fn) for h, fn in handlers if h != handle]
        if not self._handlers[handle.event]:
            del self._handlers[handle.event]

    async def send_command(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a BiDi command and wait for its result."""
        if not self._ws:
            raise BiDiConnectionError("Not connected to a BiDi session")

        self._message_id += 1
        msg_id = self._message_id

        message = {"id": msg_id, "method": method, "params": dict(params or {})}

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending_commands[msg_id] = future

        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._pending_commands.pop(msg_id, None)
            raise BiDiConnectionError(f"Connection closed while sending {method}") from e

        try:
            return await asyncio.wait_for(future, timeout=self.command_timeout)
        except TimeoutError:
            self._pending_commands.pop(msg_id, None)
            raise BiDiConnectionError(f"Timeout waiting for response to {method}") from None

    async def new_session(self, capabilities: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Start a BiDi-only session (direct connection to a browser)."""
        result = await self.send_command(
            "session.new", {"capabilities": dict(capabilities or {})}
        )
        self.session_id = result.get("sessionId")
        return result

    async def end_session(self) -> None:
        await self.send_command("session.end")
        self.session_id = None

    async def status(self) -> dict[str, Any]:
        return await self.send_command("session.status")

    async def subscribe(
        self,
        events: Iterable[str],
        contexts: Iterable[str] | None = None,
    ) -> str | None:
        """Subscribe to protocol events. Returns the subscription id when the browser assigns one."""
        params: dict[str, Any] = {"events": list(events)}
        if contexts:
            params["contexts"] = list(contexts)
        result = await self.send_command("session.subscribe", params)
        return result.get("subscription")

    async def unsubscribe(
        self,
        *,
        subscription_id: str | None = None,
        events: Iterable[str] | None = None,
        contexts: Iterable[str] | None = None,
    ) -> None:
        if subscription_id is not None:
            await self.send_command("session.unsubscribe", {"subscriptions": [subscription_id]})
            return
        params: dict[str, Any] = {"events": list(events or [])}
        if contexts:
            params["contexts"] = list(contexts)
        await self.send_command("session.unsubscribe", params)

    async def acquire_events(
        self,
        events: Iterable[str],
        contexts: Iterable[str] | None = None,
    ) -> str | None:
        """Subscribe on behalf of one holder and return the subscription id, if any.

        When the browser assigns no id, several holders share the same
        event-based subscription; it is counted so that ``release_events``
        only removes it for the last one.
        """
        events = list(events)
        contexts = list(contexts) if contexts else None
        subscription_id = await self.subscribe(events, contexts)
        if subscription_id is None:
            key = _events_key(events, contexts)
            self._event_holders[key] = self._event_holders.get(key, 0) + 1
        return subscription_id

    async def release_events(
        self,
        events: Iterable[str],
        contexts: Iterable[str] | None = None,
        *,
        subscription_id: str | None = None,
    ) -> None:
        """Undo one ``acquire_events`` call."""
        if subscription_id is not None:
            await self.unsubscribe(subscription_id=subscription_id)
            return

        events = list(events)
        contexts = list(contexts) if contexts else None
        key = _events_key(events, contexts)
        remaining = self._event_holders.get(key, 0) - 1
        if remaining > 0:
            self._event_holders[key] = remaining
            logger.debug("Keeping subscription to %s for %d other holder(s)", events, remaining)
            return
        self._event_holders.pop(key, None)
        await self.unsubscribe(events=events, contexts=contexts)

    async def get_tree(self) -> list[dict[str, Any]]:
        """List top-level browsing contexts."""
        result = await self.send_command("browsingContext.getTree")
        contexts: list[dict[str, Any]] = result.get("contexts", [])
        return contexts

    async def navigate(self, context: str, url: str, wait: str = "complete") -> dict[str, Any]:
        return await self.send_command(
            "browsingContext.navigate", {"context": context, "url": url, "wait": wait}
        )

    async def evaluate(
        self,
        context: str,
        expression: str,
        *,
        await_promise: bool = True,
    ) -> dict[str, Any]:
        """Evaluate JavaScript in a browsing context."""
        return await self.send_command(
            "script.evaluate",
            {
                "expression": expression,
                "target": {"context": context},
                "awaitPromise": await_promise,
            },
        )

    async def _receive_loop(self) -> None:
        """Background task to receive WebSocket messages."""
        if not self._ws:
            return

        try:
            async for raw_message in self._ws:
                if isinstance(raw_message, bytes):
                    raw_message = raw_message.decode("utf-8")

                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON message: %.200s", raw_message)
                    continue
                if not isinstance(message, dict):
                    logger.warning("Ignoring non-object message: %.200s", raw_message)
                    continue

                if message.get("type") == "event" or ("method" in message and "id" not in message):
                    await self._event_queue.put(message)
                    continue

                msg_id = message.get("id")
                future = self._pending_commands.pop(msg_id, None) if isinstance(msg_id, int) else None
                if future is None or future.done():
                    if message.get("type") == "error":
                        logger.warning(
                            "BiDi error without pending command: %s", message.get("message")
                        )
                    continue

                if message.get("type") == "error" or "error" in message:
                    future.set_exception(
                        BiDiProtocolError(message.get("error", "unknown error"), message.get("message", ""))
                    )
                else:
                    future.set_result(message.get("result", {}))

        except ConnectionClosed:
            logger.debug("Connection to %s closed by peer", self.url)
        finally:
            for future in self._pending_commands.values():
                if not future.done():
                    future.set_exception(BiDiConnectionError("Connection closed"))
            self._pending_commands.clear()

    async def _dispatch_loop(self) -> None:
        """Hand queued events to raw handlers, one event at a time."""
        while True:
            message = await self._event_queue.get()
            method = message.get("method", "")
            params = message.get("params", {})
            if not isinstance(method, str):
                logger.warning("Ignoring event with non-string method: %r", method)
                continue

            for handle, handler in list(self._handlers.get(method, [])):
                # Handlers removed during dispatch of this event are skipped.
                if not any(h == handle for h, _ in self._handlers.get(method, [])):
                    continue
                try:
                    result = handler(params)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Handler %d for %s failed", handle.id, method)


def _events_key(events: Iterable[str], contexts: Iterable[str] | None) -> tuple[tuple[str, ...], tuple[str, ...]]:
    return tuple(sorted(events)), tuple(sorted(contexts or ()))

def capabilities_websocket_url(session: Any) -> str:
    """Extract the BiDi WebSocket URL from session capabilities.

    ``session`` may be a capabilities mapping, a classic new-session response
    value, or any object with a ``capabilities`` attribute.
    """
    capabilities = getattr(session, "capabilities", session)
    if isinstance(capabilities, Mapping) and "capabilities" in capabilities:
        capabilities = capabilities["capabilities"]
    url = capabilities.get("webSocketUrl") if isinstance(capabilities, Mapping) else None
    if not isinstance(url, str) or not url:
        raise BiDiConnectionError(
            "Session has no 'webSocketUrl' capability. Was BiDi enabled when the session was created?"
        )
    return url


async def open_channel(session: Any, *, command_timeout: float = DEFAULT_COMMAND_TIMEOUT) -> BiDiClient:
    """Open a connected BiDiClient for a BiDi-enabled WebDriver session."""
    client = BiDiClient(capabilities_websocket_url(session), command_timeout=command_timeout)
    await client.connect()
    return client
