"""Log inspector: category callbacks for BiDi ``log.entryAdded`` events."""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from bidilog.core.bidi_client import BiDiClient, RawSubscription
from bidilog.core.exceptions import BiDiConnectionError, BidilogError, MalformedEventError
from bidilog.core.filters import LogFilter
from bidilog.core.log_entry import LOG_ENTRY_ADDED, normalize
from bidilog.core.registry import (
    Category,
    ErrorHandler,
    LogCallback,
    Subscription,
    SubscriptionRegistry,
)

logger = logging.getLogger(__name__)


class LogInspector:
    """Routes log entries from one BiDi session to registered callbacks.

    Each inspector keeps its own registry and protocol subscription, so several
    inspectors can share a client without affecting each other. Subscriptions
    the browser gives no id for are reference counted on the client.

    Use ``LogInspector.create`` (or ``log_inspector``) rather than the
    constructor; it checks that the channel is usable.
    """

    def __init__(
        self,
        client: BiDiClient,
        browsing_contexts: Iterable[str] | None = None,
        *,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._client = client
        self._contexts = list(browsing_contexts) if browsing_contexts else None
        self._registry = SubscriptionRegistry(on_error=on_error)
        self._raw_handle: RawSubscription | None = None
        self._subscribed = False
        self._subscription_id: str | None = None
        self._closed = False
        self._subscribe_lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        client: BiDiClient,
        browsing_contexts: Iterable[str] | None = None,
        *,
        on_error: ErrorHandler | None = None,
    ) -> "LogInspector":
        if not client.connected:
            raise BiDiConnectionError("BiDi client is not connected; call connect() or open_channel() first")
        return cls(client, browsing_contexts, on_error=on_error)

    @property
    def closed(self) -> bool:
        return self._closed

    async def on_console_entry(self, callback: LogCallback, filter_by: LogFilter | None = None) -> Subscription:
        return await self.on(Category.CONSOLE, callback, filter_by)

    async def on_javascript_log(self, callback: LogCallback, filter_by: LogFilter | None = None) -> Subscription:
        return await self.on(Category.JAVASCRIPT_LOG, callback, filter_by)

    async def on_javascript_exception(
        self, callback: LogCallback, filter_by: LogFilter | None = None
    ) -> Subscription:
        return await self.on(Category.JAVASCRIPT_EXCEPTION, callback, filter_by)

    async def on_log(self, callback: LogCallback, filter_by: LogFilter | None = None) -> Subscription:
        """Receive entries of every type."""
        return await self.on(Category.ANY, callback, filter_by)

    async def close(self) -> None:
        """Stop all callbacks and release the protocol subscription. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._registry.close()

        if self._raw_handle is not None:
            self._client.unsubscribe_raw(self._raw_handle)
            self._raw_handle = None

        if self._subscribed and self._client.connected:
            try:
                await self._client.release_events(
                    [LOG_ENTRY_ADDED], self._contexts, subscription_id=self._subscription_id
                )
            except BidilogError as e:
                logger.warning("Failed to unsubscribe from %s: %s", LOG_ENTRY_ADDED, e)
        self._subscribed = False

    async def __aenter__(self) -> "LogInspector":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def on(
        self,
        category: Category,
        callback: LogCallback,
        filter_by: LogFilter | None,
    ) -> Subscription:
        if self._closed:
            raise BiDiConnectionError("Log inspector is closed")
        await self._ensure_subscribed()
        return self._registry.register(category, callback, filter_by)

    async def _ensure_subscribed(self) -> None:
        async with self._subscribe_lock:
            if not self._subscribed:
                await self._subscribe()

    async def _subscribe(self) -> None:
        # Install the handler first so no event is missed once the browser acks.
        self._raw_handle = self._client.subscribe_raw(LOG_ENTRY_ADDED, self._handle_event)
        try:
            self._subscription_id = await self._client.acquire_events([LOG_ENTRY_ADDED], self._contexts)
        except BidilogError:
            self._client.unsubscribe_raw(self._raw_handle)
            self._raw_handle = None
            raise
        self._subscribed = True

    async def _handle_event(self, params: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            entry = normalize(params)
        except MalformedEventError as e:
            logger.warning("Skipping malformed %s event: %s", LOG_ENTRY_ADDED, e)
            return
        await self._registry.dispatch(entry)


async def log_inspector(
    client: BiDiClient,
    browsing_contexts: Iterable[str] | None = None,
    *,
    on_error: ErrorHandler | None = None,
) -> LogInspector:
    """Create a LogInspector bound to a connected client."""
    return await LogInspector.create(client, browsing_contexts, on_error=on_error)
