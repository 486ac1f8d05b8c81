"""Subscription registry that routes log entries to callbacks by category."""

import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from bidilog.core.exceptions import CallbackError
from bidilog.core.filters import ALWAYS, LogFilter
from bidilog.core.log_entry import LogEntry, LogType

logger = logging.getLogger(__name__)

LogCallback = Callable[[LogEntry], Awaitable[Any] | Any]
ErrorHandler = Callable[[CallbackError], None]


class Category(str, Enum):
    """Which entries a subscription listens to."""

    CONSOLE = "console"
    JAVASCRIPT_LOG = "javascript_log"
    JAVASCRIPT_EXCEPTION = "javascript_exception"
    ANY = "any"


def categories_for(entry: LogEntry) -> frozenset[Category]:
    """Return every category an entry is delivered to.

    Categories overlap: a console entry also reaches ``ANY`` listeners, and a
    javascript exception reaches both javascript categories.
    """
    tags = {Category.ANY}
    if entry.type == LogType.CONSOLE:
        tags.add(Category.CONSOLE)
    elif entry.type == LogType.JAVASCRIPT:
        tags.add(Category.JAVASCRIPT_LOG)
        if entry.is_exception:
            tags.add(Category.JAVASCRIPT_EXCEPTION)
    return frozenset(tags)


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``register``; call ``unsubscribe`` to stop delivery."""

    id: int
    category: Category
    callback: LogCallback
    filter: LogFilter = ALWAYS
    active: bool = True
    _registry: "SubscriptionRegistry | None" = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        if self._registry is not None:
            self._registry.unregister(self)


def _log_callback_error(error: CallbackError) -> None:
    logger.error("Log callback failed for %s entry", error.entry.type, exc_info=error.cause)


class SubscriptionRegistry:
    """Ordered (category, filter, callback) subscriptions for one inspector."""

    def __init__(self, on_error: ErrorHandler | None = None) -> None:
        self._subscriptions: list[Subscription] = []
        self._ids = itertools.count(1)
        self._on_error = on_error or _log_callback_error
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._subscriptions)

    def register(
        self,
        category: Category,
        callback: LogCallback,
        filter_by: LogFilter | None = None,
    ) -> Subscription:
        """Add a subscription. Multiple callbacks per category are allowed."""
        if self._closed:
            raise RuntimeError("Cannot register on a closed registry")
        if not callable(callback):
            raise TypeError(f"callback must be callable, got {type(callback).__name__}")

        subscription = Subscription(
            id=next(self._ids),
            category=Category(category),
            callback=callback,
            filter=filter_by if filter_by is not None else ALWAYS,
            _registry=self,
        )
        self._subscriptions.append(subscription)
        logger.debug("Registered subscription %d for %s", subscription.id, subscription.category.value)
        return subscription

    def unregister(self, subscription: Subscription) -> None:
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def dispatch(self, entry: LogEntry) -> int:
        """Deliver ``entry`` to matching subscriptions in registration order.

        Returns the number of callbacks invoked. A failing callback is reported
        to the error handler and does not stop delivery to the others.
        """
        tags = categories_for(entry)
        delivered = 0

        for subscription in list(self._subscriptions):
            # Closing or unsubscribing from inside a callback takes effect immediately.
            if self._closed or not subscription.active:
                continue
            if subscription.category not in tags:
                continue
            if not subscription.filter.matches(entry):
                continue

            delivered += 1
            try:
                result = subscription.callback(entry)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                try:
                    self._on_error(CallbackError(subscription, entry, e))
                except Exception:
                    logger.exception("Error handler failed for subscription %d", subscription.id)

        return delivered

    def close(self) -> None:
        """Drop all subscriptions. Safe to call more than once."""
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()
        self._closed = True
