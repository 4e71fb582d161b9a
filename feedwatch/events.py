"""Listener registration.

A minimal publish/subscribe channel: register a handler, receive a call per
published value, unsubscribe on teardown.  Used for version-marker updates
and aggregation progress.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class Subscription:
    """Handle returned by :meth:`EventChannel.subscribe`."""

    def __init__(self, channel: EventChannel, handler: Handler) -> None:
        self._channel = channel
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop receiving values.  Safe to call more than once."""
        if self._active:
            self._channel._remove(self._handler)
            self._active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class EventChannel(Generic[T]):
    """Fan a published value out to every registered handler.

    Handlers run synchronously in registration order.  A handler that
    raises is logged and skipped; the remaining handlers still run.
    """

    def __init__(self, name: str = "channel") -> None:
        self.name = name
        self._handlers: list[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> Subscription:
        with self._lock:
            self._handlers.append(handler)
        return Subscription(self, handler)

    def publish(self, value: T) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(value)
            except Exception:
                logger.exception("Handler on %s failed for %r", self.name, value)

    def _remove(self, handler: Handler) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
