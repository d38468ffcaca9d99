"""Publish/subscribe channels for session observers.

Every observable surface in tether (state changes, errors, server notices,
registrations, lifecycle and network signals) is an EventChannel. Listeners
are plain callables or coroutine functions and receive events in the order
they were published, one listener at a time, in subscription order.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], Awaitable[None] | None]

logger = logging.getLogger(__name__)


class Subscription(Generic[T]):
    """Handle returned by EventChannel.subscribe().

    Cancelling is idempotent and takes effect immediately, including for an
    event that is currently being delivered to earlier listeners.
    """

    def __init__(self, channel: "EventChannel[T]", listener: Listener[T]):
        self._channel = channel
        self.listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop receiving events. Safe to call multiple times."""
        if not self._active:
            return
        self._active = False
        self._channel._remove(self)


class EventChannel(Generic[T]):
    """Ordered, awaitable broadcast of events of a single type."""

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscriptions: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, listener: Listener[T]) -> Subscription[T]:
        """Register a listener for future events.

        Subscribing to a closed channel returns an already cancelled
        subscription.
        """
        subscription = Subscription(self, listener)
        if self._closed:
            subscription._active = False
            return subscription

        self._subscriptions.append(subscription)
        return subscription

    async def publish(self, event: T) -> None:
        """Deliver an event to every active listener.

        Waits for each listener in turn. A failing listener is logged and does
        not stop delivery to the others. Publishing on a closed channel is a
        no-op.
        """
        if self._closed:
            return

        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                result: Any = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Listener on '{self.name}' failed for {event!r}: {e}")

    def close(self) -> None:
        """Cancel all subscriptions and reject further events."""
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription.cancel()
        self._subscriptions.clear()

    def _remove(self, subscription: Subscription[T]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
