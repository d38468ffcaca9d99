"""Automatic reconnection for a single client session.

The manager observes its session's state changes and the network monitor and
decides whether and when to call session.connect() again. It keeps at most one
pending timer and at most one attempt in flight. Scheduling always cancels the
pending timer first, and a cancelled timer never reaches the session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tether.client.errors import ReconnectionExhaustedError
from tether.client.state import ConnectionState, ReconnectPolicy
from tether.platform.network import ConnectivityChange, NetworkMonitor
from tether.shared.events import EventChannel, Subscription

if TYPE_CHECKING:
    from tether.client.session import ClientSession

MAX_BACKOFF = 30.0
"""Upper bound for exponential backoff, in seconds."""

# Largest exponent for which 2.0 ** n is a finite float.
_MAX_EXPONENT = 1023

# States in which there is nothing to reconnect.
_SETTLED_STATES = (
    ConnectionState.CONNECTED,
    ConnectionState.CONNECTING,
    ConnectionState.PAUSED,
)


def compute_delay(policy: ReconnectPolicy, base_interval: float, attempt: int) -> float:
    """Delay before the given 1-indexed attempt.

    Linear waits `base_interval` every time. Exponential waits
    `base_interval * 2 ** (attempt - 1)`, capped at MAX_BACKOFF.

    Raises:
        ValueError: For ReconnectPolicy.NONE or a non-positive attempt
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if policy is ReconnectPolicy.LINEAR:
        return base_interval
    if policy is ReconnectPolicy.EXPONENTIAL:
        return min(base_interval * 2.0 ** min(attempt - 1, _MAX_EXPONENT), MAX_BACKOFF)
    raise ValueError(f"No backoff delay for policy '{policy.value}'")


@dataclass
class ReconnectionContext:
    """Reconnection bookkeeping for one session."""

    policy: ReconnectPolicy = ReconnectPolicy.EXPONENTIAL
    max_attempts: int = 5
    base_interval: float = 5.0

    attempt: int = 0
    """Attempts scheduled since the last successful connection."""

    timer: asyncio.Task[None] | None = None
    """The single pending attempt, while it is still waiting."""

    in_progress: bool = False
    background: bool = False
    """Suppresses all automatic scheduling while the app is backgrounded."""

    last_delay: float | None = None

    @property
    def pending(self) -> bool:
        return self.timer is not None and not self.timer.done()

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class ReconnectionManager:
    """Decides when a session should try to connect again."""

    def __init__(
        self,
        session: ClientSession,
        auto_reconnect: bool = True,
        max_attempts: int = 5,
        interval: float = 5.0,
        policy: ReconnectPolicy = ReconnectPolicy.EXPONENTIAL,
        network: NetworkMonitor | None = None,
    ):
        self.session = session
        self.auto_reconnect = auto_reconnect
        self.context = ReconnectionContext(
            policy=policy, max_attempts=max_attempts, base_interval=interval
        )
        self.exhausted: EventChannel[int] = EventChannel(
            f"reconnection.exhausted.{session.id}"
        )
        self._disposed = False
        self._attempt_task: asyncio.Task[None] | None = None
        self._state_subscription: Subscription | None = session.state_changes.subscribe(
            self._handle_state_change
        )
        self._network_subscription: Subscription | None = None
        if auto_reconnect and network is not None:
            self._network_subscription = network.subscribe(self.handle_network_change)
        self.logger = logging.getLogger("tether.client.reconnection")

    @property
    def policy(self) -> ReconnectPolicy:
        return self.context.policy

    def set_policy(self, policy: ReconnectPolicy) -> None:
        self.context.policy = policy

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ================================
    # Triggers
    # ================================

    async def _handle_state_change(self, state: ConnectionState) -> None:
        if self._disposed:
            return

        if state in (ConnectionState.DISCONNECTED, ConnectionState.ERROR):
            if self._may_trigger() and not self.context.pending:
                await self._schedule()
        elif state is ConnectionState.CONNECTED:
            self.context.attempt = 0
            self._cancel_pending()
        elif state is ConnectionState.PAUSED:
            self._cancel_pending()

    async def handle_network_change(self, change: ConnectivityChange) -> None:
        """React to a connectivity change.

        Regaining the network while the session is down schedules an immediate
        attempt, replacing any pending backoff timer.
        """
        if self._disposed:
            return
        if not change.reachable:
            self.logger.debug(f"Network lost for client '{self.session.id}'")
            return

        if self._may_trigger() and self.session.state not in _SETTLED_STATES:
            self.logger.debug(
                f"Network regained, reconnecting client '{self.session.id}' now"
            )
            await self._schedule(immediate=True)

    async def set_background_mode(self, enabled: bool) -> None:
        """Suppress or re-allow automatic reconnection.

        Entering background mode cancels the pending timer. Leaving it
        re-evaluates whether an attempt is needed.
        """
        if self._disposed:
            return
        self.context.background = enabled

        if enabled:
            self._cancel_pending()
            return

        if (
            self._may_trigger()
            and not self.context.pending
            and self.session.state not in _SETTLED_STATES
        ):
            await self._schedule()

    def _may_trigger(self) -> bool:
        return (
            self.auto_reconnect
            and not self.context.background
            and not self.context.in_progress
        )

    # ================================
    # Scheduling
    # ================================

    async def schedule_reconnect(self, immediate: bool = False) -> bool:
        """Schedule an attempt now, replacing any pending one.

        Returns:
            True if an attempt was scheduled.
        """
        return await self._schedule(immediate=immediate)

    async def reconnect_now(self) -> bool:
        """Schedule an immediate attempt, even under ReconnectPolicy.NONE.

        Still subject to background mode, disposal and the attempt budget.

        Returns:
            True if an attempt was scheduled.
        """
        return await self._schedule(immediate=True, forced=True)

    async def _schedule(self, immediate: bool = False, forced: bool = False) -> bool:
        context = self.context
        if self._disposed or context.in_progress or context.background:
            return False
        if context.policy is ReconnectPolicy.NONE and not forced:
            return False

        self._cancel_pending()

        if context.exhausted:
            await self._report_exhaustion()
            return False

        context.attempt += 1
        if immediate or forced:
            delay = 0.0
        else:
            delay = compute_delay(context.policy, context.base_interval, context.attempt)
        context.last_delay = delay

        self.logger.debug(
            f"Scheduling reconnect of client '{self.session.id}' in {delay:.2f}s "
            f"(attempt {context.attempt}/{context.max_attempts})"
        )
        context.timer = asyncio.create_task(
            self._fire_after(delay),
            name=f"reconnect_{self.session.id}_{context.attempt}",
        )
        return True

    def _cancel_pending(self) -> None:
        timer = self.context.timer
        self.context.timer = None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)

        # From here on the attempt is no longer pending and cannot be cancelled.
        if self.context.timer is asyncio.current_task():
            self.context.timer = None
        self._attempt_task = asyncio.current_task()
        try:
            await self._attempt_reconnect()
        finally:
            self._attempt_task = None

    async def _attempt_reconnect(self) -> None:
        if self._disposed or self.context.background:
            return

        if self.session.state in _SETTLED_STATES:
            self.logger.debug(
                f"Skipping reconnect of client '{self.session.id}': "
                f"already {self.session.state.value}"
            )
            return

        transport = self.session.transport
        if transport is None:
            self.logger.debug(
                f"No transport available to reconnect client '{self.session.id}'"
            )
            return

        self.context.in_progress = True
        self.logger.debug(f"Attempting to reconnect client '{self.session.id}'")
        try:
            await self.session.connect(transport)
        except Exception as e:
            self.context.in_progress = False
            self.logger.warning(f"Reconnect of client '{self.session.id}' failed: {e}")
            await self._schedule()
        else:
            self.context.in_progress = False
            self.logger.info(f"Reconnected client '{self.session.id}'")

    async def _report_exhaustion(self) -> None:
        attempts = self.context.attempt
        self.logger.warning(
            f"Maximum reconnection attempts reached for client '{self.session.id}' "
            f"({attempts})"
        )
        await self.exhausted.publish(attempts)
        await self.session.errors.publish(
            ReconnectionExhaustedError(self.session.id, attempts)
        )

    # ================================
    # Disposal
    # ================================

    async def dispose(self) -> None:
        """Cancel the pending timer and stop listening. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True
        self._cancel_pending()

        if self._state_subscription is not None:
            self._state_subscription.cancel()
            self._state_subscription = None
        if self._network_subscription is not None:
            self._network_subscription.cancel()
            self._network_subscription = None
        self.exhausted.close()
