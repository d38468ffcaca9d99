"""Lifecycle-aware client session for one MCP server.

A ClientSession owns one protocol session and moves it through the connection
states:

    disconnected -> connecting -> connected <-> paused
                         |            |
                         +-> error <--+

Transitions are serialized by a per-session lock. A transition, its side
effects and the delivery of its state event to every subscriber complete
before the next transition starts, so state subscribers must never await
connect(), disconnect() or dispose() of the same session inline. Schedule a
task instead, the way the reconnection manager does.

Lifecycle signals from the host application pause, resume or disconnect the
session and adjust its resource usage. Automatic reconnection is delegated to
the session's ReconnectionManager.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from tether.client.config import ClientConfig, ConfigStore
from tether.client.errors import (
    AlreadyConnectedError,
    AlreadyConnectingError,
    ConnectionFailedError,
    ConnectionLostError,
    NotConnectedError,
    SessionDisposedError,
)
from tether.client.reconnection import ReconnectionManager
from tether.client.state import ConnectionState, ResourceMode
from tether.platform.lifecycle import LifecycleEvent, LifecycleSource
from tether.platform.network import NetworkMonitor
from tether.protocol.initialization import ClientCapabilities, Implementation
from tether.protocol.mcp_session import McpProtocolSession, SamplingHandler
from tether.protocol.roots import Root
from tether.protocol.session import NoticeKind, ProtocolSession, ServerNotice
from tether.shared.events import EventChannel, Listener, Subscription
from tether.transport.base import TransportHandle

T = TypeVar("T")

_TOOL_NOTICES = (NoticeKind.TOOLS_LIST_CHANGED, NoticeKind.PROMPTS_LIST_CHANGED)
_RESOURCE_NOTICES = (NoticeKind.RESOURCES_LIST_CHANGED, NoticeKind.RESOURCE_UPDATED)

# States in which a transport is in use and may not be rebound.
_BOUND_STATES = (
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.PAUSED,
)


class ClientSession:
    """One logical connection to one MCP server."""

    def __init__(
        self,
        name: str,
        version: str,
        *,
        id: str | None = None,
        capabilities: ClientCapabilities | None = None,
        config: ClientConfig | None = None,
        protocol: ProtocolSession | None = None,
        lifecycle: LifecycleSource | None = None,
        network: NetworkMonitor | None = None,
        sampling_handler: SamplingHandler | None = None,
    ):
        self._id = id or str(uuid.uuid4())
        self.info = Implementation(name=name, version=version)
        self.capabilities = capabilities or ClientCapabilities()
        self.config = config or ClientConfig()
        self.protocol: ProtocolSession = protocol or McpProtocolSession(
            self.info,
            self.capabilities,
            request_timeout=self.config.operation_timeout,
            sampling_handler=sampling_handler,
        )
        self.logger = logging.getLogger("tether.client.session")

        self._state = ConnectionState.DISCONNECTED
        self._transport: TransportHandle | None = None
        self._disposed = False
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()
        self.resource_mode = ResourceMode.FULL

        # Observable surface
        self.state_changes: EventChannel[ConnectionState] = EventChannel(
            f"session.state_changes.{self._id}"
        )
        self.errors: EventChannel[Exception] = EventChannel(
            f"session.errors.{self._id}"
        )
        self.notifications: EventChannel[ServerNotice] = EventChannel(
            f"session.notifications.{self._id}"
        )

        # Protocol listeners
        self._notice_subscription: Subscription | None = None
        self._lost_subscription: Subscription | None = (
            self.protocol.connection_lost.subscribe(self._handle_connection_lost)
        )

        self.reconnection = ReconnectionManager(
            self,
            auto_reconnect=self.config.auto_reconnect,
            max_attempts=self.config.max_reconnect_attempts,
            interval=self.config.reconnect_interval,
            policy=self.config.reconnect_policy,
            network=network,
        )

        self._lifecycle_subscription: Subscription | None = None
        if lifecycle is not None:
            self._lifecycle_subscription = lifecycle.subscribe(
                self.handle_lifecycle_event
            )

    @classmethod
    async def create(
        cls,
        name: str,
        version: str,
        *,
        config_store: ConfigStore | None = None,
        config: ClientConfig | None = None,
        **kwargs: Any,
    ) -> ClientSession:
        """Create a session, loading persisted configuration when none is given.

        A missing or corrupt persisted configuration yields the defaults.
        """
        if config is None and config_store is not None:
            config = await ClientConfig.load(config_store)
        return cls(name, version, config=config, **kwargs)

    # ================================
    # Properties
    # ================================

    @property
    def id(self) -> str:
        return self._id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> TransportHandle | None:
        return self._transport

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def server_info(self) -> Any | None:
        return self.protocol.server_info

    @property
    def server_capabilities(self) -> Any | None:
        return self.protocol.server_capabilities

    def set_transport(self, transport: TransportHandle) -> None:
        """Bind the transport used by future connects and reconnects.

        Raises:
            SessionDisposedError: If the session has been disposed
            AlreadyConnectedError: If a transport is in use
        """
        self._check_not_disposed()
        if self._state in _BOUND_STATES:
            raise AlreadyConnectedError(self._id)
        self._transport = transport

    # ================================
    # Transitions
    # ================================

    async def connect(self, transport: TransportHandle) -> None:
        """Connect the protocol session over the given transport.

        Connecting again with the bound transport while connected or paused is
        a no-op.

        Raises:
            SessionDisposedError: If the session has been disposed
            AlreadyConnectingError: If a connect is already in flight
            AlreadyConnectedError: If connected over a different transport
            ConnectionFailedError: If the protocol session failed to connect
                within the operation timeout. The session is left in the
                error state.
        """
        self._check_not_disposed()
        if self._state is ConnectionState.CONNECTING:
            raise AlreadyConnectingError(self._id)

        async with self._lock:
            self._check_not_disposed()
            if self._state in (ConnectionState.CONNECTED, ConnectionState.PAUSED):
                if transport is self._transport:
                    return
                raise AlreadyConnectedError(self._id)

            self._transport = transport
            await self._set_state(ConnectionState.CONNECTING)

            try:
                await asyncio.wait_for(
                    self.protocol.connect(transport), self.config.operation_timeout
                )
            except asyncio.CancelledError:
                await self._set_state(ConnectionState.ERROR)
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
                failure = ConnectionFailedError(
                    self._id, f"could not connect to {transport.describe()}: {reason}"
                )
                self.logger.warning(str(failure))
                await self._set_state(ConnectionState.ERROR)
                await self.errors.publish(failure)
                raise failure from e

            self._arm_listeners()
            self.logger.info(f"Client '{self._id}' connected to {transport.describe()}")
            await self._set_state(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        """Disconnect the protocol session.

        A no-op when already disconnected or disposed. The bound transport is
        kept so the session can reconnect later.
        """
        if self._disposed:
            return
        async with self._lock:
            if self._disposed or self._state is ConnectionState.DISCONNECTED:
                return
            await self._teardown()

    async def dispose(self) -> None:
        """Disconnect and release every resource. Safe to call twice."""
        if self._disposed:
            return

        await self.reconnection.dispose()
        if self._lifecycle_subscription is not None:
            self._lifecycle_subscription.cancel()
            self._lifecycle_subscription = None

        async with self._lock:
            if self._disposed:
                return
            if self._state is not ConnectionState.DISCONNECTED:
                try:
                    await self._teardown()
                except Exception as e:
                    self.logger.warning(
                        f"Error disconnecting client '{self._id}' during dispose: {e}"
                    )
            self._disposed = True

            if self._lost_subscription is not None:
                self._lost_subscription.cancel()
                self._lost_subscription = None
            try:
                await self.protocol.close()
            except Exception as e:
                self.logger.warning(
                    f"Error closing protocol session of client '{self._id}': {e}"
                )

        self.state_changes.close()
        self.errors.close()
        self.notifications.close()

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
        self.logger.debug(f"Client '{self._id}' disposed")

    async def _teardown(self) -> None:
        """Disarm listeners and close the protocol connection. Lock held."""
        self._disarm_listeners()
        try:
            await self.protocol.disconnect()
        finally:
            await self._set_state(ConnectionState.DISCONNECTED)

    async def _pause(self) -> None:
        async with self._lock:
            if self._disposed or self._state is not ConnectionState.CONNECTED:
                return
            await self._set_state(ConnectionState.PAUSED)

    async def _resume(self) -> None:
        async with self._lock:
            if self._disposed or self._state is not ConnectionState.PAUSED:
                return
            if self.protocol.is_connected:
                await self._set_state(ConnectionState.CONNECTED)
                return
            await self._mark_lost("connection lost while paused")

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self.logger.debug(
            f"Client '{self._id}' state: {previous.value} -> {state.value}"
        )
        await self.state_changes.publish(state)

    def _check_not_disposed(self) -> None:
        if self._disposed:
            raise SessionDisposedError(self._id)

    # ================================
    # Protocol events
    # ================================

    def _arm_listeners(self) -> None:
        if self._notice_subscription is None:
            self._notice_subscription = self.protocol.notifications.subscribe(
                self._forward_notice
            )

    def _disarm_listeners(self) -> None:
        if self._notice_subscription is not None:
            self._notice_subscription.cancel()
            self._notice_subscription = None

    async def _forward_notice(self, notice: ServerNotice) -> None:
        if notice.kind in _TOOL_NOTICES and not self.config.handle_tool_events:
            return
        if notice.kind in _RESOURCE_NOTICES and not self.config.handle_resource_events:
            return
        await self.notifications.publish(notice)

    def on_notice(self, kind: NoticeKind, listener: Listener[ServerNotice]) -> Subscription:
        """Subscribe to server notices of a single kind."""

        def filtered(notice: ServerNotice) -> Awaitable[None] | None:
            if notice.kind is kind:
                return listener(notice)
            return None

        return self.notifications.subscribe(filtered)

    def _handle_connection_lost(self, error: Exception) -> None:
        # Published from the protocol runner, possibly while a transition
        # holds the lock.
        self._spawn(self._on_connection_lost(error))

    async def _on_connection_lost(self, error: Exception) -> None:
        async with self._lock:
            if self._disposed or self._state not in (
                ConnectionState.CONNECTED,
                ConnectionState.PAUSED,
            ):
                return
            await self._mark_lost(str(error))

    async def _mark_lost(self, reason: str) -> None:
        """Move to the error state after an unexpected drop. Lock held."""
        self._disarm_listeners()
        lost = ConnectionLostError(self._id, reason)
        self.logger.warning(str(lost))
        await self._set_state(ConnectionState.ERROR)
        await self.errors.publish(lost)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ================================
    # App lifecycle
    # ================================

    async def handle_lifecycle_event(self, event: LifecycleEvent) -> None:
        """React to the host application moving between foreground and background.

        With `maintain_connection_in_background` the connection stays up and
        only the resource mode changes. Otherwise pausing the app pauses the
        session and detaching it disconnects, both with automatic
        reconnection suppressed until the app is resumed.
        """
        if self._disposed:
            return
        keep_alive = self.config.maintain_connection_in_background
        self.logger.debug(f"Client '{self._id}' lifecycle event: {event.value}")

        if event is LifecycleEvent.RESUMED:
            await self._resume()
            await self.reconnection.set_background_mode(False)
            self.adjust_resource_usage(ResourceMode.FULL)
        elif event is LifecycleEvent.INACTIVE:
            self.adjust_resource_usage(ResourceMode.REDUCED)
        elif event is LifecycleEvent.PAUSED:
            if keep_alive:
                self.adjust_resource_usage(ResourceMode.MINIMAL)
            else:
                await self.reconnection.set_background_mode(True)
                await self._pause()
        elif event is LifecycleEvent.DETACHED:
            if keep_alive:
                self.adjust_resource_usage(ResourceMode.SUSPENDED)
            else:
                await self.reconnection.set_background_mode(True)
                await self.disconnect()

    def adjust_resource_usage(self, mode: ResourceMode) -> None:
        """Record a resource-usage hint and pass it to the protocol session."""
        if self._disposed:
            return
        if mode is not self.resource_mode:
            self.logger.debug(f"Client '{self._id}' resource mode: {mode.value}")
        self.resource_mode = mode
        self.protocol.apply_resource_mode(mode)

    # ================================
    # Protocol operations
    # ================================

    async def _call(
        self, operation: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        """Run one protocol request, bounded by the operation timeout.

        Raises:
            SessionDisposedError: If the session has been disposed
            NotConnectedError: If the session is not connected
            TimeoutError: If the request outlived the operation timeout
        """
        self._check_not_disposed()
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(self._id)

        try:
            return await asyncio.wait_for(
                operation(*args), self.config.operation_timeout
            )
        except Exception as e:
            name = getattr(operation, "__name__", "request")
            self.logger.warning(f"Client '{self._id}' {name} failed: {e!r}")
            await self.errors.publish(e)
            raise

    async def ping(self) -> Any:
        return await self._call(self.protocol.ping)

    async def list_tools(self) -> Any:
        return await self._call(self.protocol.list_tools)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self._call(self.protocol.call_tool, name, arguments)

    async def list_resources(self) -> Any:
        return await self._call(self.protocol.list_resources)

    async def list_resource_templates(self) -> Any:
        return await self._call(self.protocol.list_resource_templates)

    async def read_resource(self, uri: str) -> Any:
        return await self._call(self.protocol.read_resource, uri)

    async def subscribe_resource(self, uri: str) -> None:
        await self._call(self.protocol.subscribe_resource, uri)

    async def unsubscribe_resource(self, uri: str) -> None:
        await self._call(self.protocol.unsubscribe_resource, uri)

    async def list_prompts(self) -> Any:
        return await self._call(self.protocol.list_prompts)

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> Any:
        return await self._call(self.protocol.get_prompt, name, arguments)

    async def set_logging_level(self, level: str) -> None:
        await self._call(self.protocol.set_logging_level, level)

    async def list_roots(self) -> list[Root]:
        return await self._call(self.protocol.list_roots)

    async def add_root(self, root: Root) -> None:
        await self._call(self.protocol.add_root, root)

    async def remove_root(self, uri: str) -> None:
        await self._call(self.protocol.remove_root, uri)
