"""ProtocolSession backed by the official mcp SDK.

The SDK's ClientSession and transport clients are anyio context managers whose
cancel scopes must be entered and exited on the same task. Each connection
therefore lives inside a dedicated runner task: connect() starts the runner and
waits for the handshake, disconnect() asks the runner to leave its contexts and
waits for it to finish.

While connected the runner also supervises the connection. When keepalive is
enabled it pings the server every `keepalive_interval` seconds, and a failed
ping ends the connection. Any exit the caller did not ask for is published on
`connection_lost`.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable

from mcp import ClientSession, types
from pydantic import AnyUrl

from tether.client.roots import RootsManager
from tether.client.state import ResourceMode
from tether.protocol.initialization import ClientCapabilities, Implementation
from tether.protocol.roots import Root
from tether.protocol.session import NoticeKind, ProtocolSession, ServerNotice
from tether.transport.base import TransportHandle

SamplingHandler = Callable[
    [types.CreateMessageRequestParams], Awaitable[types.CreateMessageResult]
]

# Resource modes in which the runner keeps pinging the server.
_KEEPALIVE_MODES = (ResourceMode.FULL, ResourceMode.REDUCED)


@dataclass
class _Connection:
    """State of one runner task."""

    transport: TransportHandle
    ready: asyncio.Future[None]
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    closing: bool = False
    runner: asyncio.Task[None] | None = None


class McpProtocolSession(ProtocolSession):
    def __init__(
        self,
        client_info: Implementation,
        capabilities: ClientCapabilities | None = None,
        sampling_handler: SamplingHandler | None = None,
        request_timeout: float | None = 30.0,
        keepalive_interval: float | None = 30.0,
    ):
        super().__init__()
        self.client_info = client_info
        self.capabilities = capabilities or ClientCapabilities()
        self.roots = RootsManager()
        self.request_timeout = request_timeout
        self.keepalive_interval = keepalive_interval
        self._sampling_handler = sampling_handler
        self._keepalive_enabled = True
        self._connection: _Connection | None = None
        self._session: ClientSession | None = None
        self._initialize_result: types.InitializeResult | None = None
        self.logger = logging.getLogger("tether.protocol.mcp")

    # ================================
    # Lifecycle
    # ================================

    @property
    def is_connected(self) -> bool:
        connection = self._connection
        return (
            self._session is not None
            and connection is not None
            and connection.runner is not None
            and not connection.runner.done()
        )

    @property
    def server_info(self) -> types.Implementation | None:
        if self._initialize_result is None:
            return None
        return self._initialize_result.serverInfo

    @property
    def server_capabilities(self) -> types.ServerCapabilities | None:
        if self._initialize_result is None:
            return None
        return self._initialize_result.capabilities

    async def connect(self, transport: TransportHandle) -> None:
        """Open the transport and run the initialization handshake.

        Raises:
            ConnectionError: If the transport closed before initialization
                completed.
            Exception: Whatever the transport or handshake raised.
        """
        if self.is_connected:
            return
        await self.disconnect()

        connection = _Connection(
            transport=transport, ready=asyncio.get_running_loop().create_future()
        )
        connection.runner = asyncio.create_task(
            self._run(connection), name=f"mcp_runner_{transport.describe()}"
        )
        self._connection = connection

        try:
            await connection.ready
        except BaseException:
            await self._stop_runner(connection)
            raise
        self.logger.debug(f"Connected to {transport.describe()}")

    async def disconnect(self) -> None:
        """Leave the current connection. Safe to call multiple times."""
        connection = self._connection
        if connection is None:
            return
        await self._stop_runner(connection)
        self.logger.debug(f"Disconnected from {connection.transport.describe()}")

    def apply_resource_mode(self, mode: ResourceMode) -> None:
        """Keepalive pings only run while the app is in the foreground."""
        self._keepalive_enabled = mode in _KEEPALIVE_MODES
        connection = self._connection
        if connection is not None and not connection.closing:
            # Re-arm the supervisor with the new keepalive setting.
            connection.wake.set()

    async def _stop_runner(self, connection: _Connection) -> None:
        connection.closing = True
        connection.wake.set()
        runner = connection.runner
        if runner is not None and runner is not asyncio.current_task():
            if not connection.ready.done():
                runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
        if self._connection is connection:
            self._connection = None

    async def _run(self, connection: _Connection) -> None:
        """Own the transport and SDK contexts for one connection."""
        error: Exception | None = None
        try:
            async with connection.transport.open() as (read_stream, write_stream):
                async with ClientSession(
                    read_stream,
                    write_stream,
                    read_timeout_seconds=self._read_timeout(),
                    sampling_callback=self._sampling_callback(),
                    list_roots_callback=self._list_roots_callback(),
                    message_handler=self._handle_message,
                    client_info=types.Implementation(
                        name=self.client_info.name, version=self.client_info.version
                    ),
                ) as session:
                    self._initialize_result = await session.initialize()
                    self._session = session
                    connection.ready.set_result(None)
                    await self._supervise(session, connection)
        except Exception as e:
            error = e
        finally:
            self._session = None
            self._initialize_result = None

        if not connection.ready.done():
            connection.ready.set_exception(
                error
                or ConnectionError(
                    f"{connection.transport.describe()} closed during initialization"
                )
            )
            return

        if connection.closing:
            return

        reason = f": {error}" if error else ""
        lost = ConnectionError(
            f"Connection to {connection.transport.describe()} lost{reason}"
        )
        self.logger.warning(str(lost))
        await self.connection_lost.publish(lost)

    async def _supervise(self, session: ClientSession, connection: _Connection) -> None:
        """Wait until asked to close, pinging the server while idle."""
        while not connection.closing:
            timeout = self.keepalive_interval if self._keepalive_enabled else None
            try:
                await asyncio.wait_for(connection.wake.wait(), timeout)
            except TimeoutError:
                await asyncio.wait_for(session.send_ping(), self.request_timeout)
                continue
            connection.wake.clear()

    def _read_timeout(self) -> timedelta | None:
        if self.request_timeout is None:
            return None
        return timedelta(seconds=self.request_timeout)

    # ================================
    # Server to client
    # ================================

    async def _handle_message(self, message: Any) -> None:
        """Translate server notifications into ServerNotice events."""
        if isinstance(message, Exception):
            self.logger.warning(f"Transport reported an error: {message}")
            return
        if not isinstance(message, types.ServerNotification):
            return

        notice = self._to_notice(message.root)
        if notice is not None:
            await self.notifications.publish(notice)

    def _to_notice(self, notification: Any) -> ServerNotice | None:
        if isinstance(notification, types.ToolListChangedNotification):
            return ServerNotice(NoticeKind.TOOLS_LIST_CHANGED)
        if isinstance(notification, types.ResourceListChangedNotification):
            return ServerNotice(NoticeKind.RESOURCES_LIST_CHANGED)
        if isinstance(notification, types.PromptListChangedNotification):
            return ServerNotice(NoticeKind.PROMPTS_LIST_CHANGED)
        if isinstance(notification, types.ResourceUpdatedNotification):
            return ServerNotice(
                NoticeKind.RESOURCE_UPDATED, uri=str(notification.params.uri)
            )
        if isinstance(notification, types.LoggingMessageNotification):
            params = notification.params
            return ServerNotice(
                NoticeKind.LOG_MESSAGE,
                level=params.level,
                logger=params.logger,
                data=params.data,
            )
        return None

    def _list_roots_callback(self):
        if not self.capabilities.roots:
            return None

        async def list_roots(context: Any) -> types.ListRootsResult:
            return types.ListRootsResult(
                roots=[
                    types.Root.model_validate(root.to_protocol())
                    for root in self.roots.get_roots()
                ]
            )

        return list_roots

    def _sampling_callback(self):
        if not self.capabilities.sampling or self._sampling_handler is None:
            return None
        handler = self._sampling_handler

        async def create_message(
            context: Any, params: types.CreateMessageRequestParams
        ) -> types.CreateMessageResult:
            return await handler(params)

        return create_message

    # ================================
    # Requests
    # ================================

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConnectionError("Protocol session is not connected")
        return self._session

    async def ping(self) -> types.EmptyResult:
        return await self._require_session().send_ping()

    async def list_tools(self) -> list[types.Tool]:
        result = await self._require_session().list_tools()
        return result.tools

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> types.CallToolResult:
        return await self._require_session().call_tool(name, arguments)

    async def list_resources(self) -> list[types.Resource]:
        result = await self._require_session().list_resources()
        return result.resources

    async def list_resource_templates(self) -> list[types.ResourceTemplate]:
        result = await self._require_session().list_resource_templates()
        return result.resourceTemplates

    async def read_resource(self, uri: str) -> types.ReadResourceResult:
        return await self._require_session().read_resource(AnyUrl(uri))

    async def subscribe_resource(self, uri: str) -> None:
        await self._require_session().subscribe_resource(AnyUrl(uri))

    async def unsubscribe_resource(self, uri: str) -> None:
        await self._require_session().unsubscribe_resource(AnyUrl(uri))

    async def list_prompts(self) -> list[types.Prompt]:
        result = await self._require_session().list_prompts()
        return result.prompts

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> types.GetPromptResult:
        return await self._require_session().get_prompt(name, arguments)

    async def set_logging_level(self, level: str) -> None:
        await self._require_session().set_logging_level(level)

    # ================================
    # Roots
    # ================================

    async def list_roots(self) -> list[Root]:
        return self.roots.get_roots()

    async def add_root(self, root: Root) -> None:
        if self.roots.add_root(root):
            await self._send_roots_list_changed()

    async def remove_root(self, uri: str) -> None:
        if self.roots.remove_root(uri):
            await self._send_roots_list_changed()

    async def _send_roots_list_changed(self) -> None:
        if self._session is None or not self.capabilities.roots_list_changed:
            return
        await self._session.send_roots_list_changed()
