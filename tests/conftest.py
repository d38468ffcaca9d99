import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import pytest

from tether.client.config import ClientConfig
from tether.client.session import ClientSession
from tether.client.state import ResourceMode
from tether.platform.lifecycle import LifecycleSource
from tether.platform.network import NetworkMonitor
from tether.protocol.roots import Root
from tether.protocol.session import ProtocolSession, ServerNotice
from tether.transport.base import ServerType, StreamPair, TransportHandle


class MockTransport(TransportHandle):
    """Transport handle that is never actually opened by MockProtocolSession."""

    kind = ServerType.STDIO

    def __init__(self, name: str = "mock"):
        self.name = name

    @asynccontextmanager
    async def open(self) -> AsyncIterator[StreamPair]:
        yield None, None

    def describe(self) -> str:
        return f"mock:{self.name}"


class MockProtocolSession(ProtocolSession):
    """In-memory protocol session with scriptable failures and delays."""

    def __init__(self):
        super().__init__()
        self.connected = False
        self.closed = False
        self.connect_calls: list[TransportHandle] = []
        self.disconnect_calls = 0
        self.resource_modes: list[ResourceMode] = []
        self.connect_error: Exception | None = None
        self.disconnect_error: Exception | None = None
        self.request_error: Exception | None = None
        self.connect_delay = 0.0
        self.request_delay = 0.0
        self.tools = [{"name": "echo"}]
        self.roots: list[Root] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self, transport: TransportHandle) -> None:
        self.connect_calls.append(transport)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def close(self) -> None:
        await super().close()
        self.closed = True

    def apply_resource_mode(self, mode: ResourceMode) -> None:
        self.resource_modes.append(mode)

    # Test helpers
    async def simulate_connection_lost(self, reason: str = "server went away") -> None:
        self.connected = False
        await self.connection_lost.publish(ConnectionError(reason))

    async def push_notice(self, notice: ServerNotice) -> None:
        await self.notifications.publish(notice)

    async def _request(self, result: Any) -> Any:
        if self.request_delay:
            await asyncio.sleep(self.request_delay)
        if self.request_error is not None:
            raise self.request_error
        return result

    async def ping(self) -> Any:
        return await self._request({})

    async def list_tools(self) -> Any:
        return await self._request(self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self._request({"tool": name, "arguments": arguments})

    async def list_resources(self) -> Any:
        return await self._request([])

    async def list_resource_templates(self) -> Any:
        return await self._request([])

    async def read_resource(self, uri: str) -> Any:
        return await self._request({"uri": uri})

    async def subscribe_resource(self, uri: str) -> None:
        await self._request(None)

    async def unsubscribe_resource(self, uri: str) -> None:
        await self._request(None)

    async def list_prompts(self) -> Any:
        return await self._request([])

    async def get_prompt(self, name: str, arguments: dict[str, str] | None = None) -> Any:
        return await self._request({"prompt": name})

    async def set_logging_level(self, level: str) -> None:
        await self._request(None)

    async def list_roots(self) -> list[Root]:
        return await self._request(list(self.roots))

    async def add_root(self, root: Root) -> None:
        await self._request(None)
        self.roots.append(root)

    async def remove_root(self, uri: str) -> None:
        await self._request(None)
        self.roots = [root for root in self.roots if root.uri != uri]


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def protocol() -> MockProtocolSession:
    return MockProtocolSession()


@pytest.fixture
def lifecycle() -> LifecycleSource:
    return LifecycleSource()


@pytest.fixture
def network() -> NetworkMonitor:
    return NetworkMonitor()


@pytest.fixture
async def make_session():
    """Build sessions over mock protocol sessions and dispose them afterwards.

    Automatic reconnection is off unless the test turns it on.
    """
    sessions: list[ClientSession] = []

    def _make(
        protocol: ProtocolSession | None = None,
        lifecycle: LifecycleSource | None = None,
        network: NetworkMonitor | None = None,
        id: str | None = None,
        **config: Any,
    ) -> ClientSession:
        config.setdefault("auto_reconnect", False)
        config.setdefault("operation_timeout", 1.0)
        session = ClientSession(
            "test-client",
            "1.0.0",
            id=id,
            config=ClientConfig(**config),
            protocol=protocol or MockProtocolSession(),
            lifecycle=lifecycle,
            network=network,
        )
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.dispose()


@pytest.fixture
async def session(make_session, protocol):
    return make_session(protocol=protocol, id="client-1")


async def yield_to_event_loop(seconds: float = 0.01) -> None:
    """Let the event loop run scheduled tasks and timers.

    Args:
        seconds: Small delay to let reconnection timers and spawned tasks settle.
    """
    await asyncio.sleep(seconds)


@pytest.fixture
def yield_loop():
    """Helper to yield to event loop in tests."""
    return yield_to_event_loop
