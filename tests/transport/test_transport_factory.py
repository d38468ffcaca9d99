import httpx
import pytest

from tether.client.errors import UnsupportedTransportError
from tether.platform.capabilities import Platform
from tether.transport.base import ServerType
from tether.transport.factory import (
    ServerConfig,
    TransportFactory,
    detect_local_servers,
    is_server_available,
)
from tether.transport.sse import SseTransport
from tether.transport.stdio import StdioTransport
from tether.transport.websocket import WebSocketTransport


class TestServerConfig:
    def test_stdio_constructor_sets_only_stdio_fields(self):
        # Act
        config = ServerConfig.stdio("uvx", ["mcp-server-time"], environment={"TZ": "UTC"})

        # Assert
        assert config.type is ServerType.STDIO
        assert config.command == "uvx"
        assert config.arguments == ["mcp-server-time"]
        assert config.server_url is None

    def test_accepts_camel_case_keys(self):
        # Act
        config = ServerConfig.model_validate(
            {"type": "websocket", "serverUrl": "ws://localhost:9000", "websocketEndpoint": "mcp"}
        )

        # Assert
        assert config.type is ServerType.WEBSOCKET
        assert config.websocket_endpoint == "mcp"


class TestTransportFactory:
    def test_creates_stdio_transport(self):
        # Arrange
        factory = TransportFactory(Platform(supports_subprocess=True))

        # Act
        transport = factory.create_transport(
            ServerConfig.stdio("python", ["server.py"], working_directory="/srv")
        )

        # Assert
        assert isinstance(transport, StdioTransport)
        assert transport.describe() == "stdio:python server.py"
        assert transport.server_parameters().cwd == "/srv"

    def test_stdio_unsupported_without_subprocesses(self):
        # Arrange
        factory = TransportFactory(Platform(supports_subprocess=False))

        # Act / Assert
        with pytest.raises(UnsupportedTransportError):
            factory.create_transport(ServerConfig.stdio("python"))

    def test_stdio_requires_command(self):
        # Arrange
        factory = TransportFactory(Platform())
        config = ServerConfig(type=ServerType.STDIO)

        # Act / Assert
        with pytest.raises(ValueError):
            factory.create_transport(config)

    def test_creates_sse_transport(self):
        # Arrange
        factory = TransportFactory(Platform())

        # Act
        transport = factory.create_transport(
            ServerConfig.sse("http://localhost:3000/sse", headers={"X-Key": "1"})
        )

        # Assert
        assert isinstance(transport, SseTransport)
        assert transport.headers == {"X-Key": "1"}
        assert transport.kind is ServerType.SSE

    def test_sse_requires_server_url(self):
        # Arrange
        factory = TransportFactory(Platform())

        # Act / Assert
        with pytest.raises(ValueError):
            factory.create_transport(ServerConfig(type=ServerType.SSE))

    def test_sse_rejects_non_http_url(self):
        # Arrange
        factory = TransportFactory(Platform())

        # Act / Assert
        with pytest.raises(ValueError):
            factory.create_transport(ServerConfig.sse("ftp://example.com"))

    def test_creates_websocket_transport_with_endpoint(self):
        # Arrange
        factory = TransportFactory(Platform())

        # Act
        transport = factory.create_transport(
            ServerConfig.websocket("ws://localhost:9000/", websocket_endpoint="/mcp")
        )

        # Assert
        assert isinstance(transport, WebSocketTransport)
        assert transport.url == "ws://localhost:9000/mcp"


class TestServerDiscovery:
    async def test_server_available_below_500(self):
        # Arrange
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )

        # Act
        available = await is_server_available("http://localhost:8080", http_client=client)

        # Assert
        assert available is True
        await client.aclose()

    async def test_server_unavailable_on_server_error(self):
        # Arrange
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(502))
        )

        # Act
        available = await is_server_available("http://localhost:8080", http_client=client)

        # Assert
        assert available is False
        await client.aclose()

    async def test_malformed_url_is_unavailable(self):
        # Arrange
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        )

        # Act
        available = await is_server_available("http://[not-an-address]/", http_client=client)

        # Assert
        assert available is False
        await client.aclose()

    async def test_detect_local_servers_returns_sse_configs(self):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.port == 3000:
                return httpx.Response(200)
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        # Act
        servers = await detect_local_servers(http_client=client)

        # Assert
        assert servers == [ServerConfig.sse("http://localhost:3000/sse")]
        await client.aclose()
