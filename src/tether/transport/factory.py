"""Builds transport handles from declarative server configuration."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field

from tether.client.errors import UnsupportedTransportError
from tether.platform.capabilities import Platform
from tether.transport.base import ServerType, TransportHandle
from tether.transport.sse import SseTransport
from tether.transport.stdio import StdioTransport
from tether.transport.websocket import WebSocketTransport

DEFAULT_PROBE_PORTS = (8080, 3000, 9000)

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Where and how to reach one MCP server.

    Use the stdio(), sse() and websocket() constructors rather than building
    one by hand. Only the fields of the chosen type are set.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: ServerType

    # stdio
    command: str | None = None
    arguments: list[str] | None = None
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    environment: dict[str, str] | None = None

    # sse / websocket
    server_url: str | None = Field(default=None, alias="serverUrl")
    headers: dict[str, str] | None = None
    websocket_endpoint: str | None = Field(default=None, alias="websocketEndpoint")

    @classmethod
    def stdio(
        cls,
        command: str,
        arguments: list[str] | None = None,
        working_directory: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> ServerConfig:
        return cls(
            type=ServerType.STDIO,
            command=command,
            arguments=arguments,
            working_directory=working_directory,
            environment=environment,
        )

    @classmethod
    def sse(cls, server_url: str, headers: dict[str, str] | None = None) -> ServerConfig:
        return cls(type=ServerType.SSE, server_url=server_url, headers=headers)

    @classmethod
    def websocket(
        cls,
        server_url: str,
        websocket_endpoint: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> ServerConfig:
        return cls(
            type=ServerType.WEBSOCKET,
            server_url=server_url,
            websocket_endpoint=websocket_endpoint,
            headers=headers,
        )


class TransportFactory:
    """Creates the transport variant a ServerConfig asks for."""

    def __init__(self, platform: Platform | None = None):
        self.platform = platform or Platform.current()

    def create_transport(self, config: ServerConfig) -> TransportHandle:
        """Build a transport handle. Nothing is opened until connect.

        Raises:
            UnsupportedTransportError: If the platform cannot spawn a stdio
                server process
            ValueError: If the config lacks the fields its type needs
        """
        if config.type is ServerType.STDIO:
            if not self.platform.supports_subprocess:
                raise UnsupportedTransportError(
                    "stdio transport is not supported on this platform"
                )
            if not config.command:
                raise ValueError("'command' is required for stdio transport")
            return StdioTransport(
                config.command,
                arguments=config.arguments,
                working_directory=config.working_directory,
                environment=config.environment,
            )

        if not config.server_url:
            raise ValueError(
                f"'server_url' is required for {config.type.value} transport"
            )

        if config.type is ServerType.SSE:
            return SseTransport(config.server_url, headers=config.headers)

        if config.type is ServerType.WEBSOCKET:
            if config.headers:
                logger.debug("Ignoring headers for websocket transport")
            return WebSocketTransport(
                config.server_url, websocket_endpoint=config.websocket_endpoint
            )

        raise UnsupportedTransportError(f"Unknown server type: {config.type}")


async def is_server_available(
    url: str,
    timeout: float = 5.0,
    http_client: httpx.AsyncClient | None = None,
) -> bool:
    """True if the URL answers a GET with a status below 500."""
    client = http_client or httpx.AsyncClient()
    try:
        response = await client.get(url, timeout=timeout)
        return response.status_code < 500
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug(f"Server at {url} unavailable: {e}")
        return False
    finally:
        if http_client is None:
            await client.aclose()


async def detect_local_servers(
    ports: tuple[int, ...] | list[int] = DEFAULT_PROBE_PORTS,
    timeout: float = 0.5,
    http_client: httpx.AsyncClient | None = None,
) -> list[ServerConfig]:
    """Probe localhost ports for SSE servers, checked one port at a time."""
    servers: list[ServerConfig] = []
    for port in ports:
        url = f"http://localhost:{port}"
        if await is_server_available(url, timeout=timeout, http_client=http_client):
            servers.append(ServerConfig.sse(f"{url}/sse"))
    return servers
