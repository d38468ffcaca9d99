from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.client.websocket import websocket_client

from tether.transport.base import ServerType, StreamPair, TransportHandle


class WebSocketTransport(TransportHandle):
    """Reaches a server over a WebSocket using the "mcp" subprotocol."""

    kind = ServerType.WEBSOCKET

    def __init__(self, server_url: str, websocket_endpoint: str | None = None) -> None:
        if not server_url.startswith(("ws://", "wss://")):
            raise ValueError("'server_url' must be a ws:// or wss:// URL")
        self.server_url = server_url
        self.websocket_endpoint = websocket_endpoint

    @property
    def url(self) -> str:
        if not self.websocket_endpoint:
            return self.server_url
        return f"{self.server_url.rstrip('/')}/{self.websocket_endpoint.lstrip('/')}"

    @asynccontextmanager
    async def open(self) -> AsyncIterator[StreamPair]:
        async with websocket_client(self.url) as (read_stream, write_stream):
            yield read_stream, write_stream

    def describe(self) -> str:
        return f"websocket:{self.url}"
