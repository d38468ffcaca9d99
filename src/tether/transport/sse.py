from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.client.sse import sse_client

from tether.transport.base import ServerType, StreamPair, TransportHandle


class SseTransport(TransportHandle):
    """Reaches a server over HTTP POST plus a Server-Sent Events stream."""

    kind = ServerType.SSE

    def __init__(
        self,
        server_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 5.0,
        sse_read_timeout: float = 300.0,
    ) -> None:
        if not server_url.startswith(("http://", "https://")):
            raise ValueError("'server_url' must be a valid HTTP URL")
        self.server_url = server_url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.sse_read_timeout = sse_read_timeout

    @asynccontextmanager
    async def open(self) -> AsyncIterator[StreamPair]:
        async with sse_client(
            self.server_url,
            headers=self.headers,
            timeout=self.timeout,
            sse_read_timeout=self.sse_read_timeout,
        ) as (read_stream, write_stream):
            yield read_stream, write_stream

    def describe(self) -> str:
        return f"sse:{self.server_url}"
