from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

StreamPair = tuple[Any, Any]
"""(read_stream, write_stream) as produced by the mcp SDK transport clients."""


class ServerType(str, Enum):
    """Kinds of MCP server endpoints a transport can reach."""

    STDIO = "stdio"
    SSE = "sse"
    WEBSOCKET = "websocket"


class TransportHandle(ABC):
    """Opaque handle to one MCP server endpoint.

    Client sessions never look inside a handle. They bind it, hand it to the
    protocol session on connect, and reuse it for reconnection attempts.

    A handle is reusable: every call to open() establishes a fresh connection,
    and leaving the returned context closes it. Framing and byte-level I/O
    belong to the mcp SDK transport behind each variant.
    """

    kind: ServerType

    @abstractmethod
    def open(self) -> AbstractAsyncContextManager[StreamPair]:
        """Open a connection to the server.

        Returns:
            Async context manager yielding the (read, write) stream pair.

        Raises:
            ConnectionError: If the endpoint cannot be reached (raised on enter)
        """

    def describe(self) -> str:
        """Short human-readable description used in log messages."""
        return self.kind.value
