from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.client.stdio import StdioServerParameters, stdio_client

from tether.transport.base import ServerType, StreamPair, TransportHandle


class StdioTransport(TransportHandle):
    """Reaches a server by spawning it as a subprocess and talking over stdio.

    A new subprocess is started on every open().
    """

    kind = ServerType.STDIO

    def __init__(
        self,
        command: str,
        arguments: list[str] | None = None,
        working_directory: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("'command' must be a non-empty string")
        self.command = command
        self.arguments = list(arguments or [])
        self.working_directory = working_directory
        self.environment = environment

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=self.arguments,
            env=self.environment,
            cwd=self.working_directory,
        )

    @asynccontextmanager
    async def open(self) -> AsyncIterator[StreamPair]:
        async with stdio_client(self.server_parameters()) as (read_stream, write_stream):
            yield read_stream, write_stream

    def describe(self) -> str:
        return f"stdio:{' '.join([self.command, *self.arguments])}"
