"""Capability interface a client session needs from an MCP protocol session.

The client session treats the protocol as opaque: it connects, disconnects
and forwards RPC calls, and listens to two channels. `notifications` carries
server notices (list changes, resource updates, log messages) and
`connection_lost` fires when an open connection drops without a disconnect()
call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tether.client.state import ResourceMode
from tether.protocol.roots import Root
from tether.shared.events import EventChannel
from tether.transport.base import TransportHandle


class NoticeKind(str, Enum):
    TOOLS_LIST_CHANGED = "tools_list_changed"
    RESOURCES_LIST_CHANGED = "resources_list_changed"
    RESOURCE_UPDATED = "resource_updated"
    PROMPTS_LIST_CHANGED = "prompts_list_changed"
    LOG_MESSAGE = "log_message"


@dataclass(frozen=True)
class ServerNotice:
    """A notification pushed by the server."""

    kind: NoticeKind
    uri: str | None = None
    """Set for RESOURCE_UPDATED."""
    level: str | None = None
    """Set for LOG_MESSAGE."""
    logger: str | None = None
    data: Any = None


class ProtocolSession(ABC):
    """One MCP protocol session, reusable across connect/disconnect cycles."""

    def __init__(self) -> None:
        self.notifications: EventChannel[ServerNotice] = EventChannel(
            "protocol.notifications"
        )
        self.connection_lost: EventChannel[Exception] = EventChannel(
            "protocol.connection_lost"
        )

    # ================================
    # Lifecycle
    # ================================

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the protocol session is open and initialized."""

    @property
    def server_info(self) -> Any | None:
        """Server name and version reported during initialization."""
        return None

    @property
    def server_capabilities(self) -> Any | None:
        """Capabilities reported by the server during initialization."""
        return None

    @abstractmethod
    async def connect(self, transport: TransportHandle) -> None:
        """Open the transport and complete the initialization handshake.

        Raises:
            Exception: Any failure to connect. Partial state is cleaned up
                before raising.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the current connection. Safe to call when not connected."""

    async def close(self) -> None:
        """Disconnect and release the session for good."""
        await self.disconnect()
        self.notifications.close()
        self.connection_lost.close()

    def apply_resource_mode(self, mode: ResourceMode) -> None:
        """Resource-usage hint from the app lifecycle. Ignored by default."""

    # ================================
    # Requests
    # ================================

    @abstractmethod
    async def ping(self) -> Any: ...

    @abstractmethod
    async def list_tools(self) -> Any: ...

    @abstractmethod
    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> Any: ...

    @abstractmethod
    async def list_resources(self) -> Any: ...

    @abstractmethod
    async def list_resource_templates(self) -> Any: ...

    @abstractmethod
    async def read_resource(self, uri: str) -> Any: ...

    @abstractmethod
    async def subscribe_resource(self, uri: str) -> None: ...

    @abstractmethod
    async def unsubscribe_resource(self, uri: str) -> None: ...

    @abstractmethod
    async def list_prompts(self) -> Any: ...

    @abstractmethod
    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> Any: ...

    @abstractmethod
    async def set_logging_level(self, level: str) -> None: ...

    # ================================
    # Roots
    # ================================

    @abstractmethod
    async def list_roots(self) -> list[Root]: ...

    @abstractmethod
    async def add_root(self, root: Root) -> None: ...

    @abstractmethod
    async def remove_root(self, uri: str) -> None: ...
