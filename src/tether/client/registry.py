import logging
from dataclasses import dataclass

from tether.client.errors import DuplicateClientError, RegistryDisposedError
from tether.client.session import ClientSession
from tether.client.state import ConnectionState, ResourceMode
from tether.shared.events import EventChannel

logger = logging.getLogger(__name__)


@dataclass
class ClientRegistryEntry:
    session: ClientSession
    priority: int = 0
    """Higher priorities are served first in fan-out operations."""


class ClientRegistry:
    """Owns a fleet of client sessions and runs bulk lifecycle operations.

    Fan-out operations visit sessions one at a time in descending priority
    order. A failing session is logged and collected and never stops the
    remaining sessions from being visited.
    """

    def __init__(self):
        self._entries: dict[str, ClientRegistryEntry] = {}
        self._disposed = False
        self.registrations: EventChannel[str] = EventChannel("registry.registrations")

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._entries

    # ================================
    # Membership
    # ================================

    async def register_client(
        self, client_id: str, session: ClientSession, priority: int = 0
    ) -> None:
        """Take ownership of a session under a unique identity.

        Raises:
            RegistryDisposedError: If the registry has been disposed
            DuplicateClientError: If the identity is already registered
        """
        if self._disposed:
            raise RegistryDisposedError("Client registry has been disposed")
        if client_id in self._entries:
            raise DuplicateClientError(client_id)

        self._entries[client_id] = ClientRegistryEntry(session, priority)
        logger.debug(f"Registered client '{client_id}' with priority {priority}")
        await self.registrations.publish(client_id)

    def unregister_client(self, client_id: str) -> ClientSession | None:
        """Remove a session without disposing it.

        Returns:
            The removed session, now owned by the caller, or None if the
            identity was not registered.
        """
        entry = self._entries.pop(client_id, None)
        if entry is None:
            return None
        logger.debug(f"Unregistered client '{client_id}'")
        return entry.session

    def get_client(self, client_id: str) -> ClientSession | None:
        if self._disposed:
            return None
        entry = self._entries.get(client_id)
        return entry.session if entry else None

    def get_all_clients(self) -> dict[str, ClientSession]:
        return {
            client_id: entry.session for client_id, entry in self._entries.items()
        }

    def get_clients_by_priority(self) -> list[ClientSession]:
        """Sessions ordered from highest to lowest priority."""
        return [entry.session for _, entry in self._ordered_entries()]

    def get_highest_priority_client(self) -> ClientSession | None:
        ordered = self.get_clients_by_priority()
        return ordered[0] if ordered else None

    def get_clients_by_state(self, state: ConnectionState) -> list[ClientSession]:
        return [
            entry.session
            for entry in self._entries.values()
            if entry.session.state is state
        ]

    def get_connected_clients(self) -> list[ClientSession]:
        return self.get_clients_by_state(ConnectionState.CONNECTED)

    def _ordered_entries(self) -> list[tuple[str, ClientRegistryEntry]]:
        return sorted(
            self._entries.items(), key=lambda item: item[1].priority, reverse=True
        )

    # ================================
    # Fan-out
    # ================================

    async def connect_all(self) -> dict[str, Exception]:
        """Connect every disconnected session that has a bound transport.

        Returns:
            Failures keyed by client identity. Empty when all succeeded.
        """
        failures: dict[str, Exception] = {}
        for client_id, entry in self._ordered_entries():
            session = entry.session
            if session.state is not ConnectionState.DISCONNECTED:
                continue
            transport = session.transport
            if transport is None:
                logger.debug(f"Skipping client '{client_id}': no transport bound")
                continue
            try:
                await session.connect(transport)
            except Exception as e:
                logger.error(f"Failed to connect client '{client_id}': {e}")
                failures[client_id] = e
        return failures

    async def disconnect_all(self) -> dict[str, Exception]:
        """Disconnect every session.

        Returns:
            Failures keyed by client identity. Empty when all succeeded.
        """
        failures: dict[str, Exception] = {}
        for client_id, entry in self._ordered_entries():
            try:
                await entry.session.disconnect()
            except Exception as e:
                logger.error(f"Failed to disconnect client '{client_id}': {e}")
                failures[client_id] = e
        return failures

    def apply_resource_mode(self, mode: ResourceMode) -> None:
        """Pass a resource-usage hint to every session."""
        for client_id, entry in self._ordered_entries():
            try:
                entry.session.adjust_resource_usage(mode)
            except Exception as e:
                logger.error(
                    f"Failed to apply resource mode {mode.value} "
                    f"to client '{client_id}': {e}"
                )

    async def dispose_all(self) -> None:
        """Dispose every session and retire the registry for good."""
        if self._disposed:
            return
        self._disposed = True

        for client_id, entry in self._ordered_entries():
            try:
                await entry.session.dispose()
            except Exception as e:
                logger.error(f"Failed to dispose client '{client_id}': {e}")

        self._entries.clear()
        self.registrations.close()
        logger.debug("Client registry disposed")
