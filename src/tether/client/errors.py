"""Exception hierarchy for client sessions and the client registry.

Usage errors (disposed, already connecting/connected, not connected, duplicate
registration) fail the call immediately and are never retried. Connectivity
errors move a session into the error state and are eligible for automatic
reconnection.
"""

from __future__ import annotations


class TetherError(Exception):
    """Base exception for all tether errors."""

    pass


class SessionError(TetherError):
    """Raised for failures tied to a single client session."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(f"Client '{session_id}': {message}")


class SessionDisposedError(SessionError, RuntimeError):
    """Raised when operating a session after dispose()."""

    def __init__(self, session_id: str):
        super().__init__(session_id, "session has been disposed")


class AlreadyConnectingError(SessionError, RuntimeError):
    """Raised when connect() is called while a connect is in flight."""

    def __init__(self, session_id: str):
        super().__init__(session_id, "already connecting to a transport")


class AlreadyConnectedError(SessionError, RuntimeError):
    """Raised when rebinding the transport of a live session."""

    def __init__(self, session_id: str):
        super().__init__(
            session_id, "already connected; disconnect before binding a new transport"
        )


class NotConnectedError(SessionError, RuntimeError):
    """Raised when calling a protocol operation outside the connected state."""

    def __init__(self, session_id: str):
        super().__init__(session_id, "session is not connected")


class ConnectionFailedError(SessionError, ConnectionError):
    """Raised when the protocol session could not be connected."""

    pass


class ConnectionLostError(SessionError, ConnectionError):
    """Published when an open protocol session drops unexpectedly."""

    pass


class ReconnectionExhaustedError(SessionError):
    """Published when automatic reconnection runs out of attempts."""

    def __init__(self, session_id: str, attempts: int):
        self.attempts = attempts
        super().__init__(
            session_id, f"gave up reconnecting after {attempts} attempts"
        )


class RegistryError(TetherError):
    """Base exception for client registry failures."""

    pass


class DuplicateClientError(RegistryError, ValueError):
    """Raised when registering an identity that is already registered."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client with ID '{client_id}' is already registered")


class RegistryDisposedError(RegistryError, RuntimeError):
    """Raised when registering into a disposed registry."""

    pass


class UnsupportedTransportError(TetherError):
    """Raised when a transport cannot be created on this platform."""

    pass
