from enum import Enum


class ConnectionState(str, Enum):
    """Connection states of a client session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    PAUSED = "paused"
    """Protocol session still open but the app is in the background."""


class ReconnectPolicy(str, Enum):
    """How the reconnection manager spaces automatic attempts."""

    NONE = "none"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class ResourceMode(str, Enum):
    """Advisory resource-usage level, driven by the app lifecycle."""

    FULL = "full"
    REDUCED = "reduced"
    MINIMAL = "minimal"
    SUSPENDED = "suspended"
