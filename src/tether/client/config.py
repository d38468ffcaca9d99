"""Client configuration and its persistence.

Configuration is persisted as a single JSON blob under CONFIG_KEY in a
key-value ConfigStore. Loading never raises: a missing or corrupt blob yields
the defaults.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tether.client.state import ReconnectPolicy

CONFIG_KEY = "tether_client_config"

DEFAULT_AUTO_RECONNECT = True
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_INTERVAL = 5.0
DEFAULT_MAINTAIN_CONNECTION_IN_BACKGROUND = False
DEFAULT_OPERATION_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """Key-value store holding string values."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or unreadable."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""


class MemoryConfigStore(ConfigStore):
    def __init__(self, values: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(values or {})

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value


class FileConfigStore(ConfigStore):
    """Stores all keys in one JSON object on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_all(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable config file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.path}: not a JSON object")
            return {}
        return data

    async def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class ClientConfig(BaseModel):
    """Behaviour of a client session and its reconnection manager.

    Durations are in seconds. Field aliases are the persisted JSON keys.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    auto_reconnect: bool = Field(
        default=DEFAULT_AUTO_RECONNECT, alias="autoReconnect"
    )
    max_reconnect_attempts: int = Field(
        default=DEFAULT_MAX_RECONNECT_ATTEMPTS, ge=0, alias="maxReconnectAttempts"
    )
    reconnect_interval: float = Field(
        default=DEFAULT_RECONNECT_INTERVAL, ge=0, alias="reconnectIntervalSeconds"
    )
    """Linear interval, and the base of exponential backoff."""

    reconnect_policy: ReconnectPolicy = Field(
        default=ReconnectPolicy.EXPONENTIAL, alias="reconnectPolicy"
    )
    maintain_connection_in_background: bool = Field(
        default=DEFAULT_MAINTAIN_CONNECTION_IN_BACKGROUND,
        alias="maintainConnectionInBackground",
    )
    """Keep the connection alive instead of pausing it when backgrounded."""

    operation_timeout: float = Field(
        default=DEFAULT_OPERATION_TIMEOUT, gt=0, alias="operationTimeoutSeconds"
    )
    handle_tool_events: bool = Field(default=True, alias="handleToolEvents")
    handle_resource_events: bool = Field(default=True, alias="handleResourceEvents")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        """Treat explicit nulls in persisted JSON as "use the default"."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> ClientConfig:
        """Parse a persisted blob, falling back to defaults when corrupt."""
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            logger.debug(f"Corrupt client config, using defaults: {e}")
            return cls()

    @classmethod
    async def load(cls, store: ConfigStore) -> ClientConfig:
        """Load configuration from a store. Never raises."""
        try:
            payload = await store.get(CONFIG_KEY)
        except Exception as e:
            logger.warning(f"Could not read client config, using defaults: {e}")
            return cls()

        if payload is None:
            return cls()
        return cls.from_json(payload)

    async def save(self, store: ConfigStore) -> None:
        await store.set(CONFIG_KEY, self.to_json())
