import json

import pytest
from pydantic import ValidationError

from tether.client.config import (
    CONFIG_KEY,
    ClientConfig,
    ConfigStore,
    FileConfigStore,
    MemoryConfigStore,
)
from tether.client.state import ReconnectPolicy


class TestClientConfig:
    def test_defaults(self):
        # Act
        config = ClientConfig()

        # Assert
        assert config.auto_reconnect is True
        assert config.max_reconnect_attempts == 5
        assert config.reconnect_interval == 5
        assert config.reconnect_policy is ReconnectPolicy.EXPONENTIAL
        assert config.maintain_connection_in_background is False
        assert config.operation_timeout == 30
        assert config.handle_tool_events is True
        assert config.handle_resource_events is True

    def test_serializes_with_persisted_keys(self):
        # Arrange
        config = ClientConfig(max_reconnect_attempts=3, reconnect_interval=2)

        # Act
        payload = json.loads(config.to_json())

        # Assert
        assert payload["maxReconnectAttempts"] == 3
        assert payload["reconnectIntervalSeconds"] == 2
        assert payload["autoReconnect"] is True
        assert payload["reconnectPolicy"] == "exponential"

    def test_missing_keys_fall_back_to_defaults(self):
        # Act
        config = ClientConfig.from_json('{"autoReconnect": false}')

        # Assert
        assert config.auto_reconnect is False
        assert config.max_reconnect_attempts == 5

    def test_null_values_fall_back_to_defaults(self):
        # Act
        config = ClientConfig.from_json('{"operationTimeoutSeconds": null}')

        # Assert
        assert config.operation_timeout == 30

    @pytest.mark.parametrize(
        "payload",
        ["{not json", "[1, 2]", '{"maxReconnectAttempts": -1}', '"text"'],
    )
    def test_corrupt_payload_yields_defaults(self, payload):
        # Act
        config = ClientConfig.from_json(payload)

        # Assert
        assert config == ClientConfig()

    def test_invalid_values_rejected_on_construction(self):
        # Act / Assert
        with pytest.raises(ValidationError):
            ClientConfig(operation_timeout=0)


class TestConfigPersistence:
    async def test_load_from_empty_store_yields_defaults(self):
        # Act
        config = await ClientConfig.load(MemoryConfigStore())

        # Assert
        assert config == ClientConfig()

    async def test_save_then_load(self):
        # Arrange
        store = MemoryConfigStore()
        config = ClientConfig(
            reconnect_policy=ReconnectPolicy.LINEAR,
            maintain_connection_in_background=True,
        )

        # Act
        await config.save(store)
        loaded = await ClientConfig.load(store)

        # Assert
        assert CONFIG_KEY in store.values
        assert loaded == config

    async def test_load_never_raises_when_store_fails(self):
        # Arrange
        class BrokenStore(ConfigStore):
            async def get(self, key: str) -> str | None:
                raise OSError("disk gone")

            async def set(self, key: str, value: str) -> None:
                raise OSError("disk gone")

        # Act
        config = await ClientConfig.load(BrokenStore())

        # Assert
        assert config == ClientConfig()

    async def test_file_store_persists_json_object(self, tmp_path):
        # Arrange
        path = tmp_path / "settings" / "tether.json"
        store = FileConfigStore(path)

        # Act
        await ClientConfig(max_reconnect_attempts=8).save(store)
        loaded = await ClientConfig.load(FileConfigStore(path))

        # Assert
        assert loaded.max_reconnect_attempts == 8
        assert CONFIG_KEY in json.loads(path.read_text())

    async def test_file_store_ignores_corrupt_file(self, tmp_path):
        # Arrange
        path = tmp_path / "tether.json"
        path.write_text("not json at all")

        # Act
        value = await FileConfigStore(path).get(CONFIG_KEY)

        # Assert
        assert value is None
