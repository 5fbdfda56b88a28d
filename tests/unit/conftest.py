"""
Shared fixtures for unit tests.

The registry fixture models one cover unit: switch "1001" and position sensor
"1002" grouped under master "M1", plus an unrelated cover under "M2".
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from smartfriends_mqtt.mqtt.topics import BridgeTopics
from smartfriends_mqtt.registry import DeviceRegistry
from smartfriends_mqtt.structs import BridgeConfig, DeviceInfo, MQTTSettings, ValueMapping


def make_device(device_id: str, device_name: str, master: str | None) -> DeviceInfo:
    return DeviceInfo(
        device_id=device_id,
        device_name=device_name,
        master_device_id=master,
        master_device_name=f"Cover {master}",
        device_designation="Rollladen",
    )


@pytest.fixture
def value_mapping():
    """Command values as configured for a Schellenberg roller shutter."""
    return ValueMapping(open="0", close="2", stop="1")


@pytest.fixture
def topics():
    return BridgeTopics("schellenberg")


@pytest.fixture
def cover_devices():
    return {
        "1001": make_device("1001", "Schalter", "M1"),
        "1002": make_device("1002", "Position", "M1"),
        "2001": make_device("2001", "Schalter", "M2"),
        "2002": make_device("2002", "Position", "M2"),
    }


@pytest.fixture
def registry(cover_devices):
    return DeviceRegistry(cover_devices)


@pytest.fixture
def mock_mqtt_client():
    """
    Mock MQTT client for testing.

    publish() succeeds and records every call.
    """
    client = MagicMock()
    client.lp = "mqtt:"
    client.topic_prefix = "schellenberg"
    client.is_connected = True
    client.publish = AsyncMock(return_value=True)
    client.start = AsyncMock()
    client.stop = AsyncMock()
    return client


@pytest.fixture
def mock_hub(cover_devices):
    """
    Mock hub connector.

    set_device_value() is awaitable, get_device_map() returns the cover devices.
    """
    hub = MagicMock()
    hub.start = AsyncMock()
    hub.stop = AsyncMock()
    hub.set_device_value = AsyncMock()
    hub.get_device_map = MagicMock(return_value=cover_devices)
    return hub


@pytest.fixture
def bridge_config(value_mapping):
    return BridgeConfig(mqtt=MQTTSettings(url="mqtt://broker.local:1883"), payload=value_mapping)


@pytest.fixture
def published():
    """Return (topic, payload) of every publish() call on a mock client, in order."""

    def collect(mock_client) -> list[tuple[str, str]]:
        return [(c.args[0], c.args[1]) for c in mock_client.publish.call_args_list]

    return collect
