"""
Unit tests for mqtt/command_routing.py.

Tests cover:
- Routing update topics to hub commands
- Topics that must never reach the hub
- Hub failures while setting a value
"""

import logging

import pytest

from smartfriends_mqtt.mqtt.command_routing import CommandRouter
from smartfriends_mqtt.structs import DeviceCommand


@pytest.fixture
def router(topics, mock_hub):
    return CommandRouter(topics, mock_hub)


class TestRoute:
    """Tests for CommandRouter.route()."""

    def test_update_topic_routed(self, router):
        command = router.route("schellenberg/device/value/update/1001", b"2")
        assert command == DeviceCommand(device_id="1001", value=2)

    def test_text_payload_routed_as_string(self, router):
        command = router.route("schellenberg/device/value/update/1001", b"up")
        assert command is not None
        assert command.value == "up"

    @pytest.mark.parametrize(
        "topic",
        [
            "schellenberg/device/value/1001",
            "schellenberg/device/value/current/1002",
            "schellenberg/device/value/update/abc",
            "schellenberg/device/value/update/1001/set",
        ],
    )
    def test_unrouted_topics(self, router, topic, caplog):
        caplog.set_level(logging.DEBUG, logger="smartfriends_mqtt.mqtt.command_routing")

        assert router.route(topic, b"1") is None
        assert "No handler found for topic" in caplog.text


class TestHandleMessage:
    """Tests for CommandRouter.handle_message()."""

    @pytest.mark.asyncio
    async def test_sets_device_value(self, router, mock_hub):
        # Act
        handled = await router.handle_message("schellenberg/device/value/update/1001", b"1")

        # Assert
        assert handled is True
        mock_hub.set_device_value.assert_awaited_once_with("1001", 1)

    @pytest.mark.asyncio
    async def test_boolean_payload(self, router, mock_hub):
        await router.handle_message("schellenberg/device/value/update/42", b"true")
        mock_hub.set_device_value.assert_awaited_once_with("42", True)

    @pytest.mark.asyncio
    async def test_non_numeric_id_never_reaches_hub(self, router, mock_hub):
        handled = await router.handle_message("schellenberg/device/value/update/abc", b"1")

        assert handled is False
        mock_hub.set_device_value.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_own_status_publications_ignored(self, router, mock_hub):
        """The bridge receives its own status topics through the wildcard subscription."""
        await router.handle_message("schellenberg/device/value/1002", b"100")
        await router.handle_message("schellenberg/device/value/current/1002", b"100")

        mock_hub.set_device_value.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hub_error_logged_not_raised(self, router, mock_hub, caplog):
        # Arrange
        mock_hub.set_device_value.side_effect = ConnectionError("hub offline")

        # Act
        handled = await router.handle_message("schellenberg/device/value/update/1001", b"1")

        # Assert
        assert handled is False
        assert "Hub rejected value for device 1001" in caplog.text
