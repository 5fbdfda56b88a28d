"""
Unit tests for the SmartFriendsBridge dispatcher.

Tests cover:
- Routing of queued MQTT messages and hub events
- Strict one-at-a-time handling
- Registry refresh on device discovery
- Resilience against handler failures
"""

import asyncio
import contextlib
import logging

import pytest

from smartfriends_mqtt.bridge import DeviceDiscovered, DeviceValueChanged, MqttMessage, SmartFriendsBridge
from smartfriends_mqtt.correlation import current_scope
from smartfriends_mqtt.mqtt.client import MQTTClient
from smartfriends_mqtt.registry import DeviceRegistry
from smartfriends_mqtt.structs import DeviceInfo, DeviceUpdateEvent

VALUE = "schellenberg/device/value"


@pytest.fixture
def bridge(mock_hub, bridge_config, topics, registry, mock_mqtt_client):
    return SmartFriendsBridge(mock_hub, bridge_config, topics=topics, registry=registry, mqtt_client=mock_mqtt_client)


async def drain(bridge: SmartFriendsBridge) -> None:
    """Run the dispatcher until the queue is empty, then stop it."""
    task = asyncio.create_task(bridge.run())
    try:
        await asyncio.wait_for(bridge.queue.join(), timeout=2)
    finally:
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


class TestBridgeConstruction:
    def test_default_mqtt_client_feeds_queue(self, mock_hub, bridge_config):
        bridge = SmartFriendsBridge(mock_hub, bridge_config)

        assert isinstance(bridge.mqtt_client, MQTTClient)
        bridge.mqtt_client.on_message("schellenberg/device/value/update/1", b"1")
        assert bridge.queue.get_nowait() == MqttMessage("schellenberg/device/value/update/1", b"1")

    def test_empty_injected_registry_is_kept(self, mock_hub, bridge_config, mock_mqtt_client):
        registry = DeviceRegistry()
        bridge = SmartFriendsBridge(mock_hub, bridge_config, registry=registry, mqtt_client=mock_mqtt_client)
        assert bridge.registry is registry


class TestProducers:
    """Producer methods only enqueue."""

    def test_device_value_mapping_validated(self, bridge):
        bridge.on_device_value({"deviceID": 1002, "masterDeviceID": "M1", "value": 100, "floatValue": 1})

        item = bridge.queue.get_nowait()
        assert isinstance(item, DeviceValueChanged)
        assert item.event.device_id == "1002"
        assert item.event.float_value is True

    def test_device_info_mapping_validated(self, bridge, mock_hub):
        bridge.on_device_info({"deviceID": 5, "deviceName": "Schalter", "masterDeviceID": 9})

        item = bridge.queue.get_nowait()
        assert isinstance(item, DeviceDiscovered)
        assert item.info.master_device_id == "9"
        mock_hub.get_device_map.assert_not_called()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_mqtt_update_sets_hub_value(self, bridge, mock_hub):
        bridge.submit_mqtt_message(f"{VALUE}/update/1001", b"2")

        await drain(bridge)

        mock_hub.set_device_value.assert_awaited_once_with("1001", 2)

    @pytest.mark.asyncio
    async def test_value_event_publishes(self, bridge, mock_mqtt_client, published):
        bridge.on_device_value(DeviceUpdateEvent(device_id="1002", master_device_id="M1", value=50, float_value=True))

        await drain(bridge)

        assert published(mock_mqtt_client) == [
            (f"{VALUE}/1002", "50"),
            (f"{VALUE}/current/1002", "50"),
        ]

    @pytest.mark.asyncio
    async def test_discovery_refreshes_registry(self, mock_hub, bridge_config, topics, mock_mqtt_client):
        registry = DeviceRegistry()
        bridge = SmartFriendsBridge(mock_hub, bridge_config, topics=topics, registry=registry, mqtt_client=mock_mqtt_client)

        bridge.on_device_info(DeviceInfo(device_id="1001", device_name="Schalter", master_device_id="M1"))
        await drain(bridge)

        mock_hub.get_device_map.assert_called_once()
        assert len(registry) == 4
        assert registry.get("1002").device_name == "Position"

    @pytest.mark.asyncio
    async def test_discovery_accepts_raw_device_map(self, bridge, mock_hub):
        """Connectors may report their map as plain dicts keyed by device id."""
        mock_hub.get_device_map.return_value = {
            31: {"deviceName": "Schalter", "masterDeviceID": 30},
            "32": {"deviceID": "32", "deviceName": "Position", "masterDeviceID": "30"},
        }

        bridge.on_device_info({"deviceID": 31})
        await drain(bridge)

        assert bridge.registry.get("31").master_device_id == "30"
        assert [d.device_id for d in bridge.registry.siblings("30", "Position")] == ["32"]

    @pytest.mark.asyncio
    async def test_discovery_before_value_event(self, mock_hub, bridge_config, topics, mock_mqtt_client, published):
        """A value event queued after discovery sees the refreshed registry."""
        bridge = SmartFriendsBridge(
            mock_hub,
            bridge_config,
            topics=topics,
            registry=DeviceRegistry(),
            mqtt_client=mock_mqtt_client,
        )

        bridge.on_device_info({"deviceID": 1001})
        bridge.on_device_value({"deviceID": 1001, "masterDeviceID": "M1", "value": 2})
        await drain(bridge)

        assert published(mock_mqtt_client) == [
            (f"{VALUE}/1001", "2"),
            (f"{VALUE}/1002", "100"),
        ]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_items_handled_one_at_a_time(self, bridge, mock_hub, mock_mqtt_client):
        # Arrange
        trace: list[str] = []

        async def slow_set(device_id, value):
            trace.append(f"set-start:{device_id}")
            await asyncio.sleep(0.01)
            trace.append(f"set-end:{device_id}")

        async def record_publish(topic, payload, **_kwargs):
            trace.append(f"publish:{topic}")
            return True

        mock_hub.set_device_value.side_effect = slow_set
        mock_mqtt_client.publish.side_effect = record_publish

        # Act
        bridge.submit_mqtt_message(f"{VALUE}/update/2001", b"1")
        bridge.on_device_value({"deviceID": "2002", "masterDeviceID": "M2", "value": 30})
        bridge.submit_mqtt_message(f"{VALUE}/update/2001", b"0")
        await drain(bridge)

        # Assert
        assert trace == [
            "set-start:2001",
            "set-end:2001",
            f"publish:{VALUE}/2002",
            "set-start:2001",
            "set-end:2001",
        ]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self, bridge, mock_mqtt_client, mock_hub, caplog):
        mock_mqtt_client.publish.side_effect = [RuntimeError("broker gone"), True]

        bridge.on_device_value({"deviceID": "2002", "masterDeviceID": "M2", "value": 10})
        bridge.on_device_value({"deviceID": "2002", "masterDeviceID": "M2", "value": 20})
        bridge.submit_mqtt_message(f"{VALUE}/update/2001", b"1")
        await drain(bridge)

        assert "Failed to handle DeviceValueChanged" in caplog.text
        assert mock_mqtt_client.publish.call_count == 2
        mock_hub.set_device_value.assert_awaited_once_with("2001", 1)

    @pytest.mark.asyncio
    async def test_events_from_connector_thread(self, bridge, mock_mqtt_client, published):
        task = asyncio.create_task(bridge.run())
        await asyncio.sleep(0)
        try:
            await asyncio.to_thread(
                bridge.on_device_value,
                {"deviceID": "2002", "masterDeviceID": "M2", "value": 75},
            )
            await asyncio.wait_for(bridge.queue.join(), timeout=2)
        finally:
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        assert published(mock_mqtt_client) == [(f"{VALUE}/2002", "75")]


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_cancels_run_task(self, bridge):
        bridge.run_task = asyncio.create_task(bridge.run())
        await asyncio.sleep(0)

        await bridge.stop()
        with contextlib.suppress(asyncio.CancelledError):
            await bridge.run_task

        assert bridge.run_task.cancelled()

    @pytest.mark.asyncio
    async def test_stop_warns_about_pending_items(self, bridge, caplog):
        bridge.submit_mqtt_message(f"{VALUE}/update/1", b"1")

        await bridge.stop()

        assert "1 unhandled event(s)" in caplog.text


class TestConnectorThreads:
    """Hub connectors may call the listener from their own threads."""

    @pytest.mark.asyncio
    async def test_event_from_thread_before_run_is_refused(self, bridge):
        with pytest.raises(RuntimeError, match="before the dispatcher is running"):
            await asyncio.to_thread(bridge.on_device_value, {"deviceID": "2002", "value": 75})

        assert bridge.queue.empty()

    @pytest.mark.asyncio
    async def test_bridge_created_on_loop_accepts_thread_events(self, mock_hub, bridge_config, mock_mqtt_client):
        bridge = SmartFriendsBridge(mock_hub, bridge_config, mqtt_client=mock_mqtt_client)

        await asyncio.to_thread(bridge.on_device_value, {"deviceID": "2002", "value": 75})
        await asyncio.sleep(0)

        assert bridge.queue.qsize() == 1


class TestEventScopes:
    @pytest.mark.asyncio
    async def test_handlers_run_inside_event_scope(self, bridge, mock_hub, mock_mqtt_client):
        # Arrange
        seen: list[tuple[str | None, str | None]] = []

        def record_scope():
            scope = current_scope()
            seen.append((scope.kind, scope.device_id) if scope else (None, None))

        async def set_value(device_id, value):
            record_scope()

        async def publish(topic, payload, **_kwargs):
            record_scope()
            return True

        mock_hub.set_device_value.side_effect = set_value
        mock_mqtt_client.publish.side_effect = publish

        # Act
        bridge.submit_mqtt_message(f"{VALUE}/update/1001", b"1")
        bridge.on_device_value({"deviceID": "2002", "masterDeviceID": "M2", "value": 40})
        await drain(bridge)

        # Assert
        assert seen == [("mqtt", "1001"), ("value", "2002")]
        assert current_scope() is None

    @pytest.mark.asyncio
    async def test_failure_logged_with_event_tag(self, bridge, mock_mqtt_client):
        mock_mqtt_client.publish.side_effect = RuntimeError("broker gone")
        tags: list[str] = []

        class ScopeCapture(logging.Handler):
            def emit(self, record):
                scope = current_scope()
                tags.append(scope.label if scope else "")

        capture = ScopeCapture()
        bridge_logger = logging.getLogger("smartfriends_mqtt.bridge")
        bridge_logger.addHandler(capture)
        try:
            bridge.on_device_value({"deviceID": "2002", "masterDeviceID": "M2", "value": 40})
            await drain(bridge)
        finally:
            bridge_logger.removeHandler(capture)

        assert "value:2002" in tags
