"""MQTT command routing.

Maps inbound MQTT messages on ``<prefix>/device/value/update/<id>`` to
``set_device_value`` calls on the hub. Every other topic under the
subscription (including the bridge's own status publications) is ignored.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from smartfriends_mqtt.codec import decode_payload, value_kind
from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.structs import DeviceCommand

if TYPE_CHECKING:
    from smartfriends_mqtt.mqtt.topics import BridgeTopics
    from smartfriends_mqtt.structs import HubConnectorProtocol

logger = get_logger(__name__)


class CommandRouter:
    """Routes MQTT messages to the hub."""

    lp: str = "router:"

    def __init__(self, topics: BridgeTopics, hub: HubConnectorProtocol) -> None:
        self.topics: BridgeTopics = topics
        self.hub: HubConnectorProtocol = hub

    def route(self, topic: str, payload: bytes | str) -> DeviceCommand | None:
        """Return the hub command for a message, or None when no handler matches."""
        lp = f"{self.lp}route:"
        device_id = self.topics.parse_update(topic)
        if device_id is None:
            logger.debug("%s No handler found for topic %s", lp, topic)
            return None

        logger.debug("%s Handler found for topic %s", lp, topic)
        return DeviceCommand(device_id=device_id, value=decode_payload(payload))

    async def handle_message(self, topic: str, payload: bytes | str) -> bool:
        """Route a message and forward it to the hub.

        Returns:
            True if a command was sent to the hub.

        """
        lp = f"{self.lp}handle:"
        command = self.route(topic, payload)
        if command is None:
            return False

        logger.info(
            "%s Setting device %s to %r",
            lp,
            command.device_id,
            command.value,
            extra={"device_id": command.device_id, "value_kind": value_kind(command.value)},
        )
        try:
            await self.hub.set_device_value(command.device_id, command.value)
        except Exception:
            logger.exception("%s Hub rejected value for device %s", lp, command.device_id)
            return False
        return True
