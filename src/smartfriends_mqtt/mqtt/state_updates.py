"""Device status publishing and cover state inference.

Every hub value change is published on the device's status topic. Two derived
publications are added for motorised covers:

* a switch ("Schalter") receiving the open/close command announces the target
  position (0 / 100) on each sibling position device's status topic;
* a position report is mirrored on ``current/<id>``, and once the cover reaches
  an end position a stop command is issued to each sibling switch through its
  ``update/<id>`` topic.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from smartfriends_mqtt.codec import encode_value, is_position_endpoint, value_kind
from smartfriends_mqtt.const import POSITION_CLOSED, POSITION_OPEN, ROLE_POSITION, ROLE_SWITCH
from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.structs import DeviceUpdateEvent, Publication

if TYPE_CHECKING:
    from smartfriends_mqtt.mqtt.topics import BridgeTopics
    from smartfriends_mqtt.registry import DeviceRegistry
    from smartfriends_mqtt.structs import MQTTClientProtocol, ValueMapping

logger = get_logger(__name__)


class StateUpdateHelper:
    """Turns hub device-update events into MQTT publications."""

    lp: str = "state:"

    def __init__(
        self,
        mqtt_client: MQTTClientProtocol,
        topics: BridgeTopics,
        registry: DeviceRegistry,
        value_mapping: ValueMapping,
    ) -> None:
        self.client: MQTTClientProtocol = mqtt_client
        self.topics: BridgeTopics = topics
        self.registry: DeviceRegistry = registry
        self.value_mapping: ValueMapping = value_mapping

    def build_publications(self, event: DeviceUpdateEvent) -> list[Publication]:
        """Return every publication caused by ``event``, primary status first."""
        lp = f"{self.lp}build:"
        if event.device_id == "" or event.value is None or event.value == "":
            logger.debug("%s Ignoring event without device id or value: %s", lp, event)
            return []

        message = encode_value(event.value)
        publications = [Publication(self.topics.status(event.device_id), message)]
        logger.debug(
            "%s %s => %s",
            lp,
            publications[0].topic,
            message,
            extra={"device_id": event.device_id, "value_kind": value_kind(event.value)},
        )

        publications.extend(self._target_positions(event, message))
        publications.extend(self._current_position(event, message))
        return publications

    def _target_positions(self, event: DeviceUpdateEvent, message: str) -> list[Publication]:
        lp = f"{self.lp}target:"
        mapping = self.value_mapping
        if message not in (mapping.open, mapping.close):
            return []

        source = self.registry.get(event.device_id)
        if source is None:
            logger.debug("%s Device %s not in registry, skipping target position", lp, event.device_id)
            return []
        if source.device_name != ROLE_SWITCH:
            return []

        position = POSITION_CLOSED if message == mapping.close else POSITION_OPEN
        publications = []
        for sibling in self.registry.siblings(event.master_device_id, ROLE_POSITION):
            pub = Publication(self.topics.status(sibling.device_id), position)
            logger.debug("%s %s => %s", lp, pub.topic, position)
            publications.append(pub)
        return publications

    def _current_position(self, event: DeviceUpdateEvent, message: str) -> list[Publication]:
        lp = f"{self.lp}current:"
        if not event.float_value:
            return []

        publications = [Publication(self.topics.current(event.device_id), message)]
        logger.debug("%s %s => %s", lp, publications[0].topic, message)

        if is_position_endpoint(event.value):
            stop = self.value_mapping.stop
            for sibling in self.registry.siblings(event.master_device_id, ROLE_SWITCH):
                pub = Publication(self.topics.update(sibling.device_id), stop)
                logger.debug("%s end position reached, %s => %s", lp, pub.topic, stop)
                publications.append(pub)
        return publications

    async def publish_device_status(self, event: DeviceUpdateEvent) -> int:
        """Publish the status of ``event`` and its derived topics.

        Returns:
            Number of publications the broker accepted.

        """
        published = 0
        for pub in self.build_publications(event):
            if await self.client.publish(pub.topic, pub.payload, retain=pub.retain, qos=pub.qos):
                published += 1
        return published
