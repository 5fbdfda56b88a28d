"""Topic layout for the bridge.

    <prefix>/device/value/<id>           device status (retained)
    <prefix>/device/value/current/<id>   live cover position
    <prefix>/device/value/update/<id>    command: set value on the hub
    <prefix>/bridge/status               bridge availability (online/offline)
"""

from __future__ import annotations

import re

from smartfriends_mqtt.const import SF_TOPIC_PREFIX

__all__ = [
    "BridgeTopics",
]

_NUMERIC_ID = re.compile(r"[0-9]+")


class BridgeTopics:
    """Builds and parses the bridge's MQTT topics for one prefix."""

    def __init__(self, prefix: str = SF_TOPIC_PREFIX) -> None:
        self.prefix: str = prefix.rstrip("/")
        self.value_base: str = f"{self.prefix}/device/value"
        self.update_base: str = f"{self.value_base}/update/"

    @property
    def subscription(self) -> str:
        return f"{self.value_base}/#"

    @property
    def availability(self) -> str:
        return f"{self.prefix}/bridge/status"

    def status(self, device_id: str) -> str:
        return f"{self.value_base}/{device_id}"

    def current(self, device_id: str) -> str:
        return f"{self.value_base}/current/{device_id}"

    def update(self, device_id: str) -> str:
        return f"{self.update_base}{device_id}"

    def parse_update(self, topic: str) -> str | None:
        """Return the device id of an update topic, or None if ``topic`` is not one.

        The id must be the last topic level and consist of decimal digits only.
        """
        if not topic.startswith(self.update_base):
            return None
        device_id = topic[len(self.update_base) :]
        if not _NUMERIC_ID.fullmatch(device_id):
            return None
        return device_id
