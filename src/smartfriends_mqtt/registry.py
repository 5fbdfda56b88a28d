"""Device registry owned by the bridge.

Holds the latest device map reported by the hub. A refresh swaps in a new
immutable snapshot, so readers never observe a half-replaced map.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.structs import DeviceInfo

logger = get_logger(__name__)


class DeviceRegistry:
    lp: str = "registry:"

    def __init__(self, devices: Mapping[str, DeviceInfo] | None = None) -> None:
        self._snapshot: Mapping[str, DeviceInfo] = MappingProxyType({})
        if devices:
            self.replace(devices)

    def snapshot(self) -> Mapping[str, DeviceInfo]:
        """Return the current read-only device map."""
        return self._snapshot

    def replace(self, devices: Mapping[str, DeviceInfo] | Iterable[DeviceInfo]) -> None:
        """Replace the whole registry with ``devices``.

        Accepts either a mapping keyed by device id or an iterable of
        DeviceInfo. Keys are normalised to the string device id.
        """
        items = devices.values() if isinstance(devices, Mapping) else devices
        new_map = {str(info.device_id): info for info in items}
        self._snapshot = MappingProxyType(new_map)
        logger.debug("%s Registry replaced, %d device(s) known", self.lp, len(new_map))

    def get(self, device_id: str) -> DeviceInfo | None:
        return self._snapshot.get(str(device_id))

    def siblings(self, master_device_id: str | None, device_name: str) -> Iterator[DeviceInfo]:
        """Yield devices grouped under ``master_device_id`` with the given role."""
        if master_device_id is None:
            return
        for info in self._snapshot.values():
            if info.master_device_id == master_device_id and info.device_name == device_name:
                yield info

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, device_id: object) -> bool:
        return str(device_id) in self._snapshot
