from __future__ import annotations

import asyncio
from argparse import Namespace
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Protocol

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from smartfriends_mqtt.codec import HubValue


def _id_to_str(value: object) -> object:
    """Device ids arrive as ints from some hubs and as strings from MQTT topics."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


DeviceID = Annotated[str, BeforeValidator(_id_to_str)]
OptionalDeviceID = Annotated[str | None, BeforeValidator(_id_to_str)]


class DeviceInfo(BaseModel):
    """Hub device metadata, as delivered by a device-discovery event."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    device_id: DeviceID = Field(alias="deviceID")
    device_name: str | None = Field(default=None, alias="deviceName")
    master_device_id: OptionalDeviceID = Field(default=None, alias="masterDeviceID")
    master_device_name: str | None = Field(default=None, alias="masterDeviceName")
    device_designation: str | None = Field(default=None, alias="deviceDesignation")


class DeviceUpdateEvent(BaseModel):
    """A device value change reported by the hub."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    device_id: DeviceID = Field(alias="deviceID")
    master_device_id: OptionalDeviceID = Field(default=None, alias="masterDeviceID")
    # strict keeps "1" a string and True a bool instead of coercing between them
    value: bool | int | float | str | None = Field(default=None, strict=True)
    float_value: bool = Field(default=False, alias="floatValue")

    @field_validator("float_value", mode="before")
    @classmethod
    def _truthy(cls, v: object) -> bool:
        return bool(v)


class ValueMapping(BaseModel):
    """Hub command values for cover control, in their wire (string) form."""

    model_config = ConfigDict(frozen=True)

    open: str
    close: str
    stop: str

    @field_validator("open", "close", "stop", mode="before")
    @classmethod
    def _as_wire_string(cls, v: object) -> str:
        from smartfriends_mqtt.codec import encode_value  # noqa: PLC0415

        if v is None:
            msg = "command value must not be empty"
            raise ValueError(msg)
        if isinstance(v, str):
            return v
        return encode_value(v)


class MQTTSettings(BaseModel):
    url: str = "mqtt://localhost:1883"
    username: str | None = None
    password: str | None = None


class HubSettings(BaseModel):
    connector: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class BridgeConfig(BaseModel):
    """Validated contents of the bridge configuration file."""

    mqtt: MQTTSettings = Field(default_factory=MQTTSettings)
    payload: ValueMapping
    debug: bool = False
    hub: HubSettings = Field(default_factory=HubSettings)


@dataclass(frozen=True, slots=True)
class Publication:
    """One MQTT message the bridge wants on the broker."""

    topic: str
    payload: str
    retain: bool = True
    qos: int = 0


@dataclass(frozen=True, slots=True)
class DeviceCommand:
    """A routed inbound command: set ``value`` on hub device ``device_id``."""

    device_id: str
    value: HubValue


class HubEventListener(Protocol):
    """Receiver for events emitted by a hub connector."""

    def on_device_info(self, info: DeviceInfo) -> None: ...

    def on_device_value(self, event: DeviceUpdateEvent) -> None: ...


class HubConnectorProtocol(Protocol):
    """What the bridge needs from a Smart Friends hub connector."""

    async def start(self, listener: HubEventListener) -> None: ...

    async def stop(self) -> None: ...

    async def set_device_value(self, device_id: str, value: HubValue) -> None: ...

    def get_device_map(self) -> Mapping[str, DeviceInfo]: ...


class MQTTClientProtocol(Protocol):
    lp: str
    topic_prefix: str

    @property
    def is_connected(self) -> bool: ...

    async def publish(self, topic: str, payload: str | bytes, *, retain: bool = False, qos: int = 0) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class BridgeProtocol(Protocol):
    async def run(self) -> None: ...

    async def stop(self) -> None: ...


class GlobalObject:
    """Singleton container for cross-module services (loop, bridge, clients)."""

    loop: asyncio.AbstractEventLoop | None = None
    bridge: BridgeProtocol | None = None
    mqtt_client: MQTTClientProtocol | None = None
    hub: HubConnectorProtocol | None = None
    config: BridgeConfig | None = None
    tasks: ClassVar[list[asyncio.Task[Any]]] = []
    cli_args: Namespace | None = None

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance
