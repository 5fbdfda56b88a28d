"""Event dispatcher tying the hub and the broker together.

Both sides only enqueue: the MQTT receiver puts inbound messages on the queue,
the hub connector calls the listener methods which put discovery and value
events on the same queue. A single consumer (``run``) drains it and handles
each item to completion, derived publications included, before taking the next.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from smartfriends_mqtt.correlation import event_scope
from smartfriends_mqtt.instrumentation import timed_async
from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.mqtt.client import MQTTClient
from smartfriends_mqtt.mqtt.command_routing import CommandRouter
from smartfriends_mqtt.mqtt.state_updates import StateUpdateHelper
from smartfriends_mqtt.mqtt.topics import BridgeTopics
from smartfriends_mqtt.registry import DeviceRegistry
from smartfriends_mqtt.structs import (
    BridgeConfig,
    DeviceInfo,
    DeviceUpdateEvent,
    HubConnectorProtocol,
    MQTTClientProtocol,
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MqttMessage:
    topic: str
    payload: bytes


@dataclass(frozen=True, slots=True)
class DeviceDiscovered:
    info: DeviceInfo


@dataclass(frozen=True, slots=True)
class DeviceValueChanged:
    event: DeviceUpdateEvent


QueueItem = MqttMessage | DeviceDiscovered | DeviceValueChanged


def _as_device_info(key: object, value: DeviceInfo | Mapping[str, Any]) -> DeviceInfo:
    if isinstance(value, DeviceInfo):
        return value
    data = dict(value)
    if "deviceID" not in data and "device_id" not in data:
        data["deviceID"] = key
    return DeviceInfo.model_validate(data)


class SmartFriendsBridge:
    """Single-consumer dispatcher between a hub connector and an MQTT broker."""

    lp: str = "bridge:"
    run_task: asyncio.Task[None] | None = None

    def __init__(
        self,
        hub: HubConnectorProtocol,
        config: BridgeConfig,
        topics: BridgeTopics | None = None,
        registry: DeviceRegistry | None = None,
        mqtt_client: MQTTClientProtocol | None = None,
    ) -> None:
        self.hub: HubConnectorProtocol = hub
        self.config: BridgeConfig = config
        self.topics: BridgeTopics = topics or BridgeTopics()
        self.registry: DeviceRegistry = registry if registry is not None else DeviceRegistry()
        self.queue: asyncio.Queue[QueueItem] = asyncio.Queue()
        self._owner_thread: int = threading.get_ident()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

        self.mqtt_client: MQTTClientProtocol = mqtt_client or MQTTClient(
            config.mqtt,
            self.topics,
            on_message=self.submit_mqtt_message,
        )
        self.command_router: CommandRouter = CommandRouter(self.topics, hub)
        self.state_updates: StateUpdateHelper = StateUpdateHelper(
            self.mqtt_client,
            self.topics,
            self.registry,
            config.payload,
        )

    def _enqueue(self, item: QueueItem) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is not None and running is not self._loop:
            # called from a connector thread
            self._loop.call_soon_threadsafe(self.queue.put_nowait, item)
        elif self._loop is None and threading.get_ident() != self._owner_thread:
            msg = "hub event from another thread before the dispatcher is running"
            raise RuntimeError(msg)
        else:
            self.queue.put_nowait(item)

    def submit_mqtt_message(self, topic: str, payload: bytes) -> None:
        self._enqueue(MqttMessage(topic, payload))

    def on_device_info(self, info: DeviceInfo | Mapping[str, Any]) -> None:
        if not isinstance(info, DeviceInfo):
            info = DeviceInfo.model_validate(info)
        self._enqueue(DeviceDiscovered(info))

    def on_device_value(self, event: DeviceUpdateEvent | Mapping[str, Any]) -> None:
        if not isinstance(event, DeviceUpdateEvent):
            event = DeviceUpdateEvent.model_validate(event)
        self._enqueue(DeviceValueChanged(event))

    async def run(self) -> None:
        """Drain the queue until cancelled."""
        lp = f"{self.lp}run:"
        self._loop = asyncio.get_running_loop()
        logger.debug("%s Dispatcher started", lp)
        while True:
            item = await self.queue.get()
            with event_scope(*self._describe(item)):
                try:
                    await self.dispatch(item)
                except Exception:
                    logger.exception("%s Failed to handle %s", lp, type(item).__name__)
                finally:
                    self.queue.task_done()

    def _describe(self, item: QueueItem) -> tuple[str, str | None]:
        if isinstance(item, MqttMessage):
            return "mqtt", self.topics.parse_update(item.topic)
        if isinstance(item, DeviceValueChanged):
            return "value", item.event.device_id or None
        if isinstance(item, DeviceDiscovered):
            return "discovery", item.info.device_id
        return type(item).__name__, None

    @timed_async("bridge_dispatch")
    async def dispatch(self, item: QueueItem) -> None:
        if isinstance(item, MqttMessage):
            _ = await self.command_router.handle_message(item.topic, item.payload)
        elif isinstance(item, DeviceValueChanged):
            _ = await self.state_updates.publish_device_status(item.event)
        elif isinstance(item, DeviceDiscovered):
            self.refresh_registry(item.info)
        else:
            logger.warning("%s Unknown queue item: %r", self.lp, item)

    def refresh_registry(self, info: DeviceInfo) -> None:
        """Log a discovered device and reload the full device map from the hub."""
        lp = f"{self.lp}discovery:"
        logger.debug(
            "%s Device found",
            lp,
            extra={
                "device_id": info.device_id,
                "master_device_id": info.master_device_id,
                "master_device_name": info.master_device_name,
                "device_name": info.device_name,
                "device_designation": info.device_designation,
            },
        )
        device_map = self.hub.get_device_map()
        self.registry.replace([_as_device_info(key, value) for key, value in device_map.items()])

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        pending = self.queue.qsize()
        if pending:
            logger.warning("%s Stopping with %d unhandled event(s) in queue", lp, pending)
        if self.run_task and not self.run_task.done():
            _ = self.run_task.cancel()
        logger.info("%s Dispatcher stopped", lp)
