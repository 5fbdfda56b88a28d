"""MQTT client core for the Smart Friends bridge.

Owns the broker connection: connect/reconnect loop, subscription to the
device value tree, availability (birth/last will) and publishing. Received
messages are handed to a callback; the client never interprets them.
"""

from __future__ import annotations

import asyncio
import re
import ssl
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import aiomqtt

from smartfriends_mqtt.const import SF_BIRTH_MSG, SF_MQTT_CONN_DELAY, SF_WILL_MSG
from smartfriends_mqtt.exceptions import ConfigError
from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.mqtt.topics import BridgeTopics
from smartfriends_mqtt.structs import MQTTSettings
from smartfriends_mqtt.utils import send_sigterm

logger = get_logger(__name__)

MessageCallback = Callable[[str, bytes], None]

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}
# CONNACK codes for rejected credentials (MQTT 3.1.1: 4/5, MQTT 5: 134/135)
_AUTH_FAILURE = re.compile(r"code:(4|5|134|135)\b")


@dataclass(frozen=True, slots=True)
class BrokerAddress:
    hostname: str
    port: int
    username: str | None = None
    password: str | None = None
    tls: bool = False


def parse_broker_url(url: str, username: str | None = None, password: str | None = None) -> BrokerAddress:
    """Split an ``mqtt://[user:pass@]host[:port]`` URL into connection parameters.

    Explicit ``username``/``password`` take precedence over credentials in the URL.
    """
    if "://" not in url:
        url = f"mqtt://{url}"
    parts = urlsplit(url)
    scheme = parts.scheme.casefold()
    if scheme not in _DEFAULT_PORTS:
        msg = f"unsupported broker URL scheme '{parts.scheme}'"
        raise ConfigError(msg, source=url)
    if not parts.hostname:
        msg = "broker URL has no host"
        raise ConfigError(msg, source=url)
    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        raise ConfigError(str(exc), source=url) from exc

    return BrokerAddress(
        hostname=parts.hostname,
        port=port,
        username=username or (unquote(parts.username) if parts.username else None),
        password=password or (unquote(parts.password) if parts.password else None),
        tls=scheme in ("mqtts", "ssl"),
    )


class MQTTClient:
    """Broker connection for the bridge."""

    lp: str = "mqtt:"
    start_task: asyncio.Task[None] | None = None

    def __init__(
        self,
        settings: MQTTSettings,
        topics: BridgeTopics,
        on_message: MessageCallback,
        conn_delay: int = SF_MQTT_CONN_DELAY,
    ) -> None:
        self._connected: bool = False
        self.connected_event: asyncio.Event = asyncio.Event()
        self.settings: MQTTSettings = settings
        self.topics: BridgeTopics = topics
        self.topic_prefix: str = topics.prefix
        self.on_message: MessageCallback = on_message
        self.conn_delay: int = conn_delay
        self.broker: BrokerAddress = parse_broker_url(settings.url, settings.username, settings.password)
        self.broker_client_id: str = f"smartfriends_mqtt_{uuid.uuid4().hex[:8]}"
        self.client: aiomqtt.Client | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> None:
        self._connected = connected
        if connected:
            self.connected_event.set()
        else:
            self.connected_event.clear()

    async def wait_connected(self) -> None:
        await self.connected_event.wait()

    def _build_client(self) -> aiomqtt.Client:
        will = aiomqtt.Will(topic=self.topics.availability, payload=SF_WILL_MSG.encode(), qos=0, retain=True)
        return aiomqtt.Client(
            hostname=self.broker.hostname,
            port=self.broker.port,
            username=self.broker.username,
            password=self.broker.password,
            identifier=self.broker_client_id,
            will=will,
            tls_context=ssl.create_default_context() if self.broker.tls else None,
        )

    def _get_connection_delay(self, lp: str) -> int:
        if self.conn_delay <= 0:
            logger.debug("%s MQTT connection delay is <= 0, which is probably a typo, using 5...", lp)
            return 5
        return self.conn_delay

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self.set_connected(False)
        logger.debug("%s Connecting to MQTT broker %s:%s...", lp, self.broker.hostname, self.broker.port)
        self.client = self._build_client()
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            logger.warning("%s Connection failed [MqttError] -> %s", lp, mqtt_err_exc)
            if _AUTH_FAILURE.search(str(mqtt_err_exc)):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.broker.username,
                )
                send_sigterm()
            return False

        self.set_connected(True)
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.broker.hostname, self.broker.port)
        _ = await self.send_availability(online=True)
        return True

    async def _start_receiver(self) -> None:
        lp = f"{self.lp}rcv:"
        assert self.client is not None, "client must be initialized"
        await self.client.subscribe(self.topics.subscription, qos=0)
        logger.debug("%s Subscribed to %s. Waiting for MQTT messages...", lp, self.topics.subscription)

        async for message in self.client.messages:
            topic = message.topic.value
            payload = message.payload
            if isinstance(payload, str):
                payload = payload.encode()
            elif not isinstance(payload, bytes | bytearray):
                payload = b"" if payload is None else str(payload).encode()
            # an empty payload clears a retained message on the broker, it is not a command
            if not payload:
                logger.debug("%s Received empty payload for topic: %s, skipping...", lp, topic)
                continue
            logger.debug("%s New message on topic %s: %s", lp, topic, payload)
            self.on_message(topic, bytes(payload))

    async def start(self) -> None:
        """Connect, receive, and reconnect until cancelled."""
        lp = f"{self.lp}start:"
        try:
            while True:
                if await self.connect():
                    try:
                        await self._start_receiver()
                    except aiomqtt.MqttError as msg_err:
                        logger.warning("%s MQTT error: %s, reconnecting...", lp, msg_err)
                        self.set_connected(False)
                        continue
                delay = self._get_connection_delay(lp)
                logger.info(
                    "%s connecting to MQTT broker failed, sleeping for %s seconds before re-trying...",
                    lp,
                    delay,
                )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("%s MQTT start task cancelled", lp)
            raise
        except Exception:
            logger.exception("%s MQTT start() EXCEPTION", lp)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self._connected:
            _ = await self.send_availability(online=False)
        try:
            if self.client is not None:
                logger.debug("%s Disconnecting from broker...", lp)
                await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s MQTT disconnect failed: %s", lp, ce)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self.set_connected(False)
            if self.start_task and not self.start_task.done():
                logger.debug("%s Cancelling start task", lp)
                _ = self.start_task.cancel()

    async def send_availability(self, online: bool) -> bool:
        """Publish the retained bridge birth ("online") or will ("offline") message."""
        msg = SF_BIRTH_MSG if online else SF_WILL_MSG
        logger.debug("%s Sending availability (%s) to %s", self.lp, msg, self.topics.availability)
        return await self.publish(self.topics.availability, msg, retain=True)

    async def publish(self, topic: str, payload: str | bytes, *, retain: bool = False, qos: int = 0) -> bool:
        """Publish a message to the MQTT broker.

        Returns:
            False when disconnected or when the broker rejected the publish.

        """
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            logger.debug("%s Not connected, dropping publish to %s", lp, topic)
            return False
        data = payload.encode() if isinstance(payload, str) else payload
        try:
            await self.client.publish(topic, data, qos=qos, retain=retain)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
            self.set_connected(False)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self.set_connected(False)
        else:
            return True
        return False
