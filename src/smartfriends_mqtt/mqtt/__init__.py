"""MQTT side of the Smart Friends bridge.

- topics.py: topic layout, update-topic parsing
- client.py: broker connection lifecycle and publishing
- command_routing.py: inbound commands -> hub
- state_updates.py: hub events -> status publications and cover inference
"""

from .client import MQTTClient, parse_broker_url
from .command_routing import CommandRouter
from .state_updates import StateUpdateHelper
from .topics import BridgeTopics

__all__ = [
    "BridgeTopics",
    "CommandRouter",
    "MQTTClient",
    "StateUpdateHelper",
    "parse_broker_url",
]
