import os

from smartfriends_mqtt import __version__

__all__ = [
    "BRIDGE_LOOP_TASK_NAME",
    "HUB_START_TASK_NAME",
    "MQTT_CLIENT_START_TASK_NAME",
    "POSITION_CLOSED",
    "POSITION_OPEN",
    "ROLE_POSITION",
    "ROLE_SWITCH",
    "SF_BIRTH_MSG",
    "SF_CONFIG_FILE_PATH",
    "SF_DEBUG",
    "SF_LOG_CORRELATION_ENABLED",
    "SF_LOG_FORMAT",
    "SF_LOG_HUMAN_OUTPUT",
    "SF_LOG_JSON_FILE",
    "SF_MQTT_CONN_DELAY",
    "SF_PERF_THRESHOLD_MS",
    "SF_PERF_TRACKING",
    "SF_TOPIC_PREFIX",
    "SF_VERSION",
    "SF_WILL_MSG",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")

SF_VERSION: str = __version__

# Device roles as reported by the hub (deviceName)
ROLE_SWITCH: str = "Schalter"
ROLE_POSITION: str = "Position"

# Target positions published for the paired position device
POSITION_OPEN: str = "0"
POSITION_CLOSED: str = "100"

SF_CONFIG_FILE_PATH: str = os.environ.get("SF_CONFIG_FILE", "/config/smartfriends-mqtt.yaml")

_conn_delay = os.environ.get("SF_MQTT_CONN_DELAY", "10")
try:
    _conn_delay_value: int = int(_conn_delay) if _conn_delay else 10
except ValueError:
    _conn_delay_value = 10
SF_MQTT_CONN_DELAY: int = _conn_delay_value

SF_TOPIC_PREFIX: str = os.environ.get("SF_TOPIC_PREFIX", "schellenberg") or "schellenberg"
SF_BIRTH_MSG: str = os.environ.get("SF_BIRTH_MSG", "online")
SF_WILL_MSG: str = os.environ.get("SF_WILL_MSG", "offline")

SF_DEBUG = os.environ.get("SF_DEBUG", "0").casefold() in YES_ANSWER

BRIDGE_LOOP_TASK_NAME = "SmartFriendsBridge_LOOP"
HUB_START_TASK_NAME = "HubConnector_START"
MQTT_CLIENT_START_TASK_NAME = "MQTTClient_START"

# Logging Configuration
SF_LOG_FORMAT: str = os.environ.get("SF_LOG_FORMAT", "human")  # "json", "human", or "both"
SF_LOG_JSON_FILE: str = os.environ.get("SF_LOG_JSON_FILE", "/var/log/smartfriends_mqtt.json")
SF_LOG_HUMAN_OUTPUT: str = os.environ.get("SF_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path
SF_LOG_CORRELATION_ENABLED: bool = os.environ.get("SF_LOG_CORRELATION_ENABLED", "true").casefold() in YES_ANSWER

# Performance Instrumentation
SF_PERF_TRACKING: bool = os.environ.get("SF_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("SF_PERF_THRESHOLD_MS", "100")
SF_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 100
