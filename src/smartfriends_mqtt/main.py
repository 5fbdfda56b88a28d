from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from functools import partial
from pathlib import Path
from typing import Any

import dotenv
import uvloop
import yaml
from pydantic import ValidationError

from smartfriends_mqtt.bridge import SmartFriendsBridge
from smartfriends_mqtt.const import (
    BRIDGE_LOOP_TASK_NAME,
    HUB_START_TASK_NAME,
    MQTT_CLIENT_START_TASK_NAME,
    SF_CONFIG_FILE_PATH,
    SF_DEBUG,
    SF_VERSION,
)
from smartfriends_mqtt.correlation import event_scope
from smartfriends_mqtt.exceptions import ConfigError, HubConnectorError
from smartfriends_mqtt.hub import load_hub_connector
from smartfriends_mqtt.logging_abstraction import get_logger, quiet_foreign_loggers, set_global_level
from smartfriends_mqtt.mqtt.client import MQTTClient
from smartfriends_mqtt.structs import BridgeConfig, GlobalObject
from smartfriends_mqtt.utils import send_sigterm, signal_handler

logger = get_logger(__name__)
quiet_foreign_loggers()

g = GlobalObject()

# Broker settings that may be supplied through the environment instead of the file
_ENV_MQTT_OVERRIDES = {
    "SF_MQTT_URL": "url",
    "SF_MQTT_USER": "username",
    "SF_MQTT_PASS": "password",
}


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    mqtt_section = raw.get("mqtt")
    mqtt_raw: dict[str, Any] = dict(mqtt_section) if isinstance(mqtt_section, dict) else {}
    for env_name, key in _ENV_MQTT_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            logger.debug("MQTT %s taken from %s", key, env_name)
            mqtt_raw[key] = value
    raw["mqtt"] = mqtt_raw
    return raw


def load_config(config_file: Path) -> BridgeConfig:
    """Parse the YAML configuration file into a BridgeConfig.

    Args:
        config_file: Path to the YAML configuration file

    Raises:
        ConfigError: the file is missing, is not valid YAML, or fails validation

    """
    logger.debug("Parsing config file: %s", config_file)
    try:
        with config_file.open() as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as exc:
        msg = "configuration file not found"
        raise ConfigError(msg, source=str(config_file)) from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(str(exc), source=str(config_file)) from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        msg = "top level of the configuration must be a mapping"
        raise ConfigError(msg, source=str(config_file))

    try:
        config = BridgeConfig.model_validate(_apply_env_overrides(raw))
    except ValidationError as exc:
        raise ConfigError(str(exc), source=str(config_file)) from exc

    logger.info(
        "Parsed config",
        extra={
            "broker": config.mqtt.url,
            "hub_connector": config.hub.connector,
            "payload_open": config.payload.open,
            "payload_close": config.payload.close,
            "payload_stop": config.payload.stop,
        },
    )
    return config


class BridgeController:
    lp: str = "BridgeController:"

    def __init__(self, config: BridgeConfig) -> None:
        self.config: BridgeConfig = config
        self.hub_error: BaseException | None = None
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        g.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(g.loop)
        g.config = config

        logger.info(" Initializing Smart Friends MQTT bridge", extra={"version": SF_VERSION})

        g.loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT))
        g.loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def start(self) -> None:
        """Start the MQTT client and dispatcher, then the hub once the broker is reachable."""
        lp = f"{self.lp}start:"

        g.hub = hub = load_hub_connector(self.config.hub.connector, self.config.hub.options)
        g.bridge = bridge = SmartFriendsBridge(hub, self.config)
        mqtt_client = bridge.mqtt_client
        assert isinstance(mqtt_client, MQTTClient)
        g.mqtt_client = mqtt_client

        mqtt_client.start_task = m_start = asyncio.Task(mqtt_client.start(), name=MQTT_CLIENT_START_TASK_NAME)
        bridge.run_task = b_run = asyncio.Task(bridge.run(), name=BRIDGE_LOOP_TASK_NAME)
        g.tasks.extend([m_start, b_run])

        logger.info("%s Waiting for the MQTT broker before starting the hub connector...", lp)
        await mqtt_client.wait_connected()

        h_start = asyncio.Task(hub.start(bridge), name=HUB_START_TASK_NAME)
        h_start.add_done_callback(self._hub_start_done)
        g.tasks.append(h_start)
        logger.info("%s Hub connector starting", lp)

        results = await asyncio.gather(m_start, b_run, return_exceptions=True)
        for task, result in zip((m_start, b_run), results, strict=True):
            if isinstance(result, Exception):
                logger.error("%s Task %s failed: %s", lp, task.get_name(), result)

        if self.hub_error is not None:
            msg = f"hub connector failed: {type(self.hub_error).__name__}: {self.hub_error}"
            raise HubConnectorError(msg, self.config.hub.connector) from self.hub_error

    def _hub_start_done(self, task: asyncio.Task[None]) -> None:
        """Shut the bridge down when the hub connector cannot run."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            logger.debug("%s Hub connector start() returned", self.lp)
            return
        self.hub_error = exc
        logger.error(
            "%s Hub connector failed to start, shutting down: %s",
            self.lp,
            exc,
            extra={"connector": self.config.hub.connector, "error_type": type(exc).__name__},
        )
        send_sigterm()


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Smart Friends MQTT bridge")
    _ = parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help=f"Path to the YAML config file (default: $SF_CONFIG_FILE or {SF_CONFIG_FILE_PATH})",
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to an environment file", default=None, type=Path)
    g.cli_args = args = parser.parse_args(argv)

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info(" Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})

    return args


def resolve_config_path(args: argparse.Namespace) -> Path:
    if args.config:
        return Path(args.config).expanduser().resolve()
    return Path(os.environ.get("SF_CONFIG_FILE", SF_CONFIG_FILE_PATH)).expanduser().resolve()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Smart Friends MQTT bridge."""
    with event_scope("startup"):
        logger.info("Starting Smart Friends MQTT bridge", extra={"version": SF_VERSION})

        args = parse_cli(argv)
        try:
            config = load_config(resolve_config_path(args))
        except ConfigError as exc:
            logger.error("%s", exc)
            return 1

        if args.debug or config.debug or SF_DEBUG:
            set_global_level(logging.DEBUG)
            logger.info("Debug logging enabled")

        controller = BridgeController(config)
        main_task = g.loop.create_task(controller.start())
        g.tasks.append(main_task)
        exit_code = 0
        try:
            g.loop.run_until_complete(main_task)
        except asyncio.CancelledError:
            if controller.hub_error is not None:
                # the cleanup triggered by a failed hub start also cancels this task
                logger.error("Bridge stopped after hub connector failure: %s", controller.hub_error)
                exit_code = 1
            else:
                logger.info("Bridge cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except (ConfigError, HubConnectorError) as exc:
            logger.error("%s", exc)
            exit_code = 1
        except Exception as e:
            logger.exception(" Fatal error in main loop", extra={"error": str(e)})
            exit_code = 1
        else:
            logger.info(" Bridge stopped gracefully")
        finally:
            if g.loop is not None and not g.loop.is_closed():
                g.loop.close()
            logger.info("Smart Friends MQTT bridge shutdown complete")
        return exit_code


if __name__ == "__main__":
    sys.exit(main())
