"""Hub connector loading.

The Smart Friends protocol itself lives in a separate connector package. The
bridge only needs an object satisfying ``HubConnectorProtocol``; which one is
chosen by a ``"package.module:factory"`` reference in the configuration. The
factory is called with the ``hub.options`` mapping from the config file.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping
from typing import Any

from smartfriends_mqtt.exceptions import HubConnectorError
from smartfriends_mqtt.logging_abstraction import get_logger
from smartfriends_mqtt.structs import HubConnectorProtocol

logger = get_logger(__name__)

_REQUIRED_METHODS = ("start", "stop", "set_device_value", "get_device_map")


def _resolve(reference: str) -> Any:
    module_path, sep, attr_path = reference.partition(":")
    if not sep or not module_path or not attr_path:
        msg = "expected 'package.module:factory'"
        raise HubConnectorError(msg, reference)
    try:
        target: Any = importlib.import_module(module_path)
    except ImportError as exc:
        raise HubConnectorError(f"cannot import '{module_path}': {exc}", reference) from exc
    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as exc:
            raise HubConnectorError(f"'{module_path}' has no attribute '{attr_path}'", reference) from exc
    return target


def load_hub_connector(reference: str | None, options: Mapping[str, Any] | None = None) -> HubConnectorProtocol:
    """Instantiate the hub connector named by ``reference``.

    Raises:
        HubConnectorError: the reference is missing, cannot be imported, the
            factory raised, or the result lacks the connector methods.

    """
    if not reference:
        msg = "no hub connector configured (set hub.connector in the config file)"
        raise HubConnectorError(msg)

    factory = _resolve(reference)
    if not callable(factory):
        msg = "factory is not callable"
        raise HubConnectorError(msg, reference)

    try:
        connector = factory(**dict(options or {}))
    except Exception as exc:
        raise HubConnectorError(f"factory raised {type(exc).__name__}: {exc}", reference) from exc

    missing = [name for name in _REQUIRED_METHODS if not callable(getattr(connector, name, None))]
    if missing:
        raise HubConnectorError(f"connector is missing {', '.join(missing)}", reference)

    logger.info("Loaded hub connector", extra={"connector": reference, "type": type(connector).__name__})
    return connector
