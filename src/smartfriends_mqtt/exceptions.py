"""Exception hierarchy for the Smart Friends MQTT bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors raised by the bridge."""


class ConfigError(BridgeError):
    """Configuration could not be loaded or is invalid.

    Raised when:
    - The configuration file is missing or not valid YAML
    - The payload mapping (open/close/stop) is incomplete
    - The broker URL uses an unsupported scheme

    Attributes:
        source: File path or setting the error refers to

    """

    def __init__(self, reason: str, source: str | None = None) -> None:
        self.reason: str = reason
        self.source: str | None = source
        where = f" ({source})" if source else ""
        super().__init__(f"Configuration error{where}: {reason}")


class HubConnectorError(BridgeError):
    """The hub connector could not be loaded or created.

    Attributes:
        reference: The "module:factory" reference that failed

    """

    def __init__(self, reason: str, reference: str | None = None) -> None:
        self.reason: str = reason
        self.reference: str | None = reference
        super().__init__(f"Hub connector error: {reason}" + (f" [{reference}]" if reference else ""))
