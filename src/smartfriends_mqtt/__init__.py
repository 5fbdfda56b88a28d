"""Smart Friends / Schellenberg hub to MQTT bridge."""

__version__ = "0.1.0"
