"""Conversion between hub values and MQTT payloads.

Hub values are booleans, numbers or strings. On the wire they travel as JSON
scalars, but payloads published by hand ("up", "stop", ...) are plain text, so
both directions fall back to the raw string instead of failing.
"""

from __future__ import annotations

import json
import math
from enum import StrEnum
from typing import Any

__all__ = [
    "HubValue",
    "ValueKind",
    "decode_payload",
    "encode_value",
    "is_position_endpoint",
    "value_kind",
]

HubValue = bool | int | float | str


class ValueKind(StrEnum):
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"


def value_kind(value: HubValue) -> ValueKind:
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int | float):
        return ValueKind.NUMBER
    return ValueKind.STRING


def _reject_constant(name: str) -> Any:
    # NaN / Infinity are not JSON, keep such payloads as text
    raise ValueError(name)


def decode_payload(payload: bytes | bytearray | str) -> HubValue:
    """Decode an MQTT payload into a hub value.

    JSON scalars become bool/int/float/str. Anything else (plain text, JSON
    objects/arrays/null, invalid UTF-8) is returned as the payload text.
    """
    if isinstance(payload, bytes | bytearray):
        text = bytes(payload).decode("utf-8", errors="replace")
    else:
        text = payload

    try:
        decoded = json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return text

    if isinstance(decoded, bool | int | float | str):
        return decoded
    return text


def encode_value(value: object) -> str:
    """Encode a hub value as an MQTT payload string.

    Integral floats are written without a fraction (``100.0`` -> ``"100"``) so
    positions read the same whichever numeric type the hub used.
    """
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        value = int(value)
    try:
        return json.dumps(value, allow_nan=False, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def is_position_endpoint(value: object) -> bool:
    """True when a position report is exactly fully open (0) or fully closed (100)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return value in (0, 100)
