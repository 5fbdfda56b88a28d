"""
Event scopes for log correlation.

The dispatcher handles every queued item inside an ``event_scope``: a short
correlation id plus what is being handled (``mqtt``, ``value``, ``discovery``)
and for which device. The log formatters read the active scope, so every
line written while one event is processed (routing, encoding, derived
publications, hub calls) can be traced back to it.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass

__all__ = [
    "EventScope",
    "current_scope",
    "event_scope",
    "get_correlation_id",
]


@dataclass(frozen=True, slots=True)
class EventScope:
    correlation_id: str
    kind: str | None = None
    device_id: str | None = None

    @property
    def label(self) -> str:
        """``value:1002``, ``startup`` or ``""`` when nothing is known."""
        if self.kind and self.device_id:
            return f"{self.kind}:{self.device_id}"
        return self.kind or ""


_scope: contextvars.ContextVar[EventScope | None] = contextvars.ContextVar("event_scope", default=None)


def current_scope() -> EventScope | None:
    return _scope.get()


def get_correlation_id() -> str | None:
    scope = _scope.get()
    return scope.correlation_id if scope else None


@contextmanager
def event_scope(
    kind: str | None = None,
    device_id: str | None = None,
    correlation_id: str | None = None,
) -> Generator[EventScope]:
    """Handle one event under its own correlation id.

    Example:
        with event_scope("value", "1002"):
            await helper.publish_device_status(event)
    """
    scope = EventScope(correlation_id or uuid.uuid4().hex[:12], kind, device_id)
    token = _scope.set(scope)
    try:
        yield scope
    finally:
        _scope.reset(token)
