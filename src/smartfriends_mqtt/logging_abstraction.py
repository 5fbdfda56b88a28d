"""Logging for the Smart Friends MQTT bridge.

Log lines carry the event being handled (see ``correlation.event_scope``):

    10/17/26 12:00:01.123 DEBUG [state_updates:61] [3f2a9c01d4e5 value:1002] > ... | value_kind=number

``SF_LOG_FORMAT`` selects human-readable output (stdout, stderr or a file), a
JSON-lines file (``SF_LOG_JSON_FILE``) or both.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import override

from smartfriends_mqtt.correlation import current_scope

__all__ = [
    "BridgeLogger",
    "get_logger",
    "quiet_foreign_loggers",
    "set_global_level",
]


def _context(record: logging.LogRecord) -> dict[str, object]:
    extra_data = getattr(record, "extra_data", None)
    return dict(extra_data) if isinstance(extra_data, Mapping) else {}


class _JSONFormatter(logging.Formatter):
    """One JSON object per line, with the event scope as top-level fields."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        scope = current_scope()
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": scope.correlation_id if scope else None,
            "event": scope.kind if scope else None,
            "device_id": scope.device_id if scope else None,
        }
        if context := _context(record):
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class _HumanFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(event_tag)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        from smartfriends_mqtt.const import SF_LOG_CORRELATION_ENABLED  # noqa: PLC0415

        scope = current_scope() if SF_LOG_CORRELATION_ENABLED else None
        if scope is None:
            record.event_tag = "[--]"
        else:
            record.event_tag = f"[{scope.correlation_id} {scope.label}]" if scope.label else f"[{scope.correlation_id}]"

        line = super().format(record)
        if context := _context(record):
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def _open_file_handler(path: str | Path) -> logging.Handler | None:
    try:
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(file_path, mode="a", encoding="utf-8")
    except OSError as e:
        print(f"Warning: cannot open log file {path}: {e}", file=sys.stderr)
        return None


def _build_handlers(log_format: str, json_file: str | Path | None, human_output: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if log_format in ("json", "both") and json_file:
        json_handler = _open_file_handler(json_file)
        if json_handler is not None:
            json_handler.setFormatter(_JSONFormatter())
            handlers.append(json_handler)

    if log_format in ("human", "both"):
        target = human_output or "stdout"
        if target in ("stdout", "stderr"):
            human_handler: logging.Handler | None = logging.StreamHandler(getattr(sys, target))
        else:
            human_handler = _open_file_handler(target) or logging.StreamHandler(sys.stdout)
        human_handler.setFormatter(_HumanFormatter())
        handlers.append(human_handler)
    return handlers


class BridgeLogger:
    """Thin wrapper over a stdlib logger taking a structured ``extra`` mapping.

    ``extra`` is stored on the record as ``extra_data`` and rendered as
    ``key=value`` pairs (human) or a ``context`` object (JSON).
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        from smartfriends_mqtt.const import SF_DEBUG  # noqa: PLC0415

        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        level = logging.DEBUG if SF_DEBUG else logging.INFO
        # a name seen twice (re-import, direct construction) keeps its handlers
        if not self.logger.handlers:
            for handler in _build_handlers(log_format, json_file, human_output):
                self.logger.addHandler(handler)
        self.set_level(level)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None, **kwargs: bool) -> None:
        self.logger.log(level, msg, *args, extra={"extra_data": dict(extra)} if extra else None, **kwargs)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)


_loggers: dict[str, BridgeLogger] = {}
_global_level: int | None = None


def get_logger(name: str) -> BridgeLogger:
    """Return the cached BridgeLogger for ``name``, configured from SF_LOG_* settings."""
    if name not in _loggers:
        from smartfriends_mqtt.const import SF_LOG_FORMAT, SF_LOG_HUMAN_OUTPUT, SF_LOG_JSON_FILE  # noqa: PLC0415

        bridge_logger = BridgeLogger(name, SF_LOG_FORMAT, SF_LOG_JSON_FILE, SF_LOG_HUMAN_OUTPUT)
        if _global_level is not None:
            bridge_logger.set_level(_global_level)
        _loggers[name] = bridge_logger
    return _loggers[name]


def set_global_level(level: int) -> None:
    """Apply ``level`` to every bridge logger, including ones created later."""
    global _global_level
    _global_level = level
    for bridge_logger in _loggers.values():
        bridge_logger.set_level(level)


def quiet_foreign_loggers(names: tuple[str, ...] = ("aiomqtt", "mqtt")) -> None:
    """Cap verbose third-party loggers at ERROR."""
    for name in names:
        foreign = logging.getLogger(name)
        foreign.setLevel(logging.ERROR)
        foreign.propagate = False
