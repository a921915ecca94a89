"""Logging layer for the Vantage bridge.

Every module logs through a ``VantageLogger`` obtained from ``get_logger``.
Records can carry a structured ``extra`` mapping which is rendered as a JSON
``context`` object or as trailing ``key=value`` pairs, and every record is
stamped with the correlation ID active in the current task.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

from vantage_controller.correlation import get_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "VantageLogger",
    "get_logger",
]

_EXTRA_KEY = "vantage_context"


def _record_context(record: logging.LogRecord) -> Mapping[str, object] | None:
    context = getattr(record, _EXTRA_KEY, None)
    if isinstance(context, Mapping) and context:
        return cast("Mapping[str, object]", context)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _record_context(record)
        if context:
            payload["context"] = dict(context)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single-line text output with a short correlation tag."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s <%(name)s:%(lineno)d> %(correlation_tag)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_tag = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        line = super().format(record)
        context = _record_context(record)
        if context:
            line = f"{line} | " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


class VantageLogger:
    """Thin wrapper over ``logging.Logger`` accepting structured ``extra`` context."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        """Create the logger and attach handlers once per logger name.

        Args:
            name: Logger name, usually ``__name__``
            log_format: "json", "human" or "both"
            json_file: File receiving JSON records, None disables it
            human_output: "stdout", "stderr" or a file path

        """
        from vantage_controller.const import VANTAGE_DEBUG

        self.name: str = name
        self.log_format: str = log_format
        self.logger: logging.Logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if VANTAGE_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        level = self.logger.level
        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: cannot open JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(level)
                self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            target = human_output or "stdout"
            human_handler: logging.Handler
            if target == "stdout":
                human_handler = logging.StreamHandler(sys.stdout)
            elif target == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(target)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: cannot open log file {target}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)
            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(level)
            self.logger.addHandler(human_handler)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None, **kwargs) -> None:
        payload = {_EXTRA_KEY: dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=payload, stacklevel=3, **kwargs)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


_loggers: dict[str, VantageLogger] = {}


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> VantageLogger:
    """Return the cached ``VantageLogger`` for *name*, creating it on first use."""
    if name in _loggers:
        return _loggers[name]

    from vantage_controller.const import (
        VANTAGE_LOG_FORMAT,
        VANTAGE_LOG_HUMAN_OUTPUT,
        VANTAGE_LOG_JSON_FILE,
    )

    _loggers[name] = logger = VantageLogger(
        name=name,
        log_format=log_format or VANTAGE_LOG_FORMAT,
        json_file=json_file or VANTAGE_LOG_JSON_FILE,
        human_output=human_output or VANTAGE_LOG_HUMAN_OUTPUT,
    )
    return logger


def set_global_level(level: int) -> None:
    """Apply *level* to every logger handed out so far (used by ``--debug``)."""
    for logger in _loggers.values():
        logger.set_level(level)
