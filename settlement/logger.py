"""
Structured JSON Logging Module.

Every settlement decision, truncation and audit event is written as one
JSON object per line.  ``StructuredLogger`` is injected into the engine
functions and services; nothing in the package logs through a module
global.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

from settlement.utils.general import JsonValue, convert_to_json_safe

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a ``LogRecord`` as a single JSON line.

    Keys: ``timestamp`` (UTC ISO-8601), ``level``, ``logger_name``,
    ``message``, plus ``extra`` for fields passed through ``extra=`` and
    ``exception`` when a traceback is attached.  Extra values keep their
    JSON type; ``Decimal`` amounts are written as strings.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, JsonValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: convert_to_json_safe(value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


def _file_handler(path: str, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=str(log_path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


class StructuredLogger:
    """Injectable wrapper around a named ``logging.Logger``.

    Handlers are attached once per logger name; building a second
    ``StructuredLogger`` with the same name reuses them.  Settings not given
    explicitly come from ``AppConfig``.

    Usage::

        log = StructuredLogger(name="settlement.release")
        log.warning("L1 cap applied", extra={"order_id": "O-1", "stage": "main"})
    """

    def __init__(
        self,
        name: str = "settlement",
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Imported here: config logs through the stdlib logger at import time.
        from settlement.config import get_config

        cfg = get_config()
        resolved_level: int = cfg.log_level if level is None else level
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)
        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]

        path: str = log_file or cfg.LOG_FILE
        if path:
            try:
                handlers.append(_file_handler(
                    path,
                    cfg.LOG_MAX_BYTES if max_bytes is None else max_bytes,
                    cfg.LOG_BACKUP_COUNT if backup_count is None else backup_count,
                ))
            except OSError as exc:
                # Console output still works; report through it once attached.
                self._attach(handlers, formatter, resolved_level)
                self._logger.warning(
                    "Could not open log file '%s': %s. Logging to console only.", path, exc
                )
                return

        self._attach(handlers, formatter, resolved_level)

    def _attach(
        self,
        handlers: list[logging.Handler],
        formatter: logging.Formatter,
        level: int,
    ) -> None:
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "settlement") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name* built from ``AppConfig``."""
    return StructuredLogger(name=name)
