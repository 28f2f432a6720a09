"""Logging setup for thing-access driver processes.

Every line is one JSON object stamped with the driver module name. Context
passed through ``extra=`` is split in two: the thing identity fields
(``device_id``, ``product_key``, ``member``) are lifted to the top level so
log shippers can index them, anything else lands under ``extra``.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..const import ENV_LOG_STREAM
from .settings import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")

CONTEXT_FIELDS = ("device_id", "product_key", "member")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Sets encode as arrays and bytes as base64; anything else msgspec rejects is stringified.
_encoder = msgspec.json.Encoder(enc_hook=str)


class StructuredLogFormatter(logging.Formatter):
    """Emit one JSON object per record for a single driver module."""

    PREFIX = "thingaccess."

    def __init__(self, module_name: str | None = None) -> None:
        super().__init__()
        self.module_name = module_name

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name.removeprefix(self.PREFIX)
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": logger_name,
        }
        if self.module_name:
            payload["module"] = self.module_name

        extras: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CONTEXT_FIELDS:
                payload[key] = value
            else:
                extras[key] = value

        payload["message"] = record.getMessage()
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return _encoder.encode(payload).decode("utf-8")


def _build_handler(ident: str = "thingaccess") -> Handler:
    if os.environ.get(ENV_LOG_STREAM):
        return logging.StreamHandler()

    for candidate in (SYSLOG_SOCKET, SYSLOG_SOCKET_FALLBACK):
        if candidate.exists():
            syslog_handler = SysLogHandler(address=str(candidate), facility=SysLogHandler.LOG_DAEMON)
            syslog_handler.ident = f"{ident} "
            return syslog_handler
    return logging.StreamHandler()


def configure_logging(config: RuntimeConfig) -> None:
    """Route all records through one structured handler tagged with the module name."""
    level_name = "DEBUG" if config.debug_logging else "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": "thingaccess.config.logging.StructuredLogFormatter",
                    "module_name": config.module_name,
                }
            },
            "handlers": {
                "thingaccess": {
                    "()": _build_handler,
                    "ident": f"thingaccess-{config.module_name}",
                    "level": level_name,
                    "formatter": "structured",
                }
            },
            "root": {
                "level": level_name,
                "handlers": ["thingaccess"],
            },
        }
    )

    logging.getLogger("thingaccess").info("Logging configured at level %s", level_name)
