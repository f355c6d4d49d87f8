"""Log formatting and per-issuance context for hvissuer.

Every issuance runs inside :func:`issuance_context`, which tags records
with a short issuance id and, once the CA has accepted the request, the
CA serial.  :func:`configure_logging` installs a single stderr handler on
the ``hvissuer`` logger with either JSON-lines or plain-text output.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

    from hvissuer.config.settings import LoggingSettings

_issuance_id: ContextVar[str | None] = ContextVar("hvissuer_issuance_id", default=None)
_ca_serial: ContextVar[str | None] = ContextVar("hvissuer_ca_serial", default=None)

_CONTEXT_FIELDS = ("issuance_id", "ca_serial")

# Attribute names every LogRecord carries; anything else came from ``extra=``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)),
) | {"message", "asctime", *_CONTEXT_FIELDS}


@contextlib.contextmanager
def issuance_context(issuance_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with *issuance_id*."""
    id_token = _issuance_id.set(issuance_id)
    serial_token = _ca_serial.set(None)
    try:
        yield
    finally:
        _ca_serial.reset(serial_token)
        _issuance_id.reset(id_token)


def set_ca_serial(serial: str) -> None:
    """Record the CA-assigned serial for the current issuance."""
    _ca_serial.set(serial)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Carries timestamp, level, logger and message, the issuance context
    when present, and any ``extra=`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        for key, value in _extra_fields(record).items():
            entry.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line console output with the issuance id in brackets."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(issuance_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class IssuanceContextFilter(logging.Filter):
    """Copy the active issuance id and CA serial onto each record.

    Outside an issuance ``issuance_id`` is ``"-"``; ``ca_serial`` stays
    ``None`` until the CA assigns one.  Values already set on the record
    via ``extra=`` are left alone.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "issuance_id"):
            record.issuance_id = _issuance_id.get() or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "ca_serial"):
            record.ca_serial = _ca_serial.get()  # type: ignore[attr-defined]
        return True


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Point the ``hvissuer`` logger at stderr using *settings*.

    Existing handlers on that logger are dropped, so calling this after
    the CLI's bootstrap ``basicConfig`` replaces the plain output.
    Unknown level names fall back to INFO.
    """
    logger = logging.getLogger("hvissuer")
    level = logging.getLevelName(settings.level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    handler.addFilter(IssuanceContextFilter())
    logger.addHandler(handler)
    return logger
