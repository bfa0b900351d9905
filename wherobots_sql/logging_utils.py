# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Logging helpers: a JSON formatter, session context and CLI setup.

Provides :class:`JsonLogFormatter`, a :class:`logging.Formatter` subclass
that serializes log records as single-line JSON objects.  All ``extra``
fields attached to a record are included, so the session ids, statuses and
execution ids the driver logs with become searchable keys.

This module is **not** auto-imported by ``wherobots_sql``; import it
explicitly::

    from wherobots_sql.logging_utils import JsonLogFormatter
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from wherobots_sql.messages import SessionResponse

__all__ = ["JsonLogFormatter", "configure_logging", "session_log_extra"]

# Anything *not* in this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception"})

# Correlation keys lead each line, in this order, when present.
_LEADING_KEYS: tuple[str, ...] = ("session_id", "execution_id")

_REDACTED_KEYS: frozenset[str] = frozenset({"api_key", "X-API-Key"})

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonLogFormatter(logging.Formatter):
    """JSON formatter that emits all structured extra fields.

    Each line starts with ``timestamp`` (ISO 8601, UTC), ``level``,
    ``logger`` and ``message``, then the ``session_id`` and ``execution_id``
    correlation keys when the record carries them, then the remaining extra
    fields in sorted order.  Extras never overwrite the standard keys.
    Credential-bearing keys are masked; other values that JSON cannot
    encode are coerced to strings.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        skip = _DEFAULT_RECORD_ATTRS | _RESERVED_KEYS
        extras = {k: v for k, v in record.__dict__.items() if k not in skip}
        obj: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _LEADING_KEYS:
            if key in extras:
                obj[key] = extras.pop(key)
        for key in sorted(extras):
            obj[key] = "***" if key in _REDACTED_KEYS else extras[key]
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(obj, default=str)


def session_log_extra(session: SessionResponse) -> dict[str, object]:
    """Build ``extra`` fields describing *session*, skipping empty values."""
    fields: dict[str, object] = {
        "session_id": session.id,
        "status": session.status.value,
        "traces": session.traces,
        "server_message": session.message,
        "app_url": session.app_meta.url if session.app_meta else None,
    }
    return {k: v for k, v in fields.items() if v}


def configure_logging(verbose: bool = False, fmt: Literal["text", "json"] = "text") -> logging.Handler:
    """Route ``wherobots_sql`` logs to stderr.

    Args:
        verbose: Log at DEBUG instead of INFO.
        fmt: ``"json"`` for :class:`JsonLogFormatter`, ``"text"`` for a
            plain one-line format.

    Returns:
        The installed handler, so callers can remove it again.

    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter() if fmt == "json" else logging.Formatter(_TEXT_FORMAT))
    logger = logging.getLogger("wherobots_sql")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return handler
