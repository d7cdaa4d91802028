"""Record → document formatting.

A formatter is any callable ``(logging.LogRecord) -> Document``. The default
one produces the four-field wire shape::

    {
        "@timestamp": "2026-01-01T12:00:00.123456Z",
        "message": "Hello world!",
        "level": "info",
        "data": {"user": "alice", "error": "boom"}
    }

``data`` holds whatever the caller attached with ``extra=``. Records coming
through structlog's stdlib bridge carry the event dict as ``record.msg``;
its ``event`` becomes the message and the other keys land in ``data``.

Error normalization: an exception stored under the ``error`` key is replaced
by its string form, and the replacement is written back to the record in
place so later formatters see a serializable value.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

Document = dict[str, Any]
Formatter = Callable[[logging.LogRecord], Document]

ERROR_KEY = "error"

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# Keys structlog's ProcessorFormatter machinery adds to bridged records.
_STRUCTLOG_META = frozenset({"_record", "_from_structlog", "_logger", "_name", "event"})


def rfc3339_nano(created: float) -> str:
    """Format a ``time.time()`` value as RFC 3339 UTC.

    Fractional seconds are trimmed of trailing zeros and dropped entirely when
    zero, e.g. ``2026-01-01T00:00:00Z`` or ``2026-01-01T00:00:00.5Z``.
    """
    dt = datetime.fromtimestamp(created, tz=UTC)
    base = dt.strftime("%Y-%m-%dT%H:%M:%S")
    frac = f"{dt.microsecond:06d}".rstrip("0")
    return f"{base}.{frac}Z" if frac else f"{base}Z"


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the caller-supplied fields of a record."""
    data = {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    if isinstance(record.msg, dict):
        data.update(
            (key, value)
            for key, value in record.msg.items()
            if key not in _STRUCTLOG_META
        )
    return data


def record_message(record: logging.LogRecord) -> str:
    if isinstance(record.msg, dict):
        return str(record.msg.get("event", ""))
    return record.getMessage()


def normalize_error(record: logging.LogRecord, data: dict[str, Any]) -> None:
    err = data.get(ERROR_KEY)
    if isinstance(err, BaseException):
        data[ERROR_KEY] = str(err)
        # Written back so the record itself stays serializable.
        if ERROR_KEY in vars(record):
            setattr(record, ERROR_KEY, data[ERROR_KEY])
        elif isinstance(record.msg, dict):
            record.msg[ERROR_KEY] = data[ERROR_KEY]
    elif err is None and record.exc_info and record.exc_info[1] is not None:
        data[ERROR_KEY] = str(record.exc_info[1])


def default_formatter(record: logging.LogRecord) -> Document:
    data = record_fields(record)
    normalize_error(record, data)
    return {
        "@timestamp": rfc3339_nano(record.created),
        "message": record_message(record),
        "level": record.levelname.lower(),
        "data": data,
    }
