# SPDX-License-Identifier: MIT
"""Structured JSON logging with correlation identifiers.

Every record emitted while a :func:`correlation_context` is active carries a
``correlation_id`` field. The request tracker uses the idempotency key as the
correlation id, so all log lines produced by one guarded execution can be
joined together.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

__all__ = [
    "StructuredLogFormatter",
    "configure_logging",
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
]

_CORRELATION_ID_VAR: ContextVar[Optional[str]] = ContextVar(
    "txguard_correlation_id", default=None
)

# attributes every LogRecord carries; anything else arrived through ``extra=``
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def generate_correlation_id() -> str:
    return uuid4().hex


def get_correlation_id() -> Optional[str]:
    """Return the currently active correlation identifier, if any."""

    return _CORRELATION_ID_VAR.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    resolved = correlation_id or generate_correlation_id()
    token = _CORRELATION_ID_VAR.set(resolved)
    try:
        yield resolved
    finally:
        _CORRELATION_ID_VAR.reset(token)


class StructuredLogFormatter(logging.Formatter):
    """Render a record as one JSON object.

    The active correlation id and every ``extra=`` field (idempotency key,
    state, tx hash) become top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.format_to_dict(record), separators=(",", ":"), sort_keys=True, default=str)

    def format_to_dict(self, record: logging.LogRecord) -> dict[str, Any]:
        payload: dict[str, Any] = {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES
        }
        payload.update(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
        )
        correlation_id = get_correlation_id()
        if correlation_id is not None:
            payload.setdefault("correlation_id", correlation_id)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return payload


class _SinkHandler(logging.Handler):
    def __init__(self, sink: Callable[[dict[str, Any]], None]) -> None:
        super().__init__()
        self._sink = sink
        self._structured = StructuredLogFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sink(self._structured.format_to_dict(record))
        except Exception:
            self.handleError(record)


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    return numeric


def configure_logging(
    *,
    level: int | str = logging.INFO,
    sink: Callable[[dict[str, Any]], None] | None = None,
) -> None:
    """Replace the root handlers with a single structured handler.

    Records go to *sink* as dictionaries when one is given (tests collect
    them with ``records.append``), otherwise to stderr as JSON lines.
    """

    numeric_level = _level_number(level)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    if sink is not None:
        handler: logging.Handler = _SinkHandler(sink)
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredLogFormatter())
    root.addHandler(handler)
    root.setLevel(numeric_level)
