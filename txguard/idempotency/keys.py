# SPDX-License-Identifier: MIT
"""Utilities for producing correlation keys for transaction requests."""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from typing import Callable

from .errors import IdempotencyValidationError

__all__ = [
    "MAX_OPERATION_LENGTH",
    "IdempotencyKeyFactory",
    "KeyComponents",
    "epoch_millis",
    "parse_key",
    "sanitize_operation",
]

MAX_OPERATION_LENGTH = 64

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9]")
_KEY_RE = re.compile(r"^(?P<operation>[A-Za-z0-9]+)_(?P<timestamp>\d+)_(?P<nonce>[a-f0-9]{8})(?:_(?P<context>.+))?$")


def epoch_millis() -> int:
    """Return the current wall-clock time in milliseconds."""

    return time.time_ns() // 1_000_000


def _random_nonce() -> str:
    return secrets.token_hex(4)


def sanitize_operation(operation: str) -> str:
    """Validate *operation* and strip every non-alphanumeric character."""

    if not operation or not operation.strip():
        raise IdempotencyValidationError("Operation name cannot be empty")
    if len(operation) > MAX_OPERATION_LENGTH:
        raise IdempotencyValidationError(
            f"Operation name must be <= {MAX_OPERATION_LENGTH} characters",
            detail={"length": len(operation)},
        )
    sanitized = _UNSAFE_CHARS_RE.sub("", operation)
    if not sanitized:
        raise IdempotencyValidationError(
            "Operation name must contain alphanumeric characters",
            detail={"operation": operation},
        )
    return sanitized


@dataclass(frozen=True, slots=True)
class KeyComponents:
    """Parsed representation of a generated idempotency key."""

    operation: str
    timestamp_ms: int
    nonce: str
    user_context: str | None = None


class IdempotencyKeyFactory:
    """Factory producing ``{operation}_{timestampMs}_{nonce}[_{context}]`` keys."""

    def __init__(
        self,
        *,
        clock: Callable[[], int] | None = None,
        nonce: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock or epoch_millis
        self._nonce = nonce or _random_nonce

    def generate(
        self,
        operation: str,
        *,
        user_context: str | None = None,
        timestamp: int | None = None,
    ) -> str:
        sanitized = sanitize_operation(operation)
        timestamp_ms = self._clock() if timestamp is None else int(timestamp)
        key = f"{sanitized}_{timestamp_ms}_{self._nonce()}"
        if user_context:
            key = f"{key}_{user_context}"
        return key


def parse_key(key: str) -> KeyComponents:
    """Split a generated key back into its components."""

    match = _KEY_RE.match(key or "")
    if match is None:
        raise IdempotencyValidationError("Malformed idempotency key", detail={"key": key})
    return KeyComponents(
        operation=match.group("operation"),
        timestamp_ms=int(match.group("timestamp")),
        nonce=match.group("nonce"),
        user_context=match.group("context"),
    )
