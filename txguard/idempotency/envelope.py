# SPDX-License-Identifier: MIT
"""Classify the settlement of an execute callable.

Execute callables may return a bare value or a discriminated envelope. A
value is treated as an envelope only when it is an :class:`Envelope`, or a
mapping whose ``success`` entry is a ``bool`` and whose keys all belong to
:data:`ENVELOPE_KEYS`. Arbitrary caller data that merely contains a
``success`` key is therefore passed through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

from .errors import AmbiguousOutcomeError, AppError, is_ambiguous, map_execution_error
from .models import RequestState

__all__ = [
    "ENVELOPE_KEYS",
    "Envelope",
    "Outcome",
    "as_envelope",
    "classify_bare",
    "classify_exception",
    "classify_result",
]

T = TypeVar("T")

ENVELOPE_KEYS: frozenset[str] = frozenset({"success", "data", "error", "txHash", "tx_hash", "ledger"})


@dataclass(frozen=True, slots=True)
class Envelope(Generic[T]):
    success: bool
    data: T | None = None
    error: AppError | Mapping[str, Any] | str | None = None
    tx_hash: str | None = None
    ledger: int | None = None


@dataclass(frozen=True, slots=True)
class Outcome:
    """Terminal interpretation of one execute settlement."""

    state: RequestState
    data: Any = None
    error: AppError | None = None
    tx_hash: str | None = None
    ledger: int | None = None
    exception: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.state is RequestState.COMPLETED


def as_envelope(value: Any) -> Envelope[Any] | None:
    if isinstance(value, Envelope):
        return value
    if not isinstance(value, Mapping):
        return None
    if not isinstance(value.get("success"), bool):
        return None
    if not set(value).issubset(ENVELOPE_KEYS):
        return None
    ledger = value.get("ledger")
    return Envelope(
        success=value["success"],
        data=value.get("data"),
        error=value.get("error"),
        tx_hash=value.get("txHash", value.get("tx_hash")),
        ledger=int(ledger) if ledger is not None else None,
    )


def _coerce_error(error: AppError | Mapping[str, Any] | str | None) -> AppError:
    if isinstance(error, AppError):
        return error
    if isinstance(error, Mapping):
        return AppError.from_mapping(error)
    if isinstance(error, BaseException):
        return map_execution_error(error)
    if error:
        return AppError(code="UNKNOWN", message=str(error))
    return AppError(code="UNKNOWN", message="Execution reported failure without details")


def _failure(error: AppError, *, tx_hash: str | None = None, exception: BaseException | None = None) -> Outcome:
    state = RequestState.UNKNOWN if is_ambiguous(error) else RequestState.FAILED
    return Outcome(
        state=state,
        error=error,
        tx_hash=tx_hash if state is RequestState.UNKNOWN else None,
        exception=exception,
    )


def classify_exception(exc: BaseException) -> Outcome:
    tx_hash = exc.tx_hash if isinstance(exc, AmbiguousOutcomeError) else None
    return _failure(map_execution_error(exc), tx_hash=tx_hash, exception=exc)


def classify_result(value: Any) -> Outcome:
    envelope = as_envelope(value)
    if envelope is None:
        return Outcome(state=RequestState.COMPLETED, data=value)
    if not envelope.success:
        return _failure(_coerce_error(envelope.error), tx_hash=envelope.tx_hash)
    return Outcome(
        state=RequestState.COMPLETED,
        data=envelope.data,
        tx_hash=envelope.tx_hash,
        ledger=envelope.ledger,
    )


def classify_bare(value: Any) -> Outcome:
    return Outcome(state=RequestState.COMPLETED, data=value)
