# SPDX-License-Identifier: MIT
"""Value objects shared by the idempotency components."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Literal, Mapping, TypeVar

from .errors import AppError

__all__ = [
    "ACTIVE_STATES",
    "TERMINAL_STATES",
    "DuplicateCheckResult",
    "IdempotencyRequest",
    "RecoveryResult",
    "RequestState",
    "SubmissionResult",
    "TransactionStatus",
]

T = TypeVar("T")


class RequestState(str, Enum):
    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


TERMINAL_STATES: frozenset[RequestState] = frozenset({RequestState.COMPLETED, RequestState.FAILED})
ACTIVE_STATES: frozenset[RequestState] = frozenset(
    {RequestState.PENDING, RequestState.IN_FLIGHT, RequestState.UNKNOWN}
)


@dataclass(frozen=True, slots=True)
class IdempotencyRequest:
    """Snapshot of a tracked request.

    Records are immutable; the lifecycle controller stores a new snapshot for
    every transition.
    """

    key: str
    state: RequestState
    operation: str
    created_at: int
    updated_at: int
    tx_hash: str | None = None
    ledger: int | None = None
    error: AppError | None = None
    retry_count: int = 0
    max_retries: int = 3
    context: Mapping[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state.value,
            "operation": self.operation,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tx_hash": self.tx_hash,
            "ledger": self.ledger,
            "error": self.error.to_dict() if self.error is not None else None,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "context": copy.deepcopy(dict(self.context)) if self.context is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "IdempotencyRequest":
        error = payload.get("error")
        context = payload.get("context")
        ledger = payload.get("ledger")
        return cls(
            key=str(payload["key"]),
            state=RequestState(payload["state"]),
            operation=str(payload["operation"]),
            created_at=int(payload["created_at"]),
            updated_at=int(payload["updated_at"]),
            tx_hash=payload.get("tx_hash"),
            ledger=int(ledger) if ledger is not None else None,
            error=AppError.from_mapping(error) if error else None,
            retry_count=int(payload.get("retry_count", 0)),
            max_retries=int(payload.get("max_retries", 3)),
            context=copy.deepcopy(dict(context)) if context is not None else None,
        )


@dataclass(frozen=True, slots=True)
class DuplicateCheckResult:
    is_duplicate: bool
    existing_request: IdempotencyRequest | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RecoveryResult:
    recovered: bool
    request: IdempotencyRequest
    tx_hash: str | None = None
    ledger: int | None = None


@dataclass(frozen=True, slots=True)
class TransactionStatus:
    """Observation returned by a status source for a submitted transaction."""

    status: Literal["pending", "success", "failure"]
    ledger: int | None = None

    @classmethod
    def coerce(cls, value: "TransactionStatus | Mapping[str, Any]") -> "TransactionStatus":
        if isinstance(value, TransactionStatus):
            return value
        status = str(value.get("status", "pending")).lower()
        if status not in {"pending", "success", "failure"}:
            raise ValueError(f"Unsupported transaction status: {status!r}")
        ledger = value.get("ledger")
        return cls(status=status, ledger=int(ledger) if ledger is not None else None)  # type: ignore[arg-type]

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"


@dataclass(frozen=True, slots=True)
class SubmissionResult(Generic[T]):
    """Discriminated outcome of :meth:`SubmissionOrchestrator.submit_with_idempotency`."""

    success: bool
    idempotency_key: str | None
    request: IdempotencyRequest | None = None
    data: T | None = None
    error: AppError | None = None
    tx_hash: str | None = None
    ledger: int | None = None
    from_cache: bool = False
    duplicate: bool = False

    @property
    def state(self) -> RequestState | None:
        return self.request.state if self.request is not None else None
