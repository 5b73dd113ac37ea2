# SPDX-License-Identifier: MIT
"""Error taxonomy for idempotent request tracking.

Two families live here. Exceptions derived from :class:`IdempotencyError`
are raised by the key factory, the lifecycle controller and the recovery
coordinator. :class:`AppError` is the structured, serialisable error stored on
FAILED records and returned to callers of the orchestrator, which never lets
execution failures escape as exceptions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, TypeVar

__all__ = [
    "AMBIGUOUS_ERROR_CODES",
    "AmbiguousOutcomeError",
    "AppError",
    "DuplicateSubmissionError",
    "ErrorDomain",
    "ErrorSeverity",
    "IdempotencyError",
    "IdempotencyValidationError",
    "InvalidStateTransitionError",
    "RecoveryError",
    "RequestNotFoundError",
    "is_ambiguous",
    "map_execution_error",
    "user_message",
]


E = TypeVar("E", bound=Enum)


class ErrorDomain(str, Enum):
    RPC = "rpc"
    API = "api"
    WALLET = "wallet"
    CONTRACT = "contract"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    RETRYABLE = "retryable"
    USER_ACTIONABLE = "user_actionable"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class AppError:
    """Structured error attached to failed requests and submission results."""

    code: str
    message: str
    domain: ErrorDomain = ErrorDomain.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.FATAL
    retryable: bool = False
    context: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": dict(self.context),
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AppError":
        """Build an error from a serialised record or an envelope error."""

        retryable = bool(payload.get("retryable", False))
        severity_default = ErrorSeverity.RETRYABLE if retryable else ErrorSeverity.FATAL
        return cls(
            code=str(payload.get("code") or "UNKNOWN"),
            message=str(payload.get("message") or ""),
            domain=_enum_or_default(ErrorDomain, payload.get("domain"), ErrorDomain.UNKNOWN),
            severity=_enum_or_default(ErrorSeverity, payload.get("severity"), severity_default),
            retryable=retryable,
            context=dict(payload.get("context") or {}),
        )


def _enum_or_default(enum_type: type[E], value: Any, default: E) -> E:
    try:
        return enum_type(value) if value else default
    except (TypeError, ValueError):
        return default


class IdempotencyError(RuntimeError):
    """Base class for idempotency tracking issues."""

    code: str = "IDEMPOTENCY_ERROR"
    status_code: int = 500
    domain: ErrorDomain = ErrorDomain.API

    def __init__(self, message: str, *, detail: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.detail = dict(detail or {})

    def to_app_error(self) -> AppError:
        return AppError(
            code=self.code,
            message=str(self),
            domain=self.domain,
            severity=ErrorSeverity.USER_ACTIONABLE,
            retryable=False,
            context=dict(self.detail),
        )


class IdempotencyValidationError(IdempotencyError):
    """Raised for malformed operation names or idempotency keys."""

    code = "API_VALIDATION_ERROR"
    status_code = 422


class RequestNotFoundError(IdempotencyError):
    """Raised when an operation targets a key with no stored request."""

    code = "REQUEST_NOT_FOUND"
    status_code = 404

    def __init__(self, key: str) -> None:
        super().__init__(f"No request found for idempotency key: {key}", detail={"key": key})
        self.key = key


class InvalidStateTransitionError(IdempotencyError):
    """Raised when a transition is not part of the lifecycle graph."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, key: str, from_state: Any, to_state: Any) -> None:
        from_value = getattr(from_state, "value", from_state)
        to_value = getattr(to_state, "value", to_state)
        super().__init__(
            f"Invalid state transition {from_value} -> {to_value} for key {key}",
            detail={"key": key, "from_state": from_value, "to_state": to_value},
        )
        self.key = key
        self.from_state = from_state
        self.to_state = to_state


class DuplicateSubmissionError(IdempotencyError):
    """Describes a blocked re-submission; reported in results, not raised."""

    code = "DUPLICATE_TRANSACTION"
    status_code = 409

    def __init__(self, key: str, state: Any) -> None:
        state_value = getattr(state, "value", state)
        super().__init__(
            f"Duplicate transaction: request {key} is {state_value}",
            detail={"key": key, "state": state_value},
        )
        self.key = key
        self.state = state


class RecoveryError(IdempotencyError):
    """Raised when an UNKNOWN request has nothing to recover against."""

    code = "RECOVERY_FAILED"
    status_code = 422


class AmbiguousOutcomeError(Exception):
    """Raised by execute callables when the remote outcome cannot be confirmed.

    ``tx_hash`` should be supplied whenever the transaction was submitted so
    the request can later be recovered against the status source.
    """

    def __init__(self, message: str = "Transaction outcome is unknown", *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


AMBIGUOUS_ERROR_CODES: frozenset[str] = frozenset({"TX_OUTCOME_UNKNOWN", "RPC_CONNECTION_TIMEOUT"})

_USER_REJECTION_RE = re.compile(
    r"\b(declined|rejected by (the )?user|user rejected|denied|cancell?ed by (the )?user)\b",
    re.IGNORECASE,
)

_USER_MESSAGES: Mapping[str, str] = {
    "RPC_NODE_UNAVAILABLE": "The network is temporarily unavailable. Please try again.",
    "RPC_CONNECTION_TIMEOUT": "Request timed out. Please check your connection and try again.",
    "RPC_TX_REJECTED": "Transaction was rejected by the network.",
    "RPC_TX_EXPIRED": "Transaction expired. Please try again.",
    "TX_OUTCOME_UNKNOWN": "We could not confirm this transaction yet. It may still complete.",
    "API_VALIDATION_ERROR": "Please check your input and try again.",
    "WALLET_USER_REJECTED": "Transaction was cancelled.",
    "WALLET_SIGN_FAILED": "Failed to sign transaction. Please try again.",
    "DUPLICATE_TRANSACTION": "This transaction is already being processed.",
    "RECOVERY_FAILED": "This transaction could not be confirmed. Please try again.",
    "UNKNOWN": "An unexpected error occurred. Please try again.",
}


def is_ambiguous(error: AppError) -> bool:
    """Return ``True`` when the error leaves the remote outcome undetermined."""

    return error.code in AMBIGUOUS_ERROR_CODES


def map_execution_error(exc: BaseException) -> AppError:
    """Translate an exception raised by an execute callable into an :class:`AppError`."""

    message = str(exc) or type(exc).__name__
    context: dict[str, Any] = {"exception_type": type(exc).__name__}
    if isinstance(exc, AmbiguousOutcomeError):
        if exc.tx_hash:
            context["tx_hash"] = exc.tx_hash
        return AppError(
            code="TX_OUTCOME_UNKNOWN",
            message=message,
            domain=ErrorDomain.RPC,
            severity=ErrorSeverity.RETRYABLE,
            retryable=True,
            context=context,
        )
    if isinstance(exc, IdempotencyError):
        return exc.to_app_error()
    if isinstance(exc, TimeoutError):
        return AppError(
            code="RPC_CONNECTION_TIMEOUT",
            message=message,
            domain=ErrorDomain.RPC,
            severity=ErrorSeverity.RETRYABLE,
            retryable=True,
            context=context,
        )
    if isinstance(exc, ConnectionError):
        return AppError(
            code="RPC_NODE_UNAVAILABLE",
            message=message,
            domain=ErrorDomain.RPC,
            severity=ErrorSeverity.RETRYABLE,
            retryable=True,
            context=context,
        )
    if _USER_REJECTION_RE.search(message):
        return AppError(
            code="WALLET_USER_REJECTED",
            message=message,
            domain=ErrorDomain.WALLET,
            severity=ErrorSeverity.USER_ACTIONABLE,
            retryable=False,
            context=context,
        )
    return AppError(code="UNKNOWN", message=message, context=context)


def user_message(error: AppError) -> str:
    """Return display-safe text for *error*."""

    return _USER_MESSAGES.get(error.code) or error.message or _USER_MESSAGES["UNKNOWN"]
