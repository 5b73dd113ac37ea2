# SPDX-License-Identifier: MIT
from __future__ import annotations

import asyncio

import pytest

from txguard.idempotency import (
    AmbiguousOutcomeError,
    AppError,
    DuplicateSubmissionError,
    ErrorDomain,
    ErrorSeverity,
    RequestNotFoundError,
    RequestState,
    map_execution_error,
    user_message,
)
from txguard.idempotency.errors import is_ambiguous


@pytest.mark.parametrize(
    ("exc", "code", "domain"),
    [
        (AmbiguousOutcomeError(), "TX_OUTCOME_UNKNOWN", ErrorDomain.RPC),
        (TimeoutError("slow node"), "RPC_CONNECTION_TIMEOUT", ErrorDomain.RPC),
        (asyncio.TimeoutError(), "RPC_CONNECTION_TIMEOUT", ErrorDomain.RPC),
        (ConnectionRefusedError("refused"), "RPC_NODE_UNAVAILABLE", ErrorDomain.RPC),
        (Exception("User declined transaction"), "WALLET_USER_REJECTED", ErrorDomain.WALLET),
        (RuntimeError("Request cancelled by user"), "WALLET_USER_REJECTED", ErrorDomain.WALLET),
        (ValueError("Network error"), "UNKNOWN", ErrorDomain.UNKNOWN),
    ],
)
def test_map_execution_error(exc: BaseException, code: str, domain: ErrorDomain) -> None:
    error = map_execution_error(exc)
    assert error.code == code
    assert error.domain is domain
    assert error.context["exception_type"] == type(exc).__name__


def test_unknown_errors_keep_the_original_message() -> None:
    error = map_execution_error(ValueError("Network error"))
    assert error.message == "Network error"
    assert error.severity is ErrorSeverity.FATAL
    assert error.retryable is False


def test_user_rejection_is_user_actionable() -> None:
    error = map_execution_error(Exception("User declined transaction"))
    assert error.severity is ErrorSeverity.USER_ACTIONABLE
    assert not is_ambiguous(error)


def test_idempotency_errors_keep_their_code() -> None:
    error = map_execution_error(RequestNotFoundError("k1"))
    assert error.code == "REQUEST_NOT_FOUND"
    assert error.context == {"key": "k1"}


def test_ambiguous_codes() -> None:
    assert is_ambiguous(map_execution_error(AmbiguousOutcomeError()))
    assert is_ambiguous(map_execution_error(TimeoutError()))
    assert not is_ambiguous(map_execution_error(ConnectionError()))


def test_duplicate_submission_error_describes_the_blocking_request() -> None:
    error = DuplicateSubmissionError("k1", RequestState.IN_FLIGHT).to_app_error()
    assert error.code == "DUPLICATE_TRANSACTION"
    assert error.message.startswith("Duplicate transaction")
    assert error.context == {"key": "k1", "state": "IN_FLIGHT"}


def test_app_error_round_trips_through_mapping() -> None:
    error = AppError(
        code="RPC_TX_REJECTED",
        message="rejected",
        domain=ErrorDomain.RPC,
        severity=ErrorSeverity.FATAL,
        context={"tx_hash": "abc"},
    )
    assert AppError.from_mapping(error.to_dict()) == error


def test_app_error_from_partial_mapping_uses_defaults() -> None:
    error = AppError.from_mapping({"message": "oops", "retryable": True})
    assert error.code == "UNKNOWN"
    assert error.severity is ErrorSeverity.RETRYABLE


def test_user_message_table() -> None:
    assert user_message(AppError(code="WALLET_USER_REJECTED", message="x")) == "Transaction was cancelled."
    assert user_message(AppError(code="SOMETHING_NEW", message="raw text")) == "raw text"


def test_app_error_from_mapping_tolerates_unknown_enum_values() -> None:
    error = AppError.from_mapping(
        {"code": "CONTRACT_ERROR", "message": "x", "domain": "network", "severity": "odd", "retryable": True}
    )
    assert error.domain is ErrorDomain.UNKNOWN
    assert error.severity is ErrorSeverity.RETRYABLE
