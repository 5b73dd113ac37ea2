# SPDX-License-Identifier: MIT
"""Idempotent transaction request tracking."""

from .duplicates import DuplicateDetector
from .engine import Admission, ExecutionEngine, Settlement
from .envelope import ENVELOPE_KEYS, Envelope, Outcome, as_envelope
from .errors import (
    AmbiguousOutcomeError,
    AppError,
    DuplicateSubmissionError,
    ErrorDomain,
    ErrorSeverity,
    IdempotencyError,
    IdempotencyValidationError,
    InvalidStateTransitionError,
    RecoveryError,
    RequestNotFoundError,
    map_execution_error,
    user_message,
)
from .keys import IdempotencyKeyFactory, KeyComponents, parse_key, sanitize_operation
from .lifecycle import SINGLE_FLIGHT_TRANSITIONS, TRANSITIONS, LifecycleController
from .models import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    DuplicateCheckResult,
    IdempotencyRequest,
    RecoveryResult,
    RequestState,
    SubmissionResult,
    TransactionStatus,
)
from .orchestrator import SubmissionOrchestrator
from .recovery import RecoveryCoordinator
from .single_flight import AsyncActionState, AsyncStatus, SingleFlightGuard
from .storage import (
    MemoryBackend,
    SessionFileBackend,
    SQLiteBackend,
    StorageBackend,
    StorageStrategy,
    create_backend,
)
from .store import RequestStore

__all__ = [
    "ACTIVE_STATES",
    "ENVELOPE_KEYS",
    "SINGLE_FLIGHT_TRANSITIONS",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "Admission",
    "AmbiguousOutcomeError",
    "AppError",
    "AsyncActionState",
    "AsyncStatus",
    "DuplicateCheckResult",
    "DuplicateDetector",
    "DuplicateSubmissionError",
    "Envelope",
    "ErrorDomain",
    "ErrorSeverity",
    "ExecutionEngine",
    "IdempotencyError",
    "IdempotencyKeyFactory",
    "IdempotencyRequest",
    "IdempotencyValidationError",
    "InvalidStateTransitionError",
    "KeyComponents",
    "LifecycleController",
    "MemoryBackend",
    "Outcome",
    "RecoveryCoordinator",
    "RecoveryError",
    "RecoveryResult",
    "RequestNotFoundError",
    "RequestState",
    "RequestStore",
    "SQLiteBackend",
    "SessionFileBackend",
    "Settlement",
    "SingleFlightGuard",
    "StorageBackend",
    "StorageStrategy",
    "SubmissionOrchestrator",
    "SubmissionResult",
    "TransactionStatus",
    "as_envelope",
    "create_backend",
    "map_execution_error",
    "parse_key",
    "sanitize_operation",
    "user_message",
]
