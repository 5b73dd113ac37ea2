# SPDX-License-Identifier: MIT
"""Execution engine shared by the submission orchestrator and the single-flight guard.

The engine owns the two halves of a guarded execution:

* :meth:`ExecutionEngine.admit` runs synchronously. It performs the duplicate
  check, registers the request and moves it to IN_FLIGHT before the caller
  reaches its first ``await``, so two submissions for one key racing on the
  same event loop cannot both be admitted.
* :meth:`ExecutionEngine.execute` invokes the caller's callable inside an
  engine-owned task and awaits it through :func:`asyncio.shield`. Abandoning
  the awaiting caller does not cancel the remote side effect, and the record
  still settles once the callable does.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping

from txguard.observability.logging import correlation_context

from .duplicates import DuplicateDetector
from .envelope import Outcome, classify_exception, classify_result
from .errors import AmbiguousOutcomeError, InvalidStateTransitionError, RequestNotFoundError
from .lifecycle import LifecycleController
from .models import DuplicateCheckResult, IdempotencyRequest, RequestState

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from txguard.observability.metrics import IdempotencyMetrics

__all__ = ["Admission", "ExecutionEngine", "Settlement"]

LOGGER = logging.getLogger(__name__)

Classifier = Callable[[Any], Outcome]


@dataclass(frozen=True, slots=True)
class Admission:
    admitted: bool
    request: IdempotencyRequest
    duplicate: DuplicateCheckResult


@dataclass(frozen=True, slots=True)
class Settlement:
    outcome: Outcome
    request: IdempotencyRequest | None


class ExecutionEngine:
    def __init__(
        self,
        lifecycle: LifecycleController,
        detector: DuplicateDetector | None = None,
        *,
        classify: Classifier = classify_result,
        metrics: "IdempotencyMetrics | None" = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._detector = detector or DuplicateDetector(lifecycle.store)
        self._classify = classify
        self._metrics = metrics
        self._pending: set[asyncio.Future[Settlement]] = set()

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def detector(self) -> DuplicateDetector:
        return self._detector

    @property
    def pending(self) -> int:
        return len(self._pending)

    def admit(
        self,
        key: str,
        operation: str,
        context: Mapping[str, Any] | None = None,
    ) -> Admission:
        duplicate = self._detector.check(key)
        existing = duplicate.existing_request
        if duplicate.is_duplicate and existing is not None:
            return Admission(admitted=False, request=existing, duplicate=duplicate)
        self._lifecycle.register(key, operation, context)
        request = self._lifecycle.update_state(key, RequestState.IN_FLIGHT)
        return Admission(admitted=True, request=request, duplicate=duplicate)

    async def execute(
        self,
        key: str,
        execute: Callable[[], Any],
        *,
        operation: str = "unknown",
    ) -> Settlement:
        """Run *execute* for an admitted key and settle its request."""

        task = asyncio.ensure_future(self._settle(key, execute, operation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every outstanding execution to settle."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _settle(self, key: str, execute: Callable[[], Any], operation: str) -> Settlement:
        started = time.perf_counter()
        with correlation_context(key):
            try:
                value = execute()
                if inspect.isawaitable(value):
                    value = await value
                outcome = self._classify(value)
            except asyncio.CancelledError:
                # the remote side effect may already have happened
                self._finalize(key, classify_exception(AmbiguousOutcomeError("Execution was cancelled")))
                raise
            except Exception as exc:
                outcome = classify_exception(exc)
            finally:
                if self._metrics is not None:
                    self._metrics.observe_execute(operation, time.perf_counter() - started)
            return self._finalize(key, outcome)

    def _finalize(self, key: str, outcome: Outcome) -> Settlement:
        if not self._lifecycle.allows(RequestState.IN_FLIGHT, outcome.state):
            outcome = dataclasses.replace(outcome, state=RequestState.FAILED, tx_hash=None)
        if outcome.state is RequestState.UNKNOWN:
            LOGGER.warning(
                "Execution outcome is ambiguous",
                extra={
                    "idempotency_key": key,
                    "error_code": outcome.error.code if outcome.error else None,
                    "tx_hash": outcome.tx_hash,
                },
            )
        try:
            request = self._lifecycle.update_state(
                key,
                outcome.state,
                tx_hash=outcome.tx_hash,
                ledger=outcome.ledger,
                error=outcome.error,
            )
        except (RequestNotFoundError, InvalidStateTransitionError):
            LOGGER.warning(
                "Request was cleared or replaced before execution settled",
                extra={"idempotency_key": key, "state": outcome.state.value},
            )
            request = None
        return Settlement(outcome=outcome, request=request)
