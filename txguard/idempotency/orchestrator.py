# SPDX-License-Identifier: MIT
"""Idempotent submission of side-effecting operations.

:class:`SubmissionOrchestrator` is the entry point of the package. It wires a
:class:`RequestStore`, the lifecycle controller, duplicate detection, the
execution engine and the recovery coordinator together, and exposes the
guarded submission flow::

    orchestrator = SubmissionOrchestrator()
    result = await orchestrator.submit_with_idempotency("coinFlip", place_bet)
    if result.duplicate:
        ...

Execution failures are reported through :class:`SubmissionResult`; the
orchestrator never raises for them.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

from txguard.observability.metrics import IdempotencyMetrics, get_idempotency_metrics

from .duplicates import DuplicateDetector
from .engine import ExecutionEngine
from .errors import (
    DuplicateSubmissionError,
    IdempotencyValidationError,
)
from .keys import IdempotencyKeyFactory
from .lifecycle import LifecycleController
from .models import (
    DuplicateCheckResult,
    IdempotencyRequest,
    RecoveryResult,
    RequestState,
    SubmissionResult,
)
from .recovery import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_RECOVERY_TIMEOUT_MS,
    RecoveryCoordinator,
    StatusSource,
)
from .storage import create_backend
from .store import RequestStore

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from txguard.config import IdempotencyConfig

__all__ = ["SubmissionOrchestrator"]

LOGGER = logging.getLogger(__name__)

DuplicateCallback = Callable[[IdempotencyRequest], Optional[Awaitable[None]]]


class SubmissionOrchestrator:
    """Track and guard submissions keyed by idempotency keys."""

    def __init__(
        self,
        store: RequestStore | None = None,
        *,
        key_factory: IdempotencyKeyFactory | None = None,
        status_source: StatusSource | None = None,
        max_retries: int = 3,
        recovery_timeout_ms: int = DEFAULT_RECOVERY_TIMEOUT_MS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        metrics: IdempotencyMetrics | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store if store is not None else RequestStore(clock=clock)
        self._keys = key_factory or IdempotencyKeyFactory(clock=clock)
        self._metrics = metrics
        self._lifecycle = LifecycleController(self._store, max_retries=max_retries, metrics=metrics)
        self._detector = DuplicateDetector(self._store)
        self._engine = ExecutionEngine(self._lifecycle, self._detector, metrics=metrics)
        self._recovery = RecoveryCoordinator(
            self._lifecycle,
            status_source,
            timeout_ms=recovery_timeout_ms,
            poll_interval_ms=poll_interval_ms,
            metrics=metrics,
        )

    @classmethod
    def from_config(
        cls,
        config: "IdempotencyConfig",
        *,
        status_source: StatusSource | None = None,
        metrics: IdempotencyMetrics | None = None,
        registry: Any | None = None,
    ) -> "SubmissionOrchestrator":
        """Build an orchestrator from an :class:`~txguard.config.IdempotencyConfig`.

        When metrics are enabled and no collector set is supplied, one is
        registered in *registry*. Without a registry the process-wide collector
        set from :func:`get_idempotency_metrics` is shared.
        """

        storage = config.storage
        store = RequestStore(
            create_backend(storage),
            key_prefix=storage.key_prefix,
            ttl_ms=storage.ttl,
        )
        if config.metrics_enabled and metrics is None:
            if registry is None:
                metrics = get_idempotency_metrics()
            else:
                metrics = IdempotencyMetrics(registry=registry)
        return cls(
            store,
            status_source=status_source,
            max_retries=config.max_retries,
            recovery_timeout_ms=config.recovery.timeout_ms,
            poll_interval_ms=config.recovery.poll_interval_ms,
            metrics=metrics if config.metrics_enabled else None,
        )

    @property
    def store(self) -> RequestStore:
        return self._store

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def pending_executions(self) -> int:
        return self._engine.pending

    # ------------------------------------------------------------------
    # direct operations
    def generate_key(
        self,
        operation: str,
        *,
        user_context: str | None = None,
        timestamp: int | None = None,
    ) -> str:
        return self._keys.generate(operation, user_context=user_context, timestamp=timestamp)

    def check_duplicate(self, key: str) -> DuplicateCheckResult:
        return self._detector.check(key)

    def register_request(
        self,
        key: str,
        operation: str,
        context: Mapping[str, Any] | None = None,
    ) -> IdempotencyRequest:
        return self._lifecycle.register(key, operation, context)

    def update_state(
        self,
        key: str,
        new_state: RequestState,
        *,
        tx_hash: str | None = None,
        ledger: int | None = None,
        error: Any = None,
    ) -> IdempotencyRequest:
        return self._lifecycle.update_state(
            key, RequestState(new_state), tx_hash=tx_hash, ledger=ledger, error=error
        )

    def get_request(self, key: str) -> IdempotencyRequest | None:
        return self._store.get(key)

    def get_status(self, key: str) -> RequestState | None:
        record = self._store.get(key)
        return record.state if record is not None else None

    async def recover_request(
        self,
        key: str,
        *,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> RecoveryResult:
        return await self._recovery.recover(
            key, timeout_ms=timeout_ms, poll_interval_ms=poll_interval_ms
        )

    async def recover_all(
        self,
        *,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> list[RecoveryResult]:
        return await self._recovery.recover_all(
            timeout_ms=timeout_ms, poll_interval_ms=poll_interval_ms
        )

    def clear_expired(self) -> int:
        return self._store.clear_expired()

    def clear_all(self) -> int:
        return self._store.clear_all()

    def clear_request(self, key: str) -> bool:
        """Forget an abandoned request.

        PENDING and UNKNOWN records are removed. IN_FLIGHT records are refused
        while their execution is outstanding, and terminal records stay until
        the TTL sweep so replays keep working.
        """

        record = self._store.get(key)
        if record is None:
            return False
        if record.state is RequestState.IN_FLIGHT:
            LOGGER.warning(
                "Refusing to clear a request with an outstanding execution",
                extra={"idempotency_key": key},
            )
            return False
        if record.is_terminal:
            return False
        removed = self._store.delete(key)
        if removed:
            LOGGER.info(
                "Cleared idempotent request",
                extra={"idempotency_key": key, "state": record.state.value},
            )
        return removed

    def reset(self) -> None:
        """Drop every tracked record."""

        removed = self._store.clear_all()
        LOGGER.info("Reset idempotency tracker", extra={"removed": removed})

    async def drain(self) -> None:
        await self._engine.drain()

    async def dispose(self) -> None:
        """Wait for outstanding executions, then release the storage backend."""

        await self._engine.drain()
        self._store.close()

    # ------------------------------------------------------------------
    # guarded submission
    async def submit_with_idempotency(
        self,
        operation: str,
        execute: Callable[[], Any],
        *,
        idempotency_key: str | None = None,
        context: Mapping[str, Any] | None = None,
        on_duplicate: DuplicateCallback | None = None,
    ) -> SubmissionResult[Any]:
        """Run *execute* at most once per idempotency key.

        The duplicate check, registration and the IN_FLIGHT transition run
        before the first ``await``. A second submission racing on the same
        key therefore observes the first one as a duplicate.
        """

        try:
            key = self._resolve_key(operation, idempotency_key)
        except IdempotencyValidationError as exc:
            self._record(operation, "invalid")
            return SubmissionResult(
                success=False, idempotency_key=idempotency_key, error=exc.to_app_error()
            )

        cached = self._store.get(key)
        if cached is not None and cached.state is RequestState.COMPLETED:
            LOGGER.debug(
                "Replaying completed request",
                extra={"idempotency_key": key, "operation": operation},
            )
            self._record(operation, "replayed")
            return SubmissionResult(
                success=True,
                idempotency_key=key,
                request=cached,
                tx_hash=cached.tx_hash,
                ledger=cached.ledger,
                from_cache=True,
            )

        admission = self._engine.admit(key, operation, context)
        if not admission.admitted:
            existing = admission.request
            LOGGER.info(
                "Rejected duplicate submission",
                extra={
                    "idempotency_key": key,
                    "operation": operation,
                    "state": existing.state.value,
                },
            )
            if self._metrics is not None:
                self._metrics.record_duplicate(operation, existing.state)
            self._record(operation, "duplicate")
            if on_duplicate is not None:
                outcome = on_duplicate(existing)
                if inspect.isawaitable(outcome):
                    await outcome
            return SubmissionResult(
                success=False,
                idempotency_key=key,
                request=existing,
                error=DuplicateSubmissionError(key, existing.state).to_app_error(),
                tx_hash=existing.tx_hash,
                ledger=existing.ledger,
                duplicate=True,
            )

        settlement = await self._engine.execute(key, execute, operation=operation)
        outcome = settlement.outcome
        request = settlement.request
        self._record(operation, outcome.state.value.lower())
        return SubmissionResult(
            success=outcome.success,
            idempotency_key=key,
            request=request,
            data=outcome.data,
            error=outcome.error,
            tx_hash=request.tx_hash if request is not None else outcome.tx_hash,
            ledger=request.ledger if request is not None else outcome.ledger,
        )

    def _resolve_key(self, operation: str, idempotency_key: str | None) -> str:
        if idempotency_key is None:
            return self._keys.generate(operation)
        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            raise IdempotencyValidationError(
                "Idempotency key must be a non-empty string",
                detail={"operation": operation},
            )
        return idempotency_key

    def _record(self, operation: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_submission(operation, outcome)
