# SPDX-License-Identifier: MIT
"""Deterministic request lifecycle on top of :class:`RequestStore`.

The lifecycle only allows transitions declared in a transition table. The
full tracker uses :data:`TRANSITIONS`; the single-flight guard uses the
restricted :data:`SINGLE_FLIGHT_TRANSITIONS`, which drops the UNKNOWN branch.
Every accepted transition stores a fresh immutable snapshot, so a terminal
record is never mutated back into an active one.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Mapping

from .errors import AppError, InvalidStateTransitionError, RequestNotFoundError
from .models import IdempotencyRequest, RequestState
from .store import RequestStore

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from txguard.observability.metrics import IdempotencyMetrics

__all__ = [
    "SINGLE_FLIGHT_TRANSITIONS",
    "TRANSITIONS",
    "LifecycleController",
    "TransitionTable",
]

LOGGER = logging.getLogger(__name__)

TransitionTable = Mapping[RequestState, frozenset[RequestState]]

TRANSITIONS: TransitionTable = {
    RequestState.PENDING: frozenset({RequestState.IN_FLIGHT}),
    RequestState.IN_FLIGHT: frozenset(
        {RequestState.COMPLETED, RequestState.FAILED, RequestState.UNKNOWN}
    ),
    RequestState.UNKNOWN: frozenset({RequestState.COMPLETED, RequestState.FAILED}),
    RequestState.COMPLETED: frozenset(),
    RequestState.FAILED: frozenset(),
}

SINGLE_FLIGHT_TRANSITIONS: TransitionTable = {
    RequestState.PENDING: frozenset({RequestState.IN_FLIGHT}),
    RequestState.IN_FLIGHT: frozenset({RequestState.COMPLETED, RequestState.FAILED}),
    RequestState.COMPLETED: frozenset(),
    RequestState.FAILED: frozenset(),
}


class LifecycleController:
    """Register requests and move them along the transition table."""

    def __init__(
        self,
        store: RequestStore,
        *,
        transitions: TransitionTable = TRANSITIONS,
        max_retries: int = 3,
        metrics: "IdempotencyMetrics | None" = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self._store = store
        self._transitions = transitions
        self._max_retries = max_retries
        self._metrics = metrics

    @property
    def store(self) -> RequestStore:
        return self._store

    def allows(self, from_state: RequestState, to_state: RequestState) -> bool:
        return to_state in self._transitions.get(from_state, frozenset())

    def get(self, key: str) -> IdempotencyRequest | None:
        return self._store.get(key)

    def register(
        self,
        key: str,
        operation: str,
        context: Mapping[str, Any] | None = None,
    ) -> IdempotencyRequest:
        """Create a PENDING request, or return the active one for *key*.

        A terminal record for the same key is replaced by a fresh request.
        """

        existing = self._store.get(key)
        if existing is not None and not existing.is_terminal:
            return existing

        retry_count = 0
        if existing is not None and existing.state is RequestState.FAILED:
            retry_count = existing.retry_count + 1
        now = self._store.now()
        record = IdempotencyRequest(
            key=key,
            state=RequestState.PENDING,
            operation=operation,
            created_at=now,
            updated_at=now,
            retry_count=retry_count,
            max_retries=self._max_retries,
            context=dict(context) if context is not None else None,
        )
        self._store.put(record)
        LOGGER.debug(
            "Registered idempotent request",
            extra={"idempotency_key": key, "operation": operation, "retry_count": retry_count},
        )
        return record

    def update_state(
        self,
        key: str,
        new_state: RequestState,
        *,
        tx_hash: str | None = None,
        ledger: int | None = None,
        error: AppError | None = None,
    ) -> IdempotencyRequest:
        current = self._store.get(key)
        if current is None:
            raise RequestNotFoundError(key)
        if not self.allows(current.state, new_state):
            raise InvalidStateTransitionError(key, current.state, new_state)

        updated = dataclasses.replace(
            current,
            state=new_state,
            updated_at=max(self._store.now(), current.updated_at),
            tx_hash=current.tx_hash or tx_hash,
            ledger=ledger if ledger is not None else current.ledger,
            # error is only meaningful on FAILED records
            error=error if new_state is RequestState.FAILED else None,
        )
        self._store.put(updated)
        if self._metrics is not None:
            self._metrics.record_transition(current.state, new_state)
        LOGGER.debug(
            "Request state transition",
            extra={
                "idempotency_key": key,
                "from_state": current.state.value,
                "to_state": new_state.value,
            },
        )
        return updated
