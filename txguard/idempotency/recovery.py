# SPDX-License-Identifier: MIT
"""Resolve requests whose execution outcome is UNKNOWN.

A request lands in UNKNOWN when its execute callable failed ambiguously,
typically after the transaction was broadcast but before confirmation. If the
record carries a transaction hash, the coordinator polls a status source until
the chain reports a terminal status or the recovery window closes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Union

from .errors import AppError, ErrorDomain, ErrorSeverity, RecoveryError, RequestNotFoundError
from .lifecycle import LifecycleController
from .models import RecoveryResult, RequestState, TransactionStatus

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from txguard.observability.metrics import IdempotencyMetrics

__all__ = [
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_RECOVERY_TIMEOUT_MS",
    "RecoveryCoordinator",
    "StatusSource",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_RECOVERY_TIMEOUT_MS = 60_000
DEFAULT_POLL_INTERVAL_MS = 3_000

StatusObservation = Union[TransactionStatus, Mapping[str, Any]]
StatusSource = Callable[[str], Union[Awaitable[StatusObservation], StatusObservation]]

_PENDING = TransactionStatus(status="pending")


class RecoveryCoordinator:
    def __init__(
        self,
        lifecycle: LifecycleController,
        status_source: StatusSource | None = None,
        *,
        timeout_ms: int = DEFAULT_RECOVERY_TIMEOUT_MS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        metrics: "IdempotencyMetrics | None" = None,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if timeout_ms <= 0 or poll_interval_ms <= 0:
            raise ValueError("timeout_ms and poll_interval_ms must be positive")
        self._lifecycle = lifecycle
        self._status_source = status_source
        self._timeout_ms = timeout_ms
        self._poll_interval_ms = poll_interval_ms
        self._metrics = metrics
        self._monotonic = monotonic
        self._sleep = sleep

    @property
    def status_source(self) -> StatusSource | None:
        return self._status_source

    async def recover(
        self,
        key: str,
        *,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> RecoveryResult:
        """Attempt to resolve the UNKNOWN request stored under *key*.

        Raises :class:`RequestNotFoundError` for unknown keys and
        :class:`RecoveryError` when a hashed record needs a status source but
        none is configured.
        """

        record = self._lifecycle.get(key)
        if record is None:
            raise RequestNotFoundError(key)
        if record.state is not RequestState.UNKNOWN:
            self._record("skipped")
            return RecoveryResult(
                recovered=False, request=record, tx_hash=record.tx_hash, ledger=record.ledger
            )

        if not record.tx_hash:
            failed = self._lifecycle.update_state(
                key,
                RequestState.FAILED,
                error=AppError(
                    code="RECOVERY_FAILED",
                    message=f"Request {key} could not be recovered without a transaction hash",
                    domain=ErrorDomain.API,
                    severity=ErrorSeverity.FATAL,
                ),
            )
            self._record("missing_hash")
            return RecoveryResult(recovered=False, request=failed)

        source = self._status_source
        if source is None:
            raise RecoveryError(
                f"No status source configured to recover request {key}",
                detail={"idempotency_key": key, "tx_hash": record.tx_hash},
            )

        timeout = (timeout_ms if timeout_ms is not None else self._timeout_ms) / 1000.0
        interval = (
            poll_interval_ms if poll_interval_ms is not None else self._poll_interval_ms
        ) / 1000.0
        if timeout <= 0 or interval <= 0:
            raise ValueError("timeout_ms and poll_interval_ms must be positive")

        tx_hash = record.tx_hash
        deadline = self._monotonic() + timeout
        while True:
            status = await self._poll(source, key, tx_hash, interval)

            current = self._lifecycle.get(key)
            if current is None:
                raise RequestNotFoundError(key)
            if current.state is not RequestState.UNKNOWN:
                # settled by a concurrent recovery
                return RecoveryResult(
                    recovered=current.state is RequestState.COMPLETED,
                    request=current,
                    tx_hash=current.tx_hash,
                    ledger=current.ledger,
                )

            if status.status == "success":
                completed = self._lifecycle.update_state(
                    key, RequestState.COMPLETED, tx_hash=tx_hash, ledger=status.ledger
                )
                self._record("completed")
                LOGGER.info(
                    "Recovered request from transaction status",
                    extra={"idempotency_key": key, "tx_hash": tx_hash, "ledger": status.ledger},
                )
                return RecoveryResult(
                    recovered=True, request=completed, tx_hash=tx_hash, ledger=completed.ledger
                )
            if status.status == "failure":
                failed = self._lifecycle.update_state(
                    key,
                    RequestState.FAILED,
                    ledger=status.ledger,
                    error=AppError(
                        code="RPC_TX_REJECTED",
                        message=f"Transaction {tx_hash} failed on chain",
                        domain=ErrorDomain.RPC,
                        severity=ErrorSeverity.FATAL,
                        context={"tx_hash": tx_hash},
                    ),
                )
                self._record("failed")
                return RecoveryResult(
                    recovered=False, request=failed, tx_hash=tx_hash, ledger=failed.ledger
                )

            remaining = deadline - self._monotonic()
            if remaining <= 0:
                LOGGER.warning(
                    "Recovery window elapsed with outcome still unknown",
                    extra={"idempotency_key": key, "tx_hash": tx_hash, "timeout_s": timeout},
                )
                self._record("timeout")
                return RecoveryResult(recovered=False, request=current, tx_hash=tx_hash)
            await self._sleep(min(interval, remaining))

    async def recover_all(
        self,
        *,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> list[RecoveryResult]:
        """Recover every live UNKNOWN request concurrently."""

        keys = [
            record.key
            for record in self._lifecycle.store.records()
            if record.state is RequestState.UNKNOWN
        ]
        if not keys:
            return []
        return list(
            await asyncio.gather(
                *(
                    self.recover(key, timeout_ms=timeout_ms, poll_interval_ms=poll_interval_ms)
                    for key in keys
                )
            )
        )

    async def _poll(
        self, source: StatusSource, key: str, tx_hash: str, timeout: float
    ) -> TransactionStatus:
        try:
            observation = source(tx_hash)
            if inspect.isawaitable(observation):
                observation = await asyncio.wait_for(observation, timeout=timeout)
            return TransactionStatus.coerce(observation)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Transaction status poll timed out",
                extra={"idempotency_key": key, "tx_hash": tx_hash, "timeout_s": timeout},
            )
        except Exception as exc:
            LOGGER.warning(
                "Transaction status poll failed",
                extra={"idempotency_key": key, "tx_hash": tx_hash, "error": str(exc)},
            )
        return _PENDING

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_recovery(outcome)
