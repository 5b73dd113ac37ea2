# SPDX-License-Identifier: MIT
"""Prometheus instrumentation for the request tracker."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from prometheus_client import Counter, Histogram

__all__ = ["IdempotencyMetrics", "get_idempotency_metrics"]


def _label(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class IdempotencyMetrics:
    """Counters and histograms describing guarded submissions.

    Pass a dedicated ``CollectorRegistry`` when more than one instance lives
    in a process, otherwise the collectors collide in the default registry.
    """

    def __init__(self, registry: Optional[Any] = None) -> None:
        kwargs = {"registry": registry} if registry is not None else {}
        self.registry = registry

        self.submissions_total = Counter(
            "txguard_submissions_total",
            "Guarded submissions by outcome",
            ["operation", "outcome"],
            **kwargs,
        )
        self.duplicate_submissions_total = Counter(
            "txguard_duplicate_submissions_total",
            "Submissions rejected because the key was already active",
            ["operation", "state"],
            **kwargs,
        )
        self.state_transitions_total = Counter(
            "txguard_state_transitions_total",
            "Accepted request state transitions",
            ["from_state", "to_state"],
            **kwargs,
        )
        self.recoveries_total = Counter(
            "txguard_recoveries_total",
            "Recovery attempts for UNKNOWN requests by outcome",
            ["outcome"],
            **kwargs,
        )
        self.execute_duration = Histogram(
            "txguard_execute_duration_seconds",
            "Wall time spent inside execute callables",
            ["operation"],
            **kwargs,
        )

    def record_submission(self, operation: str, outcome: str) -> None:
        self.submissions_total.labels(operation=operation, outcome=_label(outcome)).inc()

    def record_duplicate(self, operation: str, state: Any) -> None:
        self.duplicate_submissions_total.labels(operation=operation, state=_label(state)).inc()

    def record_transition(self, from_state: Any, to_state: Any) -> None:
        self.state_transitions_total.labels(
            from_state=_label(from_state), to_state=_label(to_state)
        ).inc()

    def record_recovery(self, outcome: str) -> None:
        self.recoveries_total.labels(outcome=outcome).inc()

    def observe_execute(self, operation: str, seconds: float) -> None:
        self.execute_duration.labels(operation=operation).observe(max(seconds, 0.0))


# Collectors registered in the process-wide default registry
_default_metrics: Optional[IdempotencyMetrics] = None


def get_idempotency_metrics() -> IdempotencyMetrics:
    """Return the shared collector set bound to the default registry."""

    global _default_metrics
    if _default_metrics is None:
        _default_metrics = IdempotencyMetrics()
    return _default_metrics
