# SPDX-License-Identifier: MIT
"""Logging and metrics helpers for txguard."""

from .logging import (
    StructuredLogFormatter,
    configure_logging,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
)
from .metrics import IdempotencyMetrics, get_idempotency_metrics

__all__ = [
    "IdempotencyMetrics",
    "StructuredLogFormatter",
    "configure_logging",
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "get_idempotency_metrics",
]
