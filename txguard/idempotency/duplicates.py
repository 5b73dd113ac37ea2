# SPDX-License-Identifier: MIT
"""Classify keys that already have an active request."""

from __future__ import annotations

from .models import ACTIVE_STATES, DuplicateCheckResult
from .store import RequestStore

__all__ = ["DuplicateDetector"]


class DuplicateDetector:
    def __init__(self, store: RequestStore) -> None:
        self._store = store

    def check(self, key: str) -> DuplicateCheckResult:
        """A key is a duplicate while its request is PENDING, IN_FLIGHT or UNKNOWN."""

        existing = self._store.get(key)
        if existing is None:
            return DuplicateCheckResult(is_duplicate=False)
        if existing.state in ACTIVE_STATES:
            return DuplicateCheckResult(
                is_duplicate=True,
                existing_request=existing,
                reason=f"request is {existing.state.value}",
            )
        return DuplicateCheckResult(is_duplicate=False, existing_request=existing)
