# SPDX-License-Identifier: MIT
"""Keyed persistence of request records with TTL-based expiry."""

from __future__ import annotations

import logging
from typing import Callable

from .keys import epoch_millis
from .models import IdempotencyRequest
from .storage import MemoryBackend, StorageBackend, iter_prefixed

__all__ = ["DEFAULT_KEY_PREFIX", "DEFAULT_TTL_MS", "RequestStore"]

LOGGER = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "txguard_idempotency"
DEFAULT_TTL_MS = 3_600_000


class RequestStore:
    """Store request snapshots under ``{key_prefix}:{key}`` in a backend.

    Only terminal records expire. Expiry is lazy: :meth:`get` hides a record
    whose TTL elapsed, while :meth:`clear_expired` physically removes it.
    """

    def __init__(
        self,
        backend: StorageBackend | None = None,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")
        if not key_prefix:
            raise ValueError("key_prefix must be provided")
        self._backend = backend if backend is not None else MemoryBackend()
        self._prefix = key_prefix
        self._ttl = ttl_ms
        self._clock = clock or epoch_millis

    @property
    def ttl_ms(self) -> int:
        return self._ttl

    def now(self) -> int:
        return self._clock()

    def get(self, key: str) -> IdempotencyRequest | None:
        payload = self._backend.get(self._storage_key(key))
        if payload is None:
            return None
        record = IdempotencyRequest.from_dict(payload)
        if self._expired(record, self._clock()):
            return None
        return record

    def put(self, record: IdempotencyRequest) -> IdempotencyRequest:
        self._backend.set(self._storage_key(record.key), record.to_dict())
        return record

    def delete(self, key: str) -> bool:
        return self._backend.delete(self._storage_key(key))

    def records(self) -> list[IdempotencyRequest]:
        """Return every live (not lazily expired) record under the prefix."""

        now = self._clock()
        live = []
        for _, payload in iter_prefixed(self._backend, self._prefix):
            record = IdempotencyRequest.from_dict(payload)
            if not self._expired(record, now):
                live.append(record)
        return live

    def clear_expired(self) -> int:
        now = self._clock()
        removed = 0
        for key, payload in iter_prefixed(self._backend, self._prefix):
            if self._expired(IdempotencyRequest.from_dict(payload), now):
                removed += int(self.delete(key))
        if removed:
            LOGGER.info("Swept expired idempotency records", extra={"removed": removed})
        return removed

    def clear_all(self) -> int:
        removed = 0
        for key, _ in iter_prefixed(self._backend, self._prefix):
            removed += int(self.delete(key))
        return removed

    def close(self) -> None:
        self._backend.close()

    def _storage_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _expired(self, record: IdempotencyRequest, now: int) -> bool:
        return record.is_terminal and now - record.updated_at > self._ttl
