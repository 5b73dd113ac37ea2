# SPDX-License-Identifier: MIT
from __future__ import annotations

import pytest

from txguard.idempotency import (
    IdempotencyRequest,
    LifecycleController,
    MemoryBackend,
    RequestState,
    RequestStore,
)


def _record(key: str, state: RequestState, at: int) -> IdempotencyRequest:
    return IdempotencyRequest(key=key, state=state, operation="coinFlip", created_at=at, updated_at=at)


def test_store_rejects_invalid_configuration() -> None:
    with pytest.raises(ValueError):
        RequestStore(ttl_ms=0)
    with pytest.raises(ValueError):
        RequestStore(key_prefix="")


def test_records_are_stored_under_prefix() -> None:
    backend = MemoryBackend()
    store = RequestStore(backend, key_prefix="app")
    store.put(_record("k1", RequestState.PENDING, 1))
    assert [key for key, _ in backend.list()] == ["app:k1"]
    assert store.get("k1") == _record("k1", RequestState.PENDING, 1)


def test_store_returns_independent_copies(store: RequestStore) -> None:
    record = IdempotencyRequest(
        key="k1",
        state=RequestState.PENDING,
        operation="bet",
        created_at=1,
        updated_at=1,
        context={"amount": [1, 2]},
    )
    store.put(record)
    fetched = store.get("k1")
    assert fetched is not None
    fetched.context["amount"].append(3)  # type: ignore[index]
    again = store.get("k1")
    assert again is not None
    assert again.context == {"amount": [1, 2]}


def test_terminal_records_expire_lazily(store: RequestStore, clock) -> None:
    store.put(_record("done", RequestState.COMPLETED, clock()))
    clock.advance(1_000)
    assert store.get("done") is not None
    clock.advance(1)
    assert store.get("done") is None


def test_active_records_never_expire(store: RequestStore, clock) -> None:
    store.put(_record("pending", RequestState.PENDING, clock()))
    store.put(_record("unknown", RequestState.UNKNOWN, clock()))
    clock.advance(10_000_000)
    assert store.get("pending") is not None
    assert store.get("unknown") is not None


def test_clear_expired_removes_only_expired_terminal_records(store: RequestStore, clock) -> None:
    now = clock()
    store.put(_record("completed", RequestState.COMPLETED, now))
    store.put(_record("failed", RequestState.FAILED, now))
    store.put(_record("pending", RequestState.PENDING, now))
    clock.advance(5_000)
    store.put(_record("fresh", RequestState.COMPLETED, clock()))

    assert store.clear_expired() == 2
    assert {record.key for record in store.records()} == {"pending", "fresh"}
    assert store.clear_expired() == 0


def test_clear_all_only_touches_own_prefix() -> None:
    backend = MemoryBackend()
    ours = RequestStore(backend, key_prefix="ours")
    theirs = RequestStore(backend, key_prefix="theirs")
    ours.put(_record("a", RequestState.PENDING, 1))
    ours.put(_record("b", RequestState.PENDING, 1))
    theirs.put(_record("c", RequestState.PENDING, 1))

    assert ours.clear_all() == 2
    assert ours.records() == []
    assert theirs.get("c") is not None


def test_expiry_measures_from_last_update(lifecycle: LifecycleController, clock) -> None:
    lifecycle.register("k", "bet")
    lifecycle.update_state("k", RequestState.IN_FLIGHT)
    clock.advance(5_000)
    lifecycle.update_state("k", RequestState.COMPLETED)
    clock.advance(999)
    assert lifecycle.store.clear_expired() == 0
    assert lifecycle.get("k") is not None
