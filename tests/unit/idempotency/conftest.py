# SPDX-License-Identifier: MIT
from __future__ import annotations

from dataclasses import dataclass

import pytest
from prometheus_client import CollectorRegistry

from txguard.idempotency import LifecycleController, RequestStore
from txguard.observability.metrics import IdempotencyMetrics


@dataclass
class ManualClock:
    value: int = 1_708_531_200_000

    def __call__(self) -> int:
        return self.value

    def advance(self, delta: int) -> None:
        self.value += delta


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def store(clock: ManualClock) -> RequestStore:
    return RequestStore(clock=clock, ttl_ms=1_000)


@pytest.fixture()
def lifecycle(store: RequestStore) -> LifecycleController:
    return LifecycleController(store)


@pytest.fixture()
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture()
def metrics(registry: CollectorRegistry) -> IdempotencyMetrics:
    return IdempotencyMetrics(registry=registry)
