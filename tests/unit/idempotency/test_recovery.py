# SPDX-License-Identifier: MIT
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from txguard.idempotency import (
    LifecycleController,
    RecoveryCoordinator,
    RecoveryError,
    RequestNotFoundError,
    RequestState,
    TransactionStatus,
)


@dataclass
class FakeTime:
    """Monotonic clock whose sleep advances time instantly."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedSource:
    def __init__(self, *statuses) -> None:
        self._statuses = list(statuses)
        self.calls: list[str] = []

    async def __call__(self, tx_hash: str):
        self.calls.append(tx_hash)
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        if isinstance(status, BaseException):
            raise status
        return status


def _unknown(lifecycle: LifecycleController, key: str, tx_hash: str | None = "0xabc") -> None:
    lifecycle.register(key, "bet")
    lifecycle.update_state(key, RequestState.IN_FLIGHT)
    lifecycle.update_state(key, RequestState.UNKNOWN, tx_hash=tx_hash)


def _coordinator(lifecycle: LifecycleController, source, fake: FakeTime, **kwargs) -> RecoveryCoordinator:
    return RecoveryCoordinator(
        lifecycle,
        source,
        timeout_ms=kwargs.pop("timeout_ms", 10_000),
        poll_interval_ms=kwargs.pop("poll_interval_ms", 1_000),
        monotonic=fake.monotonic,
        sleep=fake.sleep,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_missing_request_raises(lifecycle: LifecycleController) -> None:
    coordinator = RecoveryCoordinator(lifecycle)
    with pytest.raises(RequestNotFoundError):
        await coordinator.recover("missing")


@pytest.mark.asyncio
async def test_non_unknown_request_is_left_alone(lifecycle: LifecycleController) -> None:
    lifecycle.register("k1", "bet")
    source = ScriptedSource({"status": "success"})
    result = await RecoveryCoordinator(lifecycle, source).recover("k1")
    assert result.recovered is False
    assert result.request.state is RequestState.PENDING
    assert source.calls == []


@pytest.mark.asyncio
async def test_unknown_without_hash_fails(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1", tx_hash=None)
    result = await RecoveryCoordinator(lifecycle).recover("k1")
    assert result.recovered is False
    assert result.request.state is RequestState.FAILED
    assert result.request.error is not None
    assert result.request.error.code == "RECOVERY_FAILED"
    assert "transaction hash" in result.request.error.message


@pytest.mark.asyncio
async def test_hashed_request_without_status_source_raises(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1")
    with pytest.raises(RecoveryError):
        await RecoveryCoordinator(lifecycle).recover("k1")
    assert lifecycle.get("k1").state is RequestState.UNKNOWN


@pytest.mark.asyncio
async def test_polls_until_success(lifecycle: LifecycleController, metrics, registry) -> None:
    _unknown(lifecycle, "k1")
    fake = FakeTime()
    source = ScriptedSource(
        {"status": "pending"},
        TransactionStatus(status="pending"),
        {"status": "success", "ledger": 1234},
    )
    result = await _coordinator(lifecycle, source, fake, metrics=metrics).recover("k1")

    assert result.recovered is True
    assert result.tx_hash == "0xabc"
    assert result.ledger == 1234
    assert result.request.state is RequestState.COMPLETED
    assert source.calls == ["0xabc"] * 3
    assert fake.sleeps == [1.0, 1.0]
    assert registry.get_sample_value("txguard_recoveries_total", {"outcome": "completed"}) == 1.0


@pytest.mark.asyncio
async def test_failure_status_marks_request_failed(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1")
    result = await _coordinator(lifecycle, ScriptedSource({"status": "failure"}), FakeTime()).recover("k1")
    assert result.recovered is False
    assert result.request.state is RequestState.FAILED
    assert result.request.error.code == "RPC_TX_REJECTED"


@pytest.mark.asyncio
async def test_timeout_leaves_request_unknown(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1")
    fake = FakeTime()
    source = ScriptedSource({"status": "pending"})
    result = await _coordinator(
        lifecycle, source, fake, timeout_ms=3_000, poll_interval_ms=1_000
    ).recover("k1")
    assert result.recovered is False
    assert result.request.state is RequestState.UNKNOWN
    assert fake.now == pytest.approx(3.0)
    assert len(source.calls) == 4


@pytest.mark.asyncio
async def test_status_source_errors_count_as_pending(lifecycle: LifecycleController, caplog) -> None:
    _unknown(lifecycle, "k1")
    source = ScriptedSource(ConnectionError("rpc down"), {"status": "bogus"}, {"status": "success"})
    with caplog.at_level("WARNING"):
        result = await _coordinator(lifecycle, source, FakeTime()).recover("k1")
    assert result.recovered is True
    assert "Transaction status poll failed" in caplog.text


@pytest.mark.asyncio
async def test_hanging_poll_times_out(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1")

    async def never(_: str):
        await asyncio.sleep(10)

    fake = FakeTime()
    result = await _coordinator(
        lifecycle, never, fake, timeout_ms=20, poll_interval_ms=10
    ).recover("k1")
    assert result.recovered is False
    assert result.request.state is RequestState.UNKNOWN


@pytest.mark.asyncio
async def test_per_call_overrides(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "k1")
    fake = FakeTime()
    coordinator = _coordinator(lifecycle, ScriptedSource({"status": "pending"}), fake)
    await coordinator.recover("k1", timeout_ms=500, poll_interval_ms=250)
    assert fake.now == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_recover_all_resolves_every_unknown_request(lifecycle: LifecycleController) -> None:
    _unknown(lifecycle, "a")
    _unknown(lifecycle, "b", tx_hash=None)
    lifecycle.register("c", "bet")

    results = await _coordinator(
        lifecycle, ScriptedSource({"status": "success", "ledger": 9}), FakeTime()
    ).recover_all()

    by_key = {result.request.key: result for result in results}
    assert set(by_key) == {"a", "b"}
    assert by_key["a"].recovered is True
    assert by_key["b"].request.state is RequestState.FAILED
    assert lifecycle.get("c").state is RequestState.PENDING


def test_coordinator_rejects_non_positive_windows(lifecycle: LifecycleController) -> None:
    with pytest.raises(ValueError):
        RecoveryCoordinator(lifecycle, timeout_ms=0)
