# SPDX-License-Identifier: MIT
"""Single-flight wrapper tracking the idle/loading/success/error lifecycle of an action."""

from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from .engine import ExecutionEngine
from .envelope import classify_bare
from .lifecycle import SINGLE_FLIGHT_TRANSITIONS, LifecycleController
from .store import RequestStore

__all__ = ["AsyncActionState", "AsyncStatus", "SingleFlightGuard"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_OPERATION = "singleFlight"


class AsyncStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AsyncActionState(Generic[T]):
    status: AsyncStatus = AsyncStatus.IDLE
    data: T | None = None
    error: BaseException | None = None

    @property
    def is_idle(self) -> bool:
        return self.status is AsyncStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is AsyncStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is AsyncStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is AsyncStatus.ERROR


class SingleFlightGuard(Generic[T]):
    """Guard an action so that at most one invocation is outstanding.

    With ``prevent_concurrent`` disabled every call runs, and only the most
    recently started run updates :attr:`state` and fires the callbacks.
    """

    def __init__(
        self,
        action: Callable[..., Any],
        *,
        on_success: Optional[Callable[[T], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        prevent_concurrent: bool = True,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if not callable(action):
            raise TypeError("Async action must be a function")
        self._action = action
        self._on_success = on_success
        self._on_error = on_error
        self._prevent_concurrent = prevent_concurrent
        self._lifecycle = LifecycleController(
            RequestStore(clock=clock), transitions=SINGLE_FLIGHT_TRANSITIONS
        )
        self._engine = ExecutionEngine(self._lifecycle, classify=classify_bare)
        self._runs = itertools.count(1)
        self._generation = 0
        self._state: AsyncActionState[T] = AsyncActionState()

    @property
    def state(self) -> AsyncActionState[T]:
        return self._state

    @property
    def prevent_concurrent(self) -> bool:
        return self._prevent_concurrent

    @property
    def in_flight(self) -> int:
        return self._engine.pending

    def reset(self) -> None:
        """Return to idle; results of runs started earlier are ignored."""

        self._generation += 1
        self._state = AsyncActionState()

    async def run(self, *args: Any, **kwargs: Any) -> T | None:
        key = "run" if self._prevent_concurrent else f"run-{next(self._runs)}"
        admission = self._engine.admit(key, _OPERATION)
        if not admission.admitted:
            LOGGER.debug("Skipped run while another is in flight")
            return None

        self._generation += 1
        generation = self._generation
        self._state = AsyncActionState(status=AsyncStatus.LOADING)
        settlement = await self._engine.execute(
            key, lambda: self._action(*args, **kwargs), operation=_OPERATION
        )
        self._lifecycle.store.delete(key)

        outcome = settlement.outcome
        latest = generation == self._generation
        if outcome.success:
            if latest:
                self._state = AsyncActionState(status=AsyncStatus.SUCCESS, data=outcome.data)
                await _maybe_await(self._on_success, outcome.data)
            return outcome.data

        exc = outcome.exception
        if exc is None:  # pragma: no cover - bare classification only fails on exceptions
            exc = RuntimeError(outcome.error.message if outcome.error else "Action failed")
        if latest:
            self._state = AsyncActionState(status=AsyncStatus.ERROR, error=exc)
            await _maybe_await(self._on_error, exc)
        raise exc


async def _maybe_await(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result  # type: ignore[misc]
