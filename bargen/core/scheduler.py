"""Cancellable delayed callbacks.

The poll loop never touches timers directly; it asks a ``Scheduler`` to run
a coroutine function after a delay and keeps the returned
``ScheduledCall`` so it can cancel it.  Two implementations:

- ``AsyncioScheduler`` — real time, on the running event loop.
- ``ManualScheduler``  — a virtual clock advanced explicitly, so polling can
  be driven step by step in tests.

Delays are in milliseconds.  Cancelling a call prevents it from starting; it
does not interrupt a callback that is already running.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledCall(Protocol):
    @property
    def cancelled(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, callback: AsyncCallback) -> ScheduledCall:
        ...


# ---------------------------------------------------------------------------
# asyncio
# ---------------------------------------------------------------------------


class _AsyncioCall:
    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class AsyncioScheduler:
    """Runs callbacks on the running loop via ``loop.call_later``.

    Spawned tasks are kept in ``_running`` until they finish so they are not
    garbage-collected mid-flight.
    """

    def __init__(self) -> None:
        self._running: set[asyncio.Task[None]] = set()

    def call_later(self, delay_ms: float, callback: AsyncCallback) -> _AsyncioCall:
        loop = asyncio.get_running_loop()
        call = _AsyncioCall()

        def _fire() -> None:
            if call.cancelled:
                return
            task = loop.create_task(self._run(callback))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        call._handle = loop.call_later(max(0.0, delay_ms) / 1000.0, _fire)
        return call

    @staticmethod
    async def _run(callback: AsyncCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled callback failed")

    async def drain(self) -> None:
        """Wait for callbacks that have already started."""
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)


# ---------------------------------------------------------------------------
# Manual clock
# ---------------------------------------------------------------------------


class _ManualCall:
    def __init__(self, due_ms: float, callback: AsyncCallback) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """Virtual-clock scheduler; nothing runs until ``advance`` or ``run_next``."""

    def __init__(self) -> None:
        self.now_ms: float = 0.0
        self._queue: list[tuple[float, int, _ManualCall]] = []
        self._seq = itertools.count()
        self.delays: list[float] = []

    def call_later(self, delay_ms: float, callback: AsyncCallback) -> _ManualCall:
        call = _ManualCall(self.now_ms + max(0.0, delay_ms), callback)
        heapq.heappush(self._queue, (call.due_ms, next(self._seq), call))
        self.delays.append(delay_ms)
        return call

    @property
    def pending(self) -> int:
        """Number of scheduled, not-yet-run, not-cancelled calls."""
        return sum(1 for _, _, c in self._queue if not c.cancelled)

    async def advance(self, ms: float) -> int:
        """Move the clock forward, running every call that falls due. Returns calls run."""
        target = self.now_ms + ms
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, call = heapq.heappop(self._queue)
            self.now_ms = max(self.now_ms, due)
            if call.cancelled:
                continue
            await call.callback()
            ran += 1
        self.now_ms = target
        return ran

    async def run_next(self) -> bool:
        """Jump to the next live call and run it. Returns False when none is left."""
        while self._queue:
            due, _, call = heapq.heappop(self._queue)
            if call.cancelled:
                continue
            self.now_ms = max(self.now_ms, due)
            await call.callback()
            return True
        return False
