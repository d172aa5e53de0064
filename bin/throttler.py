"""
Concurrency Limiter

Bounds the number of simultaneously running units of work. Units that cannot
start yet wait in a FIFO queue and are admitted strictly in submission order
as slots free up. A slot is released only after its unit has fully settled.

This is a scheduling primitive only; it knows nothing about downloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from download_errors import RunCancelledError, ValidationError
from run_protocol import CancelToken

log = logging.getLogger(__name__)

Unit = Callable[[], Awaitable[Any]]


class ConcurrencyLimiter:
    """
    FIFO limiter with a fixed capacity.

    submit() returns an asyncio.Future resolving to the unit's result (or
    raising its exception). One unit's failure never affects its siblings.
    When the optional cancel token fires, queued units are dropped with
    RunCancelledError and no new unit is started.
    """

    def __init__(self, capacity: int, cancel_token: Optional[CancelToken] = None):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ValidationError(f"capacity must be a positive integer, got {capacity!r}")
        self._capacity = capacity
        self._inflight = 0
        self._queue: deque[tuple[Unit, asyncio.Future]] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._aborted = False
        if cancel_token is not None:
            cancel_token.add_callback(self.abort)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def inflight(self) -> int:
        """Units currently executing."""
        return self._inflight

    @property
    def queued(self) -> int:
        """Units waiting for a slot."""
        return len(self._queue)

    @property
    def aborted(self) -> bool:
        return self._aborted

    def submit(self, unit: Unit) -> asyncio.Future:
        """Queue `unit` and return a handle for its outcome."""
        fut = asyncio.get_running_loop().create_future()
        if self._aborted:
            fut.set_exception(RunCancelledError("limiter aborted"))
            return fut
        self._queue.append((unit, fut))
        self._pump()
        return fut

    def abort(self) -> None:
        """Refuse new work and fail every queued handle. Idempotent."""
        if self._aborted:
            return
        self._aborted = True
        dropped = 0
        while self._queue:
            _, fut = self._queue.popleft()
            if not fut.done():
                fut.set_exception(RunCancelledError("unit never started"))
            dropped += 1
        if dropped:
            log.debug(f"limiter aborted; dropped {dropped} queued unit(s), {self._inflight} in flight")

    def _pump(self) -> None:
        while not self._aborted and self._inflight < self._capacity and self._queue:
            unit, fut = self._queue.popleft()
            if fut.done():
                # Caller gave up on this handle before it started.
                continue
            self._inflight += 1
            task = asyncio.ensure_future(self._run(unit, fut))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, unit: Unit, fut: asyncio.Future) -> None:
        try:
            result = await unit()
        except asyncio.CancelledError:
            if not fut.done():
                fut.cancel()
            raise
        except Exception as e:
            if not fut.done():
                fut.set_exception(e)
        else:
            if not fut.done():
                fut.set_result(result)
        finally:
            self._inflight -= 1
            self._pump()
