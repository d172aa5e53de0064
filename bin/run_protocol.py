"""
Gallery Downloader Session Protocol

Message vocabulary exchanged between the download orchestrator and whatever
front end drives it, plus the cooperative cancellation token shared by every
suspending call in a run.

Events (orchestrator -> UI):
    start, status, log, progress, done, error, cancelled

Requests (UI -> orchestrator):
    startRun, cancel

Exactly one `start` precedes any `progress`, and exactly one terminal event
(`done`, `error` or `cancelled`) ends a run.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Optional, TypeVar, Union

from download_errors import RunCancelledError, ValidationError

log = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# CANCELLATION
# =============================================================================

class CancelToken:
    """
    Cooperative cancellation signal for one run.

    Checked at the top of every loop iteration and around every suspension
    point. Delays and network calls wrapped with sleep()/guard() resolve early
    into RunCancelledError once the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Calling it again has no further effect."""
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def add_callback(self, cb: Callable[[], None]) -> None:
        """Run `cb` once on cancellation (immediately if already cancelled)."""
        if self._event.is_set():
            cb()
        else:
            self._callbacks.append(cb)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, aborting with RunCancelledError on cancel."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunCancelledError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        On cancellation the underlying task is cancelled and drained before
        RunCancelledError is raised, so in-flight HTTP requests are torn down.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise RunCancelledError()


# =============================================================================
# EVENTS (ORCHESTRATOR -> UI)
# =============================================================================

@dataclass(frozen=True)
class StartEvent:
    kind: ClassVar[str] = "start"
    total: int
    concurrency: int


@dataclass(frozen=True)
class StatusEvent:
    kind: ClassVar[str] = "status"
    message: str


@dataclass(frozen=True)
class LogEvent:
    kind: ClassVar[str] = "log"
    level: str  # "info" | "warn"
    message: str


@dataclass(frozen=True)
class ProgressEvent:
    kind: ClassVar[str] = "progress"
    completed: int
    total: int
    current_id: str
    succeeded: int
    failed: int


@dataclass(frozen=True)
class DoneEvent:
    kind: ClassVar[str] = "done"
    total: int
    succeeded: int
    failed: int
    processed: int
    sink_handle: Optional[str] = None


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"
    message: str


@dataclass(frozen=True)
class CancelledEvent:
    kind: ClassVar[str] = "cancelled"


Event = Union[StartEvent, StatusEvent, LogEvent, ProgressEvent, DoneEvent, ErrorEvent, CancelledEvent]

TERMINAL_EVENTS = (DoneEvent, ErrorEvent, CancelledEvent)


def is_terminal(event: Event) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def event_to_dict(event: Event) -> dict[str, Any]:
    """Flatten an event into a JSON-ready dict tagged with its kind."""
    return {"type": event.kind, **asdict(event)}


# =============================================================================
# REQUESTS (UI -> ORCHESTRATOR)
# =============================================================================

@dataclass(frozen=True)
class StartRun:
    kind: ClassVar[str] = "startRun"
    concurrency: Any = None
    sequential: bool = False
    throttle_ms: Any = None
    items: Optional[tuple] = None


@dataclass(frozen=True)
class CancelRun:
    kind: ClassVar[str] = "cancel"


Request = Union[StartRun, CancelRun]


def request_from_dict(message: Mapping[str, Any]) -> Request:
    """
    Parse a raw UI message.

    Accepts `startRun` (or the older `download` spelling) and `cancel`. Raw
    preference values are passed through untouched; RunConfig normalizes them.
    """
    kind = message.get("type")
    if kind in ("startRun", "download"):
        items = message.get("items")
        if items is None:
            items = message.get("screens")
        return StartRun(
            concurrency=message.get("concurrency"),
            sequential=bool(message.get("sequential", False)),
            throttle_ms=message.get("throttleMs", message.get("throttle_ms")),
            items=tuple(items) if items is not None else None,
        )
    if kind == "cancel":
        return CancelRun()
    raise ValidationError(f"Unknown request type: {kind!r}")


# =============================================================================
# EVENT CHANNEL
# =============================================================================

class EventChannel:
    """
    Ordered, single-run event stream.

    Events are queued for async consumers and optionally pushed to a
    synchronous listener. Once a terminal event has been sent the channel is
    closed and further sends are refused.
    """

    def __init__(self, listener: Optional[Callable[[Event], None]] = None):
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._listener = listener
        self._closed = False
        self.history: list[Event] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError(f"event channel closed; dropped {event.kind} event")
        if is_terminal(event):
            self._closed = True
        self.history.append(event)
        self._queue.put_nowait(event)
        if self._listener is not None:
            self._listener(event)

    async def receive(self) -> Event:
        return await self._queue.get()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            event = await self._queue.get()
            yield event
            if is_terminal(event):
                return
