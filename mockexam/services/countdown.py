"""Countdown timers shared by every timed section and sub-phase.

A :class:`CountdownTimer` ticks once per second through a scheduler. The
production scheduler uses daemon ``threading.Timer`` objects; the manual
scheduler is advanced explicitly, which keeps tests deterministic.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

logger = logging.getLogger(__name__)

TICK_SECONDS = 1

TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], None]


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class ThreadingScheduler:
    """Run callbacks on daemon timer threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class _ManualCall:
    __slots__ = ("due", "callback", "cancelled")

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by :meth:`advance` instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, _ManualCall]] = []
        self._sequence = itertools.count()
        self._lock = threading.RLock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        with self._lock:
            call = _ManualCall(self.now + max(delay, 0.0), callback)
            heapq.heappush(self._queue, (call.due, next(self._sequence), call))
            return call

    def advance(self, seconds: float) -> None:
        with self._lock:
            target = self.now + seconds
            while self._queue and self._queue[0][0] <= target:
                due, _, call = heapq.heappop(self._queue)
                self.now = due
                if not call.cancelled:
                    call.callback()
            self.now = target

    def pending(self) -> int:
        with self._lock:
            return sum(1 for _, _, call in self._queue if not call.cancelled)


@dataclass(frozen=True)
class CountdownState:
    duration: int
    remaining: int
    running: bool


class CountdownTimer:
    """Second-resolution countdown with an exactly-once expiry callback."""

    def __init__(self, scheduler: Scheduler | None = None, *, name: str = "countdown") -> None:
        self.name = name
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.RLock()
        self._duration = 0
        self._remaining = 0
        self._running = False
        self._generation = 0
        self._pending: ScheduledCall | None = None
        self._on_tick: TickCallback | None = None
        self._on_expire: ExpireCallback | None = None

    @property
    def state(self) -> CountdownState:
        with self._lock:
            return CountdownState(self._duration, self._remaining, self._running)

    @property
    def remaining(self) -> int:
        return self.state.remaining

    @property
    def running(self) -> bool:
        return self.state.running

    def start(
        self,
        duration_seconds: int,
        on_tick: TickCallback | None = None,
        on_expire: ExpireCallback | None = None,
    ) -> None:
        """Start counting down, replacing any run already in progress."""

        duration = int(duration_seconds)
        if duration < 0:
            raise ValueError("duration_seconds must not be negative")
        with self._lock:
            self._cancel_pending()
            self._generation += 1
            self._duration = duration
            self._remaining = duration
            self._running = True
            self._on_tick = on_tick
            self._on_expire = on_expire
            generation = self._generation
            if duration == 0:
                self._expire(generation)
            else:
                self._schedule(generation)

    def rearm(
        self,
        duration_seconds: int,
        on_tick: TickCallback | None = None,
        on_expire: ExpireCallback | None = None,
    ) -> None:
        """Restart with a new duration, keeping callbacks that are not replaced."""

        with self._lock:
            tick = on_tick if on_tick is not None else self._on_tick
            expire = on_expire if on_expire is not None else self._on_expire
            self.start(duration_seconds, tick, expire)

    def stop(self) -> int:
        """Stop without firing the expiry callback; return the remaining seconds."""

        with self._lock:
            self._cancel_pending()
            self._generation += 1
            self._running = False
            return self._remaining

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _schedule(self, generation: int) -> None:
        self._pending = self._scheduler.call_later(
            TICK_SECONDS, lambda: self._tick(generation)
        )

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._running:
                return
            self._pending = None
            self._remaining = max(self._remaining - TICK_SECONDS, 0)
            if self._on_tick is not None:
                self._on_tick(self._remaining)
            if generation != self._generation:
                # The tick callback re-armed or stopped the timer.
                return
            if self._remaining == 0:
                self._expire(generation)
            else:
                self._schedule(generation)

    def _expire(self, generation: int) -> None:
        self._running = False
        callback = self._on_expire
        logger.debug("Timer %s expired after %ss", self.name, self._duration)
        if callback is not None and generation == self._generation:
            callback()


@dataclass(frozen=True)
class CountdownPhase:
    name: str
    seconds: int


class PhasedCountdown:
    """Run named phases back to back by re-arming a single timer.

    Used for speaking cue cards, where preparation time rolls straight into
    response time.
    """

    def __init__(
        self,
        phases: Sequence[CountdownPhase],
        timer: CountdownTimer,
        *,
        on_phase: Callable[[CountdownPhase], None] | None = None,
        on_tick: Callable[[CountdownPhase, int], None] | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> None:
        if not phases:
            raise ValueError("At least one phase is required.")
        self.phases = tuple(phases)
        self._timer = timer
        self._on_phase = on_phase
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._index = -1
        self.completed = False

    @property
    def current(self) -> CountdownPhase | None:
        if 0 <= self._index < len(self.phases) and not self.completed:
            return self.phases[self._index]
        return None

    @property
    def remaining(self) -> int:
        return self._timer.remaining if self.current else 0

    def start(self) -> None:
        self._index = -1
        self.completed = False
        self._next_phase()

    def skip(self) -> None:
        """End the current phase early and move to the next one."""

        if self.current is None:
            return
        self._timer.stop()
        self._next_phase()

    def cancel(self) -> None:
        self._timer.stop()
        self._index = len(self.phases)

    def _next_phase(self) -> None:
        self._index += 1
        if self._index >= len(self.phases):
            self.completed = True
            if self._on_complete is not None:
                self._on_complete()
            return
        phase = self.phases[self._index]
        if self._on_phase is not None:
            self._on_phase(phase)
        self._timer.rearm(phase.seconds, on_tick=self._tick, on_expire=self._next_phase)

    def _tick(self, remaining: int) -> None:
        phase = self.current
        if phase is not None and self._on_tick is not None:
            self._on_tick(phase, remaining)


__all__ = [
    "CountdownPhase",
    "CountdownState",
    "CountdownTimer",
    "ManualScheduler",
    "PhasedCountdown",
    "Scheduler",
    "ThreadingScheduler",
]
