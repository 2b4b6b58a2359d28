"""Live section timers owned by the running application.

Deadlines are persisted on the session row, so these timers are a
convenience: they auto-submit a section as soon as its time runs out while
the process is up. After a restart the deadline check performed on every
session access takes over.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Callable

from flask import Flask, current_app, has_app_context

from .services.countdown import (
    CountdownPhase,
    CountdownTimer,
    ManualScheduler,
    PhasedCountdown,
    Scheduler,
    ThreadingScheduler,
)

logger = logging.getLogger(__name__)

ExpiryHandler = Callable[[str, str], None]


class SectionTimerRegistry:
    def __init__(self, app: Flask | None = None) -> None:
        self.app: Flask | None = None
        self.scheduler: Scheduler = ThreadingScheduler()
        self._timers: dict[str, CountdownTimer] = {}
        self._cue_cards: dict[str, PhasedCountdown] = {}
        # A lock lives only while some caller holds it.
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        kind = (app.config.get("SECTION_TIMER_SCHEDULER") or "thread").lower()
        self.scheduler = ManualScheduler() if kind == "manual" else ThreadingScheduler()
        self.app = app
        self._timers.clear()
        self._cue_cards.clear()
        app.extensions["section_timers"] = self

    def lock_for(self, session_id: str) -> threading.RLock:
        """Return the lock that serialises state transitions for one session."""

        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.RLock()
            return lock

    def arm(self, session_id: str, section: str, seconds: int, on_expire: ExpiryHandler) -> None:
        """Count down ``seconds`` for the session's section, replacing any live timer."""

        app = self.app

        def expire() -> None:
            logger.info("Section %s timer expired for session %s", section, session_id)
            with self._guard:
                if self._timers.get(session_id) is timer:
                    del self._timers[session_id]
            if app is None or (has_app_context() and current_app._get_current_object() is app):
                on_expire(session_id, section)
                return
            with app.app_context():
                on_expire(session_id, section)

        with self._guard:
            previous = self._timers.pop(session_id, None)
            timer = CountdownTimer(self.scheduler, name=f"{session_id}:{section}")
            self._timers[session_id] = timer
        if previous is not None:
            previous.stop()
        timer.start(max(int(seconds), 0), on_expire=expire)

    def cancel(self, session_id: str) -> None:
        with self._guard:
            timer = self._timers.pop(session_id, None)
            cue_card = self._cue_cards.pop(session_id, None)
        if timer is not None:
            timer.stop()
        if cue_card is not None:
            cue_card.cancel()

    def remaining(self, session_id: str) -> int | None:
        with self._guard:
            timer = self._timers.get(session_id)
        return timer.remaining if timer is not None and timer.running else None

    def is_armed(self, session_id: str) -> bool:
        return self.remaining(session_id) is not None

    def start_cue_card(
        self, session_id: str, *, preparation_seconds: int, response_seconds: int
    ) -> PhasedCountdown:
        phases = [
            CountdownPhase("preparation", preparation_seconds),
            CountdownPhase("response", response_seconds),
        ]
        countdown = PhasedCountdown(
            phases, CountdownTimer(self.scheduler, name=f"{session_id}:cue-card")
        )
        with self._guard:
            previous = self._cue_cards.pop(session_id, None)
            self._cue_cards[session_id] = countdown
        if previous is not None:
            previous.cancel()
        countdown.start()
        return countdown

    def cue_card(self, session_id: str) -> PhasedCountdown | None:
        with self._guard:
            return self._cue_cards.get(session_id)


__all__ = ["SectionTimerRegistry"]
