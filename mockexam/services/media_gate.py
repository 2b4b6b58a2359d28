"""One-shot audio playback for listening sections."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from .countdown import CountdownTimer

logger = logging.getLogger(__name__)

DEFAULT_WARNING_SECONDS = 2


class MediaState(str, Enum):
    UNPLAYED = "unplayed"
    WARNING = "warning"
    PLAYING = "playing"
    FINISHED = "finished"


_ORDER = (MediaState.UNPLAYED, MediaState.WARNING, MediaState.PLAYING, MediaState.FINISHED)


class OnePlayMediaGate:
    """Allow a single uninterrupted play-through of a section recording.

    The gate only moves forward. A play request starts a warning interval,
    playback begins once the warning has elapsed, and the natural end of the
    stream finishes the gate for good. Pause, seek and replay requests are
    refused in every state.

    With a ``timer`` the warning is driven in-process. Without one, callers
    restore the gate from persisted state and call :meth:`sync` with the
    current time.
    """

    def __init__(
        self,
        *,
        warning_seconds: int = DEFAULT_WARNING_SECONDS,
        timer: CountdownTimer | None = None,
        state: MediaState | str = MediaState.UNPLAYED,
        warning_started_at: datetime | None = None,
        on_change: Callable[[MediaState], None] | None = None,
    ) -> None:
        if warning_seconds < 0:
            raise ValueError("warning_seconds must not be negative")
        self.warning_seconds = warning_seconds
        self.warning_started_at = warning_started_at
        self._state = MediaState(state)
        self._timer = timer
        self._on_change = on_change

    @classmethod
    def restore(
        cls,
        state: MediaState | str | None,
        *,
        warning_started_at: datetime | None,
        warning_seconds: int = DEFAULT_WARNING_SECONDS,
        now: datetime | None = None,
    ) -> "OnePlayMediaGate":
        gate = cls(
            warning_seconds=warning_seconds,
            state=state or MediaState.UNPLAYED,
            warning_started_at=warning_started_at,
        )
        gate.sync(now or datetime.utcnow())
        return gate

    @property
    def state(self) -> MediaState:
        return self._state

    @property
    def interactive(self) -> bool:
        """Question inputs unlock only after the recording has finished."""

        return self._state is MediaState.FINISHED

    def warning_remaining(self, now: datetime | None = None) -> int:
        if self._state is not MediaState.WARNING:
            return 0
        if self._timer is not None:
            return self._timer.remaining
        if self.warning_started_at is None:
            return self.warning_seconds
        elapsed = ((now or datetime.utcnow()) - self.warning_started_at).total_seconds()
        return max(int(self.warning_seconds - elapsed + 0.999), 0)

    def request_play(self, now: datetime | None = None) -> bool:
        if self._state is not MediaState.UNPLAYED:
            logger.info("Play request ignored; audio already %s", self._state.value)
            return False
        self.warning_started_at = now or datetime.utcnow()
        self._advance(MediaState.WARNING)
        if self._timer is not None:
            self._timer.start(self.warning_seconds, on_expire=self._begin_playback)
        elif self.warning_seconds == 0:
            self._begin_playback()
        return True

    def sync(self, now: datetime) -> MediaState:
        """Apply the warning-to-playing transition once the warning has elapsed."""

        if self._state is MediaState.WARNING and self._timer is None:
            started = self.warning_started_at or now
            if now >= started + timedelta(seconds=self.warning_seconds):
                self._begin_playback()
        return self._state

    def media_ended(self) -> bool:
        if self._state is not MediaState.PLAYING:
            logger.info("End-of-stream ignored while audio is %s", self._state.value)
            return False
        self._advance(MediaState.FINISHED)
        return True

    def request_pause(self) -> bool:
        return self._reject("pause")

    def request_seek(self, position_seconds: float | None = None) -> bool:
        return self._reject("seek")

    def request_replay(self) -> bool:
        return self._reject("replay")

    def _reject(self, action: str) -> bool:
        logger.info("Rejected %s request while audio is %s", action, self._state.value)
        return False

    def _begin_playback(self) -> None:
        if self._state is MediaState.WARNING:
            self._advance(MediaState.PLAYING)

    def _advance(self, target: MediaState) -> None:
        if _ORDER.index(target) != _ORDER.index(self._state) + 1:
            raise RuntimeError(f"Media cannot move from {self._state.value} to {target.value}.")
        self._state = target
        if self._on_change is not None:
            self._on_change(target)


__all__ = ["DEFAULT_WARNING_SECONDS", "MediaState", "OnePlayMediaGate"]
