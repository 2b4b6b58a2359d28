from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam.services.countdown import (
    CountdownPhase,
    CountdownTimer,
    ManualScheduler,
    PhasedCountdown,
)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


def test_timer_ticks_down_and_expires_once(scheduler):
    ticks: list[int] = []
    expired: list[bool] = []
    timer = CountdownTimer(scheduler, name="listening")

    timer.start(3, on_tick=ticks.append, on_expire=lambda: expired.append(True))
    scheduler.advance(2)
    assert timer.remaining == 1
    assert timer.running is True

    scheduler.advance(10)

    assert ticks == [2, 1, 0]
    assert expired == [True]
    assert timer.running is False
    assert scheduler.pending() == 0


def test_restart_replaces_previous_run(scheduler):
    expired: list[str] = []
    timer = CountdownTimer(scheduler)

    timer.start(5, on_expire=lambda: expired.append("first"))
    scheduler.advance(2)
    timer.start(3, on_expire=lambda: expired.append("second"))
    scheduler.advance(10)

    assert expired == ["second"]


def test_stop_suppresses_expiry_and_reports_remaining(scheduler):
    expired: list[bool] = []
    timer = CountdownTimer(scheduler)
    timer.start(10, on_expire=lambda: expired.append(True))
    scheduler.advance(4)

    assert timer.stop() == 6
    scheduler.advance(20)

    assert expired == []
    assert timer.running is False


def test_zero_duration_expires_immediately(scheduler):
    expired: list[bool] = []
    CountdownTimer(scheduler).start(0, on_expire=lambda: expired.append(True))
    assert expired == [True]


def test_negative_duration_is_rejected(scheduler):
    with pytest.raises(ValueError):
        CountdownTimer(scheduler).start(-1)


def test_phased_countdown_rolls_preparation_into_response(scheduler):
    phases: list[str] = []
    completed: list[bool] = []
    countdown = PhasedCountdown(
        [CountdownPhase("preparation", 60), CountdownPhase("response", 120)],
        CountdownTimer(scheduler),
        on_phase=lambda phase: phases.append(phase.name),
        on_complete=lambda: completed.append(True),
    )

    countdown.start()
    scheduler.advance(59)
    assert countdown.current.name == "preparation"
    assert countdown.remaining == 1

    scheduler.advance(1)
    assert countdown.current.name == "response"
    assert countdown.remaining == 120

    scheduler.advance(120)
    assert phases == ["preparation", "response"]
    assert completed == [True]
    assert countdown.current is None


def test_phased_countdown_skip_and_cancel(scheduler):
    countdown = PhasedCountdown(
        [CountdownPhase("preparation", 60), CountdownPhase("response", 120)],
        CountdownTimer(scheduler),
    )
    countdown.start()
    countdown.skip()
    assert countdown.current.name == "response"

    countdown.cancel()
    scheduler.advance(500)
    assert countdown.current is None
    assert countdown.completed is False
