from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam.services.countdown import CountdownTimer, ManualScheduler
from mockexam.services.media_gate import MediaState, OnePlayMediaGate


@pytest.fixture()
def scheduler():
    return ManualScheduler()


def test_play_runs_warning_then_plays_once(scheduler):
    changes: list[MediaState] = []
    gate = OnePlayMediaGate(timer=CountdownTimer(scheduler), on_change=changes.append)

    assert gate.request_play() is True
    assert gate.state is MediaState.WARNING
    assert gate.warning_remaining() == 2

    scheduler.advance(2)
    assert gate.state is MediaState.PLAYING
    assert gate.interactive is False

    assert gate.media_ended() is True
    assert gate.state is MediaState.FINISHED
    assert gate.interactive is True
    assert changes == [MediaState.WARNING, MediaState.PLAYING, MediaState.FINISHED]


def test_second_play_is_a_no_op(scheduler):
    gate = OnePlayMediaGate(timer=CountdownTimer(scheduler))
    gate.request_play()
    scheduler.advance(2)

    assert gate.request_play() is False
    assert gate.state is MediaState.PLAYING

    gate.media_ended()
    assert gate.request_play() is False
    assert gate.state is MediaState.FINISHED


@pytest.mark.parametrize("action", ["request_pause", "request_seek", "request_replay"])
def test_playback_controls_are_always_rejected(scheduler, action):
    gate = OnePlayMediaGate(timer=CountdownTimer(scheduler))
    for step in (lambda: None, gate.request_play, lambda: scheduler.advance(2), gate.media_ended):
        step()
        before = gate.state
        assert getattr(gate, action)() is False
        assert gate.state is before


def test_end_of_stream_before_playback_is_ignored():
    gate = OnePlayMediaGate()
    assert gate.media_ended() is False
    assert gate.state is MediaState.UNPLAYED


def test_restore_promotes_elapsed_warning_by_wall_clock():
    started = datetime(2024, 1, 1, 9, 0, 0)

    waiting = OnePlayMediaGate.restore(
        "warning", warning_started_at=started, now=started + timedelta(seconds=1)
    )
    assert waiting.state is MediaState.WARNING
    assert waiting.warning_remaining(started + timedelta(seconds=1)) == 1

    playing = OnePlayMediaGate.restore(
        "warning", warning_started_at=started, now=started + timedelta(seconds=2)
    )
    assert playing.state is MediaState.PLAYING


def test_restored_finished_gate_never_regresses():
    gate = OnePlayMediaGate.restore("finished", warning_started_at=None)
    assert gate.request_play() is False
    assert gate.media_ended() is False
    assert gate.state is MediaState.FINISHED


def test_zero_warning_starts_playback_immediately():
    gate = OnePlayMediaGate(warning_seconds=0)
    gate.request_play()
    assert gate.state is MediaState.PLAYING
