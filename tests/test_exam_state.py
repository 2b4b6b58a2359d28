from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam.services.exam_state import (
    ExamSessionState,
    ExamSessionStateMachine,
    InvalidTransition,
    Section,
    SectionScore,
    SessionStatus,
)


def _score(section: Section, band: float) -> SectionScore:
    return SectionScore(section=section, band=band, completed_at=datetime(2024, 5, 1, 10, 0))


@pytest.fixture()
def machine():
    return ExamSessionStateMachine(ExamSessionState(session_id="s-1"))


def test_fresh_session_only_allows_listening(machine):
    assert machine.status is SessionStatus.NOT_STARTED
    assert machine.current_section is Section.LISTENING
    assert machine.can_enter("listening") is True
    assert machine.can_enter("reading") is False

    decision = machine.resolve_entry("writing")
    assert decision.allowed is False
    assert decision.redirect == "listening"


def test_sections_unlock_in_order(machine):
    machine.record_section(Section.LISTENING, _score(Section.LISTENING, 6.5))

    assert machine.status is SessionStatus.IN_PROGRESS
    assert machine.can_enter("listening") is False
    assert machine.can_enter("reading") is True
    assert machine.resolve_entry("listening").redirect == "reading"


def test_duplicate_record_is_rejected_and_keeps_first_result(machine):
    machine.record_section(Section.LISTENING, _score(Section.LISTENING, 6.5))

    with pytest.raises(InvalidTransition) as excinfo:
        machine.record_section(Section.LISTENING, _score(Section.LISTENING, 9.0))

    assert excinfo.value.redirect == "reading"
    assert machine.state.results[Section.LISTENING].band == 6.5


def test_recording_out_of_order_is_rejected(machine):
    with pytest.raises(InvalidTransition):
        machine.record_section(Section.READING, _score(Section.READING, 7.0))
    assert machine.state.results == {}


def test_finalize_computes_composite_and_locks_session(machine):
    for section, band in zip(
        (Section.LISTENING, Section.READING, Section.WRITING, Section.SPEAKING),
        (6.5, 7.0, 6.0, 7.5),
    ):
        machine.record_section(section, _score(section, band))

    assert machine.ready_to_finalize is True
    assert machine.finalize() == 7.0
    assert machine.status is SessionStatus.COMPLETED
    assert machine.current_section is None
    assert machine.resolve_entry("speaking").redirect == "results"

    with pytest.raises(InvalidTransition):
        machine.record_section(Section.SPEAKING, _score(Section.SPEAKING, 5.0))
    with pytest.raises(InvalidTransition):
        machine.finalize()


def test_finalize_requires_all_sections(machine):
    machine.record_section(Section.LISTENING, _score(Section.LISTENING, 6.5))
    with pytest.raises(InvalidTransition) as excinfo:
        machine.finalize()
    assert excinfo.value.redirect == "reading"


def test_retake_reopens_a_recorded_section(machine):
    machine.record_section(Section.LISTENING, _score(Section.LISTENING, 5.0))
    machine.record_section(Section.READING, _score(Section.READING, 6.0))

    previous = machine.retake_section("listening")

    assert previous.band == 5.0
    assert machine.current_section is Section.LISTENING
    assert machine.can_enter("reading") is False


def test_retake_needs_a_recorded_section_in_progress(machine):
    with pytest.raises(InvalidTransition):
        machine.retake_section("listening")

    machine.record_section(Section.LISTENING, _score(Section.LISTENING, 5.0))
    with pytest.raises(InvalidTransition):
        machine.retake_section("writing")


def test_unknown_section_name_is_rejected():
    with pytest.raises(ValueError):
        Section.parse("grammar")
