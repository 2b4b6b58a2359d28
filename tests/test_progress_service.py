from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam import create_app, db
from mockexam.config import TestConfig
from mockexam.models import ExamSession, MockTest, PracticeAttempt, SectionPaper, SectionResult
from mockexam.services.outcomes import ValidationFailure
from mockexam.services.progress import get_progress_summary

CANDIDATE = "cand-1"


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _session(session_id: str, bands: dict[str, float], *, candidate: str = CANDIDATE, overall=None, day: int = 1):
    mock_test = MockTest.query.filter_by(slug="m").first() or MockTest(slug="m", title="Mock")
    session = ExamSession(
        id=session_id,
        candidate_id=candidate,
        mock_test=mock_test,
        status="completed" if overall is not None else "in_progress",
        overall_band=overall,
    )
    for section, band in bands.items():
        session.results.append(
            SectionResult(section=section, band=band, completed_at=datetime(2024, 1, day))
        )
    db.session.add(session)
    db.session.commit()
    return session


def _practice(section: str, band: float, *, day: int, candidate: str = CANDIDATE) -> PracticeAttempt:
    paper = SectionPaper(section=section, title=f"{section} practice", duration_minutes=20, tasks=[])
    attempt = PracticeAttempt(
        candidate_id=candidate,
        paper=paper,
        section=section,
        band=band,
        created_at=datetime(2024, 2, day),
    )
    db.session.add(attempt)
    db.session.commit()
    return attempt


def test_empty_history_has_no_bands(app):
    summary = get_progress_summary(CANDIDATE)

    assert summary.completed_mock_tests == 0
    assert summary.average_overall_band is None
    assert [skill.section for skill in summary.skills] == ["listening", "reading", "writing", "speaking"]
    assert all(skill.attempts == 0 and skill.best_band is None for skill in summary.skills)
    assert summary.recent == []


def test_skills_combine_mock_sections_and_practice(app):
    _session(
        "a",
        {"listening": 6.0, "reading": 7.0, "writing": 6.0, "speaking": 6.5},
        overall=6.5,
        day=1,
    )
    _session("b", {"listening": 7.5}, day=3)
    _practice("listening", 5.5, day=1)
    _practice("writing", 7.0, day=2)
    _session("other", {"listening": 9.0}, candidate="cand-2")

    summary = get_progress_summary(CANDIDATE)
    listening = summary.skills[0]
    writing = summary.skills[2]

    assert listening.attempts == 3
    assert listening.mock_attempts == 2
    assert listening.practice_attempts == 1
    assert listening.average_band == round((6.0 + 7.5 + 5.5) / 3, 2)
    assert listening.best_band == 7.5
    assert listening.best_achieved_at == datetime(2024, 1, 3)
    assert writing.best_band == 7.0
    assert writing.best_achieved_at == datetime(2024, 2, 2)
    assert summary.completed_mock_tests == 1
    assert summary.average_overall_band == 6.5
    assert summary.best_overall_band == 6.5
    assert summary.recent[0].source == "practice"
    assert summary.recent[0].completed_at == datetime(2024, 2, 2)
    assert len(summary.recent) == 7


def test_section_filter(app):
    _session("a", {"listening": 6.0, "reading": 7.0})
    _practice("reading", 8.0, day=1)

    summary = get_progress_summary(CANDIDATE, section="Reading")

    assert [skill.section for skill in summary.skills] == ["reading"]
    assert summary.skills[0].best_band == 8.0
    assert {entry.section for entry in summary.recent} == {"reading"}
    with pytest.raises(ValidationFailure):
        get_progress_summary(CANDIDATE, section="grammar")
