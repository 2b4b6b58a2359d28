"""Per-skill performance statistics across mock tests and practice."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List

from sqlalchemy import func

from .. import db
from ..models import ExamSession, PracticeAttempt, SectionResult
from .exam_state import SECTION_ORDER, Section, SessionStatus
from .outcomes import ValidationFailure

RECENT_ACTIVITY_LIMIT = 10


@dataclass(frozen=True)
class SkillProgress:
    """Band statistics for one skill."""

    section: str
    attempts: int
    mock_attempts: int
    practice_attempts: int
    average_band: float | None
    best_band: float | None
    best_achieved_at: datetime | None


@dataclass(frozen=True)
class ActivityEntry:
    section: str
    source: str
    band: float
    completed_at: datetime


@dataclass(frozen=True)
class ProgressSummary:
    candidate_id: str
    completed_mock_tests: int
    average_overall_band: float | None
    best_overall_band: float | None
    skills: List[SkillProgress]
    recent: List[ActivityEntry]


def _section_totals(query, section_column, band_column) -> Dict[str, tuple[int, float, float]]:
    rows = (
        query.with_entities(
            section_column,
            func.count(band_column),
            func.coalesce(func.sum(band_column), 0.0),
            func.max(band_column),
        )
        .group_by(section_column)
        .all()
    )
    return {
        section: (int(count or 0), float(total or 0.0), best)
        for section, count, total, best in rows
    }


def _mock_results(candidate_id: str):
    return SectionResult.query.join(ExamSession).filter(ExamSession.candidate_id == candidate_id)


def _practice_attempts(candidate_id: str):
    return PracticeAttempt.query.filter(PracticeAttempt.candidate_id == candidate_id)


def _best_achieved_at(candidate_id: str, section: str, best: float) -> datetime | None:
    mock = (
        _mock_results(candidate_id)
        .filter(SectionResult.section == section, SectionResult.band == best)
        .order_by(SectionResult.completed_at.asc())
        .first()
    )
    practice = (
        _practice_attempts(candidate_id)
        .filter(PracticeAttempt.section == section, PracticeAttempt.band == best)
        .order_by(PracticeAttempt.created_at.asc())
        .first()
    )
    moments = [
        moment
        for moment in (
            mock.completed_at if mock else None,
            practice.created_at if practice else None,
        )
        if moment is not None
    ]
    return min(moments) if moments else None


def _recent_activity(candidate_id: str, section: str | None) -> List[ActivityEntry]:
    mock_query = _mock_results(candidate_id)
    practice_query = _practice_attempts(candidate_id)
    if section:
        mock_query = mock_query.filter(SectionResult.section == section)
        practice_query = practice_query.filter(PracticeAttempt.section == section)

    entries = [
        ActivityEntry(row.section, "mock-test", row.band, row.completed_at)
        for row in mock_query.order_by(SectionResult.completed_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    ]
    entries.extend(
        ActivityEntry(row.section, "practice", row.band, row.created_at)
        for row in practice_query.order_by(PracticeAttempt.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )
    entries.sort(key=lambda entry: entry.completed_at, reverse=True)
    return entries[:RECENT_ACTIVITY_LIMIT]


def get_progress_summary(candidate_id: str, *, section: str | None = None) -> ProgressSummary:
    """Aggregate the candidate's bands per skill.

    Mock test sections count once recorded, whether or not the mock test was
    finished; retaken sections only count their latest result. Averages are
    plain means, not rounded to a band.
    """

    sections = list(SECTION_ORDER)
    if section:
        try:
            sections = [Section.parse(section)]
        except ValueError as exc:
            raise ValidationFailure(str(exc)) from exc

    mock_totals = _section_totals(
        _mock_results(candidate_id), SectionResult.section, SectionResult.band
    )
    practice_totals = _section_totals(
        _practice_attempts(candidate_id), PracticeAttempt.section, PracticeAttempt.band
    )

    skills: List[SkillProgress] = []
    for target in sections:
        mock_count, mock_sum, mock_best = mock_totals.get(target.value, (0, 0.0, None))
        practice_count, practice_sum, practice_best = practice_totals.get(
            target.value, (0, 0.0, None)
        )
        attempts = mock_count + practice_count
        bests = [band for band in (mock_best, practice_best) if band is not None]
        best = max(bests) if bests else None
        skills.append(
            SkillProgress(
                section=target.value,
                attempts=attempts,
                mock_attempts=mock_count,
                practice_attempts=practice_count,
                average_band=round((mock_sum + practice_sum) / attempts, 2) if attempts else None,
                best_band=best,
                best_achieved_at=(
                    _best_achieved_at(candidate_id, target.value, best) if best is not None else None
                ),
            )
        )

    completed_count, overall_average, overall_best = (
        db.session.query(
            func.count(ExamSession.id),
            func.avg(ExamSession.overall_band),
            func.max(ExamSession.overall_band),
        )
        .filter(
            ExamSession.candidate_id == candidate_id,
            ExamSession.status == SessionStatus.COMPLETED.value,
            ExamSession.overall_band.isnot(None),
        )
        .one()
    )

    return ProgressSummary(
        candidate_id=candidate_id,
        completed_mock_tests=int(completed_count or 0),
        average_overall_band=round(float(overall_average), 2) if overall_average is not None else None,
        best_overall_band=overall_best,
        skills=skills,
        recent=_recent_activity(candidate_id, sections[0].value if section else None),
    )


__all__ = [
    "ActivityEntry",
    "ProgressSummary",
    "SkillProgress",
    "get_progress_summary",
]
