"""Persistence contract for session aggregates and section results."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import ExamSession, SectionResult
from .exam_state import ExamSessionState, Section, SectionScore, SessionStatus
from .outcomes import PersistenceFailure

logger = logging.getLogger(__name__)


class ResultPersistenceGateway(Protocol):
    def create(self, session_id: str, *, candidate_id: str, mock_test_id: int, attempt_number: int = 1) -> ExamSessionState: ...

    def get(self, session_id: str) -> ExamSessionState | None: ...

    def record_section(self, session_id: str, section: Section, result: SectionScore) -> None: ...

    def finalize(self, session_id: str, composite_band: float) -> None: ...

    def clear_section(self, session_id: str, section: Section) -> None: ...


def score_from_row(row: SectionResult) -> SectionScore:
    return SectionScore(
        section=Section.parse(row.section),
        band=row.band,
        completed_at=row.completed_at,
        elapsed_seconds=row.elapsed_seconds or 0,
        correct=row.raw_correct,
        total=row.raw_total,
        criteria=dict(row.criteria or {}),
        feedback=dict(row.feedback or {}),
        answers=dict(row.answers or {}),
        auto_submitted=bool(row.auto_submitted),
    )


def state_from_row(row: ExamSession) -> ExamSessionState:
    return ExamSessionState(
        session_id=row.id,
        status=SessionStatus(row.status),
        results={Section.parse(result.section): score_from_row(result) for result in row.results},
        overall_band=row.overall_band,
    )


class SqlAlchemyResultGateway:
    """Gateway backed by the application's SQLAlchemy session.

    Each call commits on its own and writes whole section results, so a crash
    between calls never leaves a half-written result behind.
    """

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def _load(self, session_id: str) -> ExamSession:
        row = self.session.get(ExamSession, session_id, populate_existing=True)
        if row is None:
            raise PersistenceFailure(f"Exam session '{session_id}' does not exist.")
        return row

    def _commit(self, action: str, session_id: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to %s for session %s", action, session_id)
            raise PersistenceFailure("Results could not be saved. Please try again.") from exc

    def create(
        self,
        session_id: str,
        *,
        candidate_id: str,
        mock_test_id: int,
        attempt_number: int = 1,
    ) -> ExamSessionState:
        row = ExamSession(
            id=session_id,
            candidate_id=candidate_id,
            mock_test_id=mock_test_id,
            attempt_number=attempt_number,
            status=SessionStatus.NOT_STARTED.value,
        )
        self.session.add(row)
        self._commit("create session", session_id)
        return state_from_row(row)

    def get(self, session_id: str) -> ExamSessionState | None:
        try:
            row = self.session.get(ExamSession, session_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Results could not be loaded. Please try again.") from exc
        return state_from_row(row) if row is not None else None

    def record_section(self, session_id: str, section: Section, result: SectionScore) -> None:
        row = self._load(session_id)
        existing = (
            self.session.query(SectionResult)
            .filter_by(session_id=session_id, section=section.value)
            .first()
        )
        if existing is not None:
            # Same section written twice is idempotent at this layer: keep the first.
            logger.warning(
                "Ignoring duplicate %s result for session %s", section.value, session_id
            )
            return
        row.results.append(
            SectionResult(
                section=section.value,
                band=result.band,
                raw_correct=result.correct,
                raw_total=result.total,
                criteria=result.criteria,
                feedback=result.feedback,
                answers=result.answers,
                elapsed_seconds=result.elapsed_seconds,
                auto_submitted=result.auto_submitted,
                completed_at=result.completed_at,
            )
        )
        if row.status == SessionStatus.NOT_STARTED.value:
            row.status = SessionStatus.IN_PROGRESS.value
        if row.timed_section == section.value:
            row.timed_section = None
            row.section_started_at = None
            row.section_deadline = None
        self._commit(f"record {section.value}", session_id)

    def finalize(self, session_id: str, composite_band: float) -> None:
        row = self._load(session_id)
        if row.status == SessionStatus.COMPLETED.value:
            return
        row.status = SessionStatus.COMPLETED.value
        row.overall_band = composite_band
        row.completed_at = datetime.utcnow()
        row.timed_section = None
        row.section_started_at = None
        row.section_deadline = None
        self._commit("finalize", session_id)

    def clear_section(self, session_id: str, section: Section) -> None:
        row = self._load(session_id)
        existing = row.result_for(section.value)
        if existing is None:
            return
        row.results.remove(existing)
        for answer in [item for item in row.answers if item.section == section.value]:
            row.answers.remove(answer)
        self._commit(f"clear {section.value}", session_id)


__all__ = [
    "ResultPersistenceGateway",
    "SqlAlchemyResultGateway",
    "score_from_row",
    "state_from_row",
]
