from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import PracticeAttempt, SectionPaper
from .evaluation_oracle import build_request, evaluate_section
from .exam_state import Section
from .grading import grade_objective
from .outcomes import NotFound, PersistenceFailure, ValidationFailure

logger = logging.getLogger(__name__)


def practice_papers(section: str | None = None) -> list[SectionPaper]:
    query = SectionPaper.query.filter(SectionPaper.mock_test_id.is_(None))
    if section:
        try:
            target = Section.parse(section)
        except ValueError as exc:
            raise ValidationFailure(str(exc)) from exc
        query = query.filter(SectionPaper.section == target.value)
    return query.order_by(SectionPaper.section.asc(), SectionPaper.id.asc()).all()


def get_practice_paper(paper_id: int) -> SectionPaper:
    paper = db.session.get(SectionPaper, paper_id)
    if paper is None or not paper.is_practice:
        raise NotFound("Practice paper not found.")
    return paper


def _normalise_answers(answers: Mapping[Any, Any]) -> dict[int, Any]:
    normalised: dict[int, Any] = {}
    for key, value in answers.items():
        try:
            normalised[int(key)] = value
        except (TypeError, ValueError) as exc:
            raise ValidationFailure(f"'{key}' is not a valid question number.") from exc
    return normalised


def _seconds(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure("timeSpentSeconds must be a whole number.") from exc


def submit_practice(
    candidate_id: str,
    paper: SectionPaper,
    answers: Mapping[Any, Any],
    *,
    time_spent_seconds: int = 0,
) -> PracticeAttempt:
    """Grade a standalone practice paper and keep the attempt in history.

    Practice has no section order, no countdown and no one-play audio; it
    only reuses the marking and grading rules of the full mock test.
    """

    section = Section.parse(paper.section)
    collected = _normalise_answers(answers)
    correct = total = None
    criteria: dict[str, Any] = {}

    if section.objective:
        grade = grade_objective(paper, section, collected)
        band = grade.band
        correct, total = grade.correct, grade.total
        feedback: dict[str, Any] = grade.feedback
    else:
        texts = {number: value for number, value in collected.items() if isinstance(value, str)}
        request = build_request(
            section,
            paper.tasks or [],
            texts,
            metadata={"paperId": paper.id, "paperTitle": paper.title, "practice": True},
        )
        if not request.responses:
            raise ValidationFailure("Write a response before submitting.")
        rubric = evaluate_section(request)
        band = rubric.band
        criteria = rubric.criteria
        feedback = rubric.feedback_payload()

    attempt = PracticeAttempt(
        candidate_id=candidate_id,
        paper_id=paper.id,
        section=section.value,
        band=band,
        raw_correct=correct,
        raw_total=total,
        criteria=criteria,
        feedback=feedback,
        answers={str(number): value for number, value in collected.items()},
        time_spent_seconds=_seconds(time_spent_seconds),
    )
    db.session.add(attempt)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to store practice attempt for paper %s", paper.id)
        raise PersistenceFailure("Your practice attempt could not be saved.") from exc

    logger.info(
        "Candidate %s practised %s paper %s (band %.1f)",
        candidate_id,
        section.value,
        paper.id,
        band,
    )
    return attempt


def practice_history(candidate_id: str, section: str | None = None) -> list[PracticeAttempt]:
    query = PracticeAttempt.query.filter_by(candidate_id=candidate_id)
    if section:
        query = query.filter_by(section=Section.parse(section).value)
    return query.order_by(PracticeAttempt.created_at.desc(), PracticeAttempt.id.desc()).all()


__all__ = ["get_practice_paper", "practice_history", "practice_papers", "submit_practice"]
