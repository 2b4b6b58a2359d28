"""Objective section grading shared by mock tests and practice papers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flask import current_app

from ..models import SectionPaper
from .answer_matching import score_answers
from .band_scores import raw_to_band
from .exam_state import Section
from .outcomes import ValidationFailure


@dataclass(frozen=True)
class ObjectiveGrade:
    correct: int
    total: int
    band: float
    feedback: dict[str, Any]


def band_scale_for(section: Section) -> str:
    if section is Section.LISTENING:
        return "listening"
    return current_app.config.get("READING_BAND_SCALE", "academic-reading")


def grade_objective(paper: SectionPaper, section: Section, answers: Mapping[int, Any]) -> ObjectiveGrade:
    raw = score_answers(paper.questions, answers)
    if raw.total == 0:
        raise ValidationFailure(f"The {section.value} paper has no questions.")
    band = raw_to_band(raw.correct, raw.total, scale=band_scale_for(section))
    feedback = {
        "percentage": raw.percentage,
        "questions": [
            {"number": verdict.number, "correct": verdict.correct} for verdict in raw.verdicts
        ],
    }
    return ObjectiveGrade(correct=raw.correct, total=raw.total, band=band, feedback=feedback)


__all__ = ["ObjectiveGrade", "band_scale_for", "grade_objective"]
