"""Validation and import of exam authoring payloads.

A payload is either a full mock test (``"kind": "mock-test"``) carrying one
paper per skill, or a standalone practice paper (``"kind": "practice-paper"``).
Keys are camelCase, matching the JSON API.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import DEFAULT_SECTION_MINUTES, MockTest, Question, SectionPaper
from .answer_matching import QuestionType
from .exam_state import SECTION_ORDER, Section
from .outcomes import PersistenceFailure, ValidationFailure

logger = logging.getLogger(__name__)

PAYLOAD_KINDS = ("mock-test", "practice-paper")
DIFFICULTIES = ("easy", "medium", "hard")


class AuthoringError(ValidationFailure):
    """Raised when an authoring payload breaks a question or paper invariant."""


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _whole_number(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise AuthoringError(f"{label} must be a whole number.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise AuthoringError(f"{label} must be a whole number.") from exc


def _validate_answer(number: int, question_type: QuestionType, answer: Any, options: list) -> Any:
    if question_type is QuestionType.SINGLE_CHOICE:
        if isinstance(answer, bool):
            raise AuthoringError(f"Question {number}: the answer must be an option index.")
        try:
            index = int(answer)
        except (TypeError, ValueError) as exc:
            raise AuthoringError(f"Question {number}: the answer must be an option index.") from exc
        if options and not 0 <= index < len(options):
            raise AuthoringError(f"Question {number}: answer index {index} has no option.")
        return index

    if question_type is QuestionType.MULTI_CHOICE_SET:
        if not isinstance(answer, list) or not answer or any(_blank(item) for item in answer):
            raise AuthoringError(f"Question {number}: a multi-choice answer needs a list of values.")
        return [str(item) for item in answer]

    if isinstance(answer, list):
        if question_type is not QuestionType.FILL_BLANK:
            raise AuthoringError(f"Question {number}: only fill-blank answers may be lists.")
        if not answer or any(_blank(item) for item in answer):
            raise AuthoringError(f"Question {number}: every blank needs an acceptable answer.")
        return [str(item) for item in answer]

    if _blank(answer) or not isinstance(answer, (str, int)):
        raise AuthoringError(f"Question {number}: at least one acceptable answer is required.")
    return str(answer)


def validate_question(data: dict[str, Any]) -> dict[str, Any]:
    """Return normalised question fields or raise :class:`AuthoringError`."""

    try:
        number = int(data.get("number"))
    except (TypeError, ValueError) as exc:
        raise AuthoringError("Every question needs a numeric 'number'.") from exc
    if number < 1:
        raise AuthoringError(f"Question {number}: numbers start at 1.")

    try:
        question_type = QuestionType.parse(data.get("type"))
    except ValueError as exc:
        raise AuthoringError(f"Question {number}: unknown type '{data.get('type')}'.") from exc

    options = data.get("options") or []
    if not isinstance(options, list):
        raise AuthoringError(f"Question {number}: options must be a list.")
    if question_type in (QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE_SET) and not options:
        raise AuthoringError(f"Question {number}: choice questions need options.")

    return {
        "number": number,
        "question_type": question_type.value,
        "prompt": str(data.get("prompt") or "").strip(),
        "group_label": data.get("group"),
        "options": [str(option) for option in options],
        "answer_key": _validate_answer(number, question_type, data.get("answer"), options),
    }


def _validate_tasks(section: Section, tasks: Any) -> list[dict[str, Any]]:
    if not isinstance(tasks, list) or not tasks:
        raise AuthoringError(f"A {section.value} paper needs at least one task.")
    normalised: list[dict[str, Any]] = []
    seen: set[int] = set()
    for task in tasks:
        try:
            number = int(task.get("number"))
        except (AttributeError, TypeError, ValueError) as exc:
            raise AuthoringError("Every task needs a numeric 'number'.") from exc
        if number in seen:
            raise AuthoringError(f"Task {number} appears twice.")
        seen.add(number)
        prompt = str(task.get("prompt") or "").strip()
        if not prompt:
            raise AuthoringError(f"Task {number} needs a prompt.")
        entry: dict[str, Any] = {"number": number, "prompt": prompt}
        if task.get("minWords") is not None:
            entry["minWords"] = _whole_number(task["minWords"], f"Task {number} minWords")
        normalised.append(entry)
    return normalised


def build_paper(data: dict[str, Any], *, mock_test: MockTest | None = None) -> SectionPaper:
    try:
        section = Section.parse(data.get("section"))
    except ValueError as exc:
        raise AuthoringError(f"Unknown section '{data.get('section')}'.") from exc

    title = str(data.get("title") or "").strip()
    if not title:
        raise AuthoringError(f"The {section.value} paper needs a title.")
    difficulty = (data.get("difficulty") or "medium").lower()
    if difficulty not in DIFFICULTIES:
        raise AuthoringError(f"Unknown difficulty '{difficulty}'.")
    duration = _whole_number(
        data.get("durationMinutes") or DEFAULT_SECTION_MINUTES[section.value], "durationMinutes"
    )
    if duration <= 0:
        raise AuthoringError("Durations must be positive.")

    paper = SectionPaper(
        mock_test=mock_test,
        section=section.value,
        title=title,
        difficulty=difficulty,
        duration_minutes=duration,
        audio_url=data.get("audioUrl"),
        passage=data.get("passage"),
        tasks=[],
    )

    if section.objective:
        questions = data.get("questions") or []
        if not questions:
            raise AuthoringError(f"The {section.value} paper needs questions.")
        seen: set[int] = set()
        for raw in questions:
            fields = validate_question(raw)
            if fields["number"] in seen:
                raise AuthoringError(f"Question {fields['number']} appears twice.")
            seen.add(fields["number"])
            paper.questions.append(Question(**fields))
        if section is Section.LISTENING and not paper.audio_url:
            raise AuthoringError("A listening paper needs an audio URL.")
    else:
        paper.tasks = _validate_tasks(section, data.get("tasks"))
    return paper


def build_mock_test(data: dict[str, Any]) -> MockTest:
    slug = str(data.get("slug") or "").strip()
    title = str(data.get("title") or "").strip()
    if not slug or not title:
        raise AuthoringError("A mock test needs a slug and a title.")
    if MockTest.query.filter_by(slug=slug).first() is not None:
        raise AuthoringError(f"A mock test with slug '{slug}' already exists.")

    mock_test = MockTest(
        slug=slug,
        title=title,
        description=str(data.get("description") or ""),
        is_premium=bool(data.get("isPremium", False)),
    )
    papers = data.get("papers") or []
    for raw in papers:
        build_paper(raw, mock_test=mock_test)
    sections = [paper.section for paper in mock_test.papers]
    expected = [section.value for section in SECTION_ORDER]
    if sorted(sections) != sorted(expected):
        raise AuthoringError("A mock test needs exactly one paper for each of the four sections.")
    return mock_test


def import_payload(data: dict[str, Any]) -> MockTest | SectionPaper:
    """Validate a payload and store it; nothing is written when validation fails."""

    if not isinstance(data, dict):
        raise AuthoringError("The payload must be a JSON object.")
    kind = data.get("kind")
    if kind not in PAYLOAD_KINDS:
        raise AuthoringError(f"'kind' must be one of: {', '.join(PAYLOAD_KINDS)}.")

    record: MockTest | SectionPaper
    try:
        record = build_mock_test(data) if kind == "mock-test" else build_paper(data)
    except AuthoringError:
        db.session.rollback()
        raise
    db.session.add(record)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to import %s payload", kind)
        raise PersistenceFailure("The payload could not be stored.") from exc
    logger.info("Imported %s '%s'", kind, record.title)
    return record


__all__ = [
    "AuthoringError",
    "PAYLOAD_KINDS",
    "build_mock_test",
    "build_paper",
    "import_payload",
    "validate_question",
]
