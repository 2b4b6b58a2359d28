"""Answer equivalence rules for every authored question type.

Each question carries an explicit ``type`` discriminator and the matcher
dispatches on it. Submissions are never trusted to have the right shape: a
value that does not fit the question type is simply incorrect.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE_SET = "multi-choice-set"
    FILL_BLANK = "fill-blank"
    TRUE_FALSE_NOT_GIVEN = "true-false-not-given"
    MATCHING = "matching"
    FORM_FIELD = "form-field"

    @classmethod
    def parse(cls, value: str | "QuestionType") -> "QuestionType":
        if isinstance(value, QuestionType):
            return value
        return cls((value or "").strip().lower())


ALTERNATIVE_SEPARATOR = "/"

_QUOTE_MAP = {
    "’": "'",
    "‘": "'",
    "“": '"',
    "”": '"',
}


def normalise_text(value: str) -> str:
    """Return the comparison form of a free-text answer."""

    text = unicodedata.normalize("NFKC", value)
    for src, dst in _QUOTE_MAP.items():
        text = text.replace(src, dst)
    text = re.sub(r"\s+", " ", text.strip())
    return text.casefold()


def split_alternatives(expected: str) -> list[str]:
    alternatives = [normalise_text(part) for part in expected.split(ALTERNATIVE_SEPARATOR)]
    return [alt for alt in alternatives if alt]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return not value
    return False


def _match_text(user_answer: Any, expected: Any) -> bool:
    if not isinstance(user_answer, str) or not isinstance(expected, str):
        return False
    submitted = normalise_text(user_answer)
    if not submitted:
        return False
    return submitted in split_alternatives(expected)


def _parse_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _match_choice_index(user_answer: Any, expected: Any) -> bool:
    expected_index = _parse_index(expected)
    submitted_index = _parse_index(user_answer)
    if expected_index is None or submitted_index is None:
        return False
    return submitted_index == expected_index


def _as_slots(value: Any) -> list[Any] | None:
    # A single-slot blank may be authored or submitted as a bare string.
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    return None


def _match_ordered(user_answer: Any, expected: Any) -> bool:
    submitted = _as_slots(user_answer)
    wanted = _as_slots(expected)
    if not submitted or not wanted or len(submitted) != len(wanted):
        return False
    return all(_match_text(given, target) for given, target in zip(submitted, wanted))


def _normalised_set(values: Iterable[Any]) -> set[str] | None:
    members: set[str] = set()
    for value in values:
        if not isinstance(value, str):
            return None
        normalised = normalise_text(value)
        if normalised:
            members.add(normalised)
    return members


def _match_unordered(user_answer: Any, expected: Any) -> bool:
    if not isinstance(user_answer, (list, tuple)) or not isinstance(expected, (list, tuple)):
        return False
    submitted = _normalised_set(user_answer)
    wanted = _normalised_set(expected)
    if not submitted or not wanted:
        return False
    return len(submitted) == len(wanted) and wanted.issubset(submitted)


_MATCHERS: dict[QuestionType, Callable[[Any, Any], bool]] = {
    QuestionType.SINGLE_CHOICE: _match_choice_index,
    QuestionType.MULTI_CHOICE_SET: _match_unordered,
    QuestionType.FILL_BLANK: _match_ordered,
    QuestionType.TRUE_FALSE_NOT_GIVEN: _match_text,
    QuestionType.MATCHING: _match_text,
    QuestionType.FORM_FIELD: _match_text,
}


def is_correct(user_answer: Any, expected_answer: Any, question_type: str | QuestionType) -> bool:
    """Return whether ``user_answer`` satisfies ``expected_answer``.

    Malformed or missing submissions are incorrect rather than errors, and an
    unknown question type never matches.
    """

    if _is_blank(user_answer) or _is_blank(expected_answer):
        return False
    try:
        kind = QuestionType.parse(question_type)
    except ValueError:
        return False
    return _MATCHERS[kind](user_answer, expected_answer)


@dataclass(slots=True)
class QuestionVerdict:
    number: int
    submitted: Any
    expected: Any
    correct: bool


@dataclass(slots=True)
class RawScore:
    correct: int
    total: int
    verdicts: list[QuestionVerdict] = field(default_factory=list)

    @property
    def percentage(self) -> float:
        return round(self.correct / self.total * 100, 1) if self.total else 0.0


def score_answers(questions: Sequence[Any], answers: Mapping[int, Any]) -> RawScore:
    """Tally a paper: ``questions`` expose ``number``, ``answer_key`` and ``question_type``."""

    verdicts: list[QuestionVerdict] = []
    for question in sorted(questions, key=lambda item: item.number):
        submitted = answers.get(question.number)
        verdicts.append(
            QuestionVerdict(
                number=question.number,
                submitted=submitted,
                expected=question.answer_key,
                correct=is_correct(submitted, question.answer_key, question.question_type),
            )
        )
    correct = sum(1 for verdict in verdicts if verdict.correct)
    return RawScore(correct=correct, total=len(verdicts), verdicts=verdicts)


__all__ = [
    "QuestionType",
    "QuestionVerdict",
    "RawScore",
    "is_correct",
    "normalise_text",
    "score_answers",
    "split_alternatives",
]
