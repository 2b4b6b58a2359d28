"""Service layer for the four-skill mock test engine."""

from .answer_matching import QuestionType, is_correct, score_answers
from .band_scores import band_descriptor, composite, raw_to_band
from .exam_state import (
    SECTION_ORDER,
    ExamSessionStateMachine,
    InvalidTransition,
    Section,
    SessionStatus,
)
from .outcomes import (
    EvaluationOracleFailure,
    Failure,
    NotFound,
    Ok,
    PersistenceFailure,
    PremiumRequired,
    ServiceError,
    SessionConflict,
    ValidationFailure,
    capture,
)

__all__ = [
    "QuestionType",
    "is_correct",
    "score_answers",
    "band_descriptor",
    "composite",
    "raw_to_band",
    "SECTION_ORDER",
    "ExamSessionStateMachine",
    "InvalidTransition",
    "Section",
    "SessionStatus",
    "EvaluationOracleFailure",
    "Failure",
    "NotFound",
    "Ok",
    "PersistenceFailure",
    "PremiumRequired",
    "ServiceError",
    "SessionConflict",
    "ValidationFailure",
    "capture",
]
