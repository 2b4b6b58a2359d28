"""Client for the external writing/speaking evaluator.

The evaluator is an HTTP service that grades candidate text or transcripts
against the published rubric. Its answer is only advisory: the section band
that gets recorded is recomputed here from the returned criterion scores, and
any transport or schema problem is reported as an
:class:`EvaluationOracleFailure` rather than a low score.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import requests
from flask import current_app
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .band_scores import is_valid_band, rubric_band, weighted_band
from .exam_state import Section
from .outcomes import EvaluationOracleFailure

logger = logging.getLogger(__name__)

WRITING_TASK1_CRITERIA = frozenset(
    {"task_achievement", "coherence_cohesion", "lexical_resource", "grammatical_range"}
)
WRITING_TASK2_CRITERIA = frozenset(
    {"task_response", "coherence_cohesion", "lexical_resource", "grammatical_range"}
)
SPEAKING_CRITERIA = frozenset(
    {"fluency_coherence", "lexical_resource", "grammatical_range", "pronunciation"}
)

# Writing task 2 carries twice the weight of task 1.
TASK_WEIGHTS: dict[Section, dict[int, float]] = {
    Section.WRITING: {1: 1.0, 2: 2.0},
}


@dataclass(frozen=True)
class CandidateResponse:
    task_number: int
    prompt: str
    text: str
    min_words: int | None = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass(frozen=True)
class EvaluationRequest:
    section: Section
    responses: Sequence[CandidateResponse]
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> dict[str, Any]:
        return {
            "section": self.section.value,
            "responses": [
                {
                    "taskNumber": response.task_number,
                    "prompt": response.prompt,
                    "text": response.text,
                    "wordCount": response.word_count,
                    "minWords": response.min_words,
                }
                for response in self.responses
            ],
            "metadata": self.metadata,
        }


class TaskEvaluation(BaseModel):
    task_number: int = Field(..., ge=1, alias="taskNumber")
    criteria: dict[str, float]
    overall_band: float | None = Field(default=None, alias="overallBand")
    feedback: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("criteria")
    @classmethod
    def ensure_band_scale(cls, value: dict[str, float]) -> dict[str, float]:
        if not value:
            raise ValueError("criteria must not be empty")
        for name, score in value.items():
            if not is_valid_band(float(score)):
                raise ValueError(f"criterion {name} has invalid band {score}")
        return value


class EvaluationResponse(BaseModel):
    tasks: list[TaskEvaluation]
    overall_band: float | None = Field(default=None, alias="overallBand")
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def ensure_tasks(self) -> "EvaluationResponse":
        if not self.tasks:
            raise ValueError("tasks must contain at least one evaluation")
        return self


@dataclass(frozen=True)
class RubricResult:
    band: float
    criteria: dict[str, dict[str, float]]
    task_bands: dict[int, float]
    strengths: list[str]
    improvements: list[str]
    oracle_band: float | None = None
    task_feedback: dict[int, dict[str, str]] = field(default_factory=dict)

    def feedback_payload(self) -> dict[str, Any]:
        return {
            "strengths": list(self.strengths),
            "improvements": list(self.improvements),
            "taskBands": {str(number): band for number, band in self.task_bands.items()},
            "taskFeedback": {
                str(number): notes for number, notes in self.task_feedback.items()
            },
            "oracleBand": self.oracle_band,
        }


def _required_criteria(section: Section, task_number: int) -> frozenset[str]:
    if section is Section.WRITING:
        return WRITING_TASK1_CRITERIA if task_number == 1 else WRITING_TASK2_CRITERIA
    return SPEAKING_CRITERIA


# Resolve connection settings for the section's evaluator endpoint.
def _resolve_endpoint(app, section: Section) -> tuple[str, str | None, int]:
    endpoints = app.config.get("EVALUATION_ORACLE_ENDPOINTS", {}) or {}
    if not isinstance(endpoints, dict):
        endpoints = {}
    settings = endpoints.get(section.value)
    if not isinstance(settings, dict):
        settings = {}

    base_url = settings.get("base_url") or app.config.get("EVALUATION_ORACLE_BASE_URL")
    if not isinstance(base_url, str) or not base_url.strip():
        raise EvaluationOracleFailure("The evaluation service is not configured.")

    token_value = settings.get("token") or app.config.get("EVALUATION_ORACLE_TOKEN")
    token = token_value.strip() if isinstance(token_value, str) and token_value.strip() else None

    timeout_value = settings.get("timeout")
    if timeout_value is None:
        timeout_value = app.config.get("EVALUATION_ORACLE_TIMEOUT", 60)
    try:
        timeout = int(timeout_value)
    except (TypeError, ValueError):
        timeout = 60

    return base_url.strip(), token, timeout


def _post_evaluation(request: EvaluationRequest) -> dict[str, Any]:
    app = current_app._get_current_object()
    if not app.config.get("EVALUATION_ORACLE_ENABLED", True):
        raise EvaluationOracleFailure("The evaluation service is disabled.")

    base_url, token, timeout = _resolve_endpoint(app, request.section)
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    url = f"{base_url.rstrip('/')}/api/evaluate-{request.section.value}"

    try:
        response = requests.post(url, headers=headers, json=request.as_payload(), timeout=timeout)
    except requests.Timeout as exc:
        raise EvaluationOracleFailure("The evaluation service timed out.") from exc
    except requests.RequestException as exc:
        raise EvaluationOracleFailure("Failed to reach the evaluation service.") from exc

    if response.status_code == 401:
        raise EvaluationOracleFailure("The evaluation service rejected the authentication token.")
    if response.status_code >= 500:
        raise EvaluationOracleFailure("The evaluation service encountered an internal error.")
    if response.status_code >= 400:
        raise EvaluationOracleFailure(
            f"The evaluation service returned status {response.status_code}."
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise EvaluationOracleFailure("The evaluation service responded with invalid JSON.") from exc
    if not isinstance(data, dict):
        raise EvaluationOracleFailure("The evaluation service responded with an unexpected payload.")
    return data


def _reduce(request: EvaluationRequest, parsed: EvaluationResponse) -> RubricResult:
    requested = {response.task_number for response in request.responses}
    by_task = {task.task_number: task for task in parsed.tasks}
    missing_tasks = requested - set(by_task)
    if missing_tasks:
        raise EvaluationOracleFailure(
            "The evaluation service skipped task(s) "
            + ", ".join(str(number) for number in sorted(missing_tasks))
            + "."
        )

    task_bands: dict[int, float] = {}
    criteria: dict[str, dict[str, float]] = {}
    feedback: dict[int, dict[str, str]] = {}
    for number in sorted(requested):
        task = by_task[number]
        required = _required_criteria(request.section, number)
        absent = required - set(task.criteria)
        if absent:
            raise EvaluationOracleFailure(
                f"Task {number} evaluation is missing criteria: {', '.join(sorted(absent))}."
            )
        scores = {name: float(task.criteria[name]) for name in sorted(required)}
        criteria[str(number)] = scores
        task_bands[number] = rubric_band(scores)
        if task.feedback:
            feedback[number] = dict(task.feedback)

    weights_by_task = TASK_WEIGHTS.get(request.section, {})
    ordered = sorted(task_bands)
    band = weighted_band(
        [task_bands[number] for number in ordered],
        [weights_by_task.get(number, 1.0) for number in ordered],
    )
    if parsed.overall_band is not None and parsed.overall_band != band:
        logger.warning(
            "Evaluator reported band %s for %s but criteria reduce to %s",
            parsed.overall_band,
            request.section.value,
            band,
        )
    return RubricResult(
        band=band,
        criteria=criteria,
        task_bands=task_bands,
        strengths=list(parsed.strengths),
        improvements=list(parsed.improvements),
        oracle_band=parsed.overall_band,
        task_feedback=feedback,
    )


def evaluate_section(request: EvaluationRequest) -> RubricResult:
    """Grade a writing or speaking submission through the external evaluator."""

    if request.section.objective:
        raise ValueError("Objective sections are scored locally.")
    if not request.responses:
        raise EvaluationOracleFailure("There is nothing to evaluate yet.")

    data = _post_evaluation(request)
    try:
        parsed = EvaluationResponse.model_validate(data)
    except ValidationError as exc:
        logger.warning("Evaluator payload rejected: %s", exc)
        raise EvaluationOracleFailure("The evaluation service returned an invalid rubric.") from exc

    result = _reduce(request, parsed)
    logger.debug(
        "Evaluator graded %s tasks=%s band=%s",
        request.section.value,
        sorted(result.task_bands),
        result.band,
    )
    return result


def build_request(
    section: Section,
    tasks: Iterable[dict[str, Any]],
    texts: dict[int, str],
    *,
    metadata: dict[str, Any] | None = None,
) -> EvaluationRequest:
    """Pair authored task prompts with the candidate's text for each task."""

    responses: list[CandidateResponse] = []
    for task in tasks:
        number = int(task.get("number", 0))
        text = (texts.get(number) or "").strip()
        if not text:
            continue
        responses.append(
            CandidateResponse(
                task_number=number,
                prompt=str(task.get("prompt") or "").strip(),
                text=text,
                min_words=task.get("minWords"),
            )
        )
    return EvaluationRequest(section=section, responses=responses, metadata=metadata or {})


__all__ = [
    "CandidateResponse",
    "EvaluationRequest",
    "EvaluationResponse",
    "RubricResult",
    "TaskEvaluation",
    "build_request",
    "evaluate_section",
]
