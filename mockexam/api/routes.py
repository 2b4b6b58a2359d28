from __future__ import annotations

from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request

from ..models import ExamSession, MockTest, PracticeAttempt, SectionPaper
from ..services.band_scores import band_descriptor
from ..services.exam_state import Section, SectionScore
from ..services.mock_exam_sessions import (
    CueCardStatus,
    MediaStatus,
    SectionEntry,
    SectionSubmission,
    audio_status,
    candidate_sessions,
    control_audio,
    cue_card_status,
    enter_section,
    ensure_session_active,
    get_mock_test,
    get_session,
    latest_session,
    retake_section,
    save_answer,
    section_overview,
    session_results,
    start_cue_card,
    start_session,
    submit_section,
)
from ..services.outcomes import Failure, Outcome, ValidationFailure, capture
from ..services.practice import (
    get_practice_paper,
    practice_history,
    practice_papers,
    submit_practice,
)
from ..services.progress import ProgressSummary, get_progress_summary
from . import api_bp

FAILURE_STATUS = {
    "invalid_transition": 409,
    "session_conflict": 409,
    "premium_required": 403,
    "not_found": 404,
    "validation_failure": 400,
    "evaluation_oracle_failure": 502,
    "persistence_failure": 503,
}


def _json_error(message: str, status: int = 400, *, kind: str = "error"):
    return jsonify({"ok": False, "kind": kind, "message": message, "retryable": False}), status


def _respond(outcome: Outcome, serialise=None, status: int = 200):
    if isinstance(outcome, Failure):
        return jsonify(outcome.as_dict()), FAILURE_STATUS.get(outcome.kind, 400)
    value = serialise(outcome.value) if serialise else outcome.value
    return jsonify({"ok": True, "value": value}), status


def _require_candidate(func):
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        header = current_app.config.get("CANDIDATE_HEADER", "X-Candidate-Id")
        candidate_id = (request.headers.get(header) or "").strip()
        if not candidate_id:
            return _json_error("Candidate identity required.", 401, kind="unauthenticated")
        g.candidate_id = candidate_id
        return func(*args, **kwargs)

    return wrapper


def _candidate_is_premium() -> bool:
    header = current_app.config.get("CANDIDATE_TIER_HEADER", "X-Candidate-Tier")
    return (request.headers.get(header) or "").strip().lower() == "premium"


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


def _parse_section(value: str) -> Section:
    try:
        return Section.parse(value)
    except ValueError as exc:
        raise ValidationFailure(f"Unknown section '{value}'.") from exc


def _serialise_question(question, *, reveal: bool = False) -> dict[str, Any]:
    payload = {
        "number": question.number,
        "type": question.question_type,
        "prompt": question.prompt,
        "group": question.group_label,
        "options": list(question.options or []),
    }
    if reveal:
        payload["answer"] = question.answer_key
    return payload


def _serialise_paper(paper: SectionPaper, *, include_content: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "paperId": paper.id,
        "section": paper.section,
        "title": paper.title,
        "difficulty": paper.difficulty,
        "durationMinutes": paper.duration_minutes,
        "questionCount": len(paper.questions),
        "taskCount": len(paper.tasks or []),
    }
    if include_content:
        payload.update(
            {
                "audioUrl": paper.audio_url,
                "passage": paper.passage,
                "tasks": list(paper.tasks or []),
                "questions": [_serialise_question(question) for question in paper.questions],
            }
        )
    return payload


def _serialise_score(score: SectionScore) -> dict[str, Any]:
    return {
        "section": score.section.value,
        "band": score.band,
        "correct": score.correct,
        "total": score.total,
        "criteria": score.criteria,
        "feedback": score.feedback,
        "elapsedSeconds": score.elapsed_seconds,
        "autoSubmitted": score.auto_submitted,
        "completedAt": _isoformat(score.completed_at),
    }


def _serialise_media(status: MediaStatus | None) -> dict[str, Any] | None:
    if status is None:
        return None
    return {
        "state": status.state.value,
        "warningRemaining": status.warning_remaining,
        "interactive": status.interactive,
        "accepted": status.accepted,
    }


def _serialise_session(session: ExamSession) -> dict[str, Any]:
    payload = {
        "sessionId": session.id,
        "mockTestId": session.mock_test_id,
        "mockTestTitle": session.mock_test.title,
        "attemptNumber": session.attempt_number,
        "status": session.status,
        "startedAt": _isoformat(session.started_at),
        "completedAt": _isoformat(session.completed_at),
        "overallBand": session.overall_band,
    }
    payload.update(section_overview(session))
    return payload


def _serialise_entry(entry: SectionEntry) -> dict[str, Any]:
    return {
        "sessionId": entry.session.id,
        "section": entry.section.value,
        "remainingSeconds": entry.remaining_seconds,
        "paper": _serialise_paper(entry.paper),
        "answers": {str(number): value for number, value in entry.answers.items()},
        "media": _serialise_media(entry.media),
    }


def _serialise_submission(submission: SectionSubmission | None) -> dict[str, Any] | None:
    if submission is None:
        return None
    next_section = submission.next_section
    return {
        "section": submission.section.value,
        "result": _serialise_score(submission.score),
        "nextSection": next_section.value if next_section else None,
        "redirect": next_section.value if next_section else "results",
        "overallBand": submission.overall_band,
        "autoSubmitted": submission.auto,
    }


def _serialise_cue_card(status: CueCardStatus) -> dict[str, Any]:
    return {"phase": status.phase, "remaining": status.remaining, "completed": status.completed}


def _serialise_attempt(attempt: PracticeAttempt) -> dict[str, Any]:
    return {
        "attemptId": attempt.id,
        "paperId": attempt.paper_id,
        "paperTitle": attempt.paper.title if attempt.paper else None,
        "section": attempt.section,
        "band": attempt.band,
        "correct": attempt.raw_correct,
        "total": attempt.raw_total,
        "criteria": attempt.criteria,
        "feedback": attempt.feedback,
        "timeSpentSeconds": attempt.time_spent_seconds,
        "createdAt": _isoformat(attempt.created_at),
    }


def _serialise_progress(summary: ProgressSummary) -> dict[str, Any]:
    return {
        "candidateId": summary.candidate_id,
        "completedMockTests": summary.completed_mock_tests,
        "averageOverallBand": summary.average_overall_band,
        "bestOverallBand": summary.best_overall_band,
        "skills": [
            {
                "section": skill.section,
                "attempts": skill.attempts,
                "mockAttempts": skill.mock_attempts,
                "practiceAttempts": skill.practice_attempts,
                "averageBand": skill.average_band,
                "bestBand": skill.best_band,
                "bestAchievedAt": _isoformat(skill.best_achieved_at),
            }
            for skill in summary.skills
        ],
        "recentActivity": [
            {
                "section": entry.section,
                "source": entry.source,
                "band": entry.band,
                "completedAt": _isoformat(entry.completed_at),
            }
            for entry in summary.recent
        ],
    }


def _load_session(session_id: str) -> ExamSession:
    return get_session(session_id, g.candidate_id)


@api_bp.get("/mock-tests")
@_require_candidate
def list_mock_tests():
    tests = MockTest.query.order_by(MockTest.id.asc()).all()
    payload = []
    for mock_test in tests:
        latest = latest_session(g.candidate_id, mock_test.id)
        payload.append(
            {
                "mockTestId": mock_test.id,
                "slug": mock_test.slug,
                "title": mock_test.title,
                "description": mock_test.description,
                "isPremium": mock_test.is_premium,
                "papers": [
                    _serialise_paper(paper, include_content=False) for paper in mock_test.papers
                ],
                "latestSession": {
                    "sessionId": latest.id,
                    "status": latest.status,
                    "attemptNumber": latest.attempt_number,
                    "overallBand": latest.overall_band,
                }
                if latest
                else None,
            }
        )
    return jsonify({"ok": True, "value": payload})


@api_bp.post("/mock-tests/<int:mock_test_id>/sessions")
@_require_candidate
def start_mock_test(mock_test_id: int):
    data = request.get_json(silent=True) or {}
    new_attempt = bool(data.get("newAttempt", False))

    def _start():
        return start_session(
            g.candidate_id,
            get_mock_test(mock_test_id),
            new_attempt=new_attempt,
            premium=_candidate_is_premium(),
        )

    outcome = capture(_start)
    if isinstance(outcome, Failure):
        return _respond(outcome)
    result = outcome.value
    payload = _serialise_session(result.session)
    payload["resumed"] = result.resumed
    if result.session.status == "completed":
        payload["redirect"] = "results"
    else:
        payload["redirect"] = payload["currentSection"]
    return jsonify({"ok": True, "value": payload}), 200 if result.resumed else 201


@api_bp.get("/sessions")
@_require_candidate
def list_sessions():
    def _sessions():
        return [ensure_session_active(session) for session in candidate_sessions(g.candidate_id)]

    return _respond(
        capture(_sessions), lambda sessions: [_serialise_session(session) for session in sessions]
    )


@api_bp.get("/sessions/<session_id>")
@_require_candidate
def session_detail(session_id: str):
    def _detail():
        return ensure_session_active(_load_session(session_id))

    return _respond(capture(_detail), _serialise_session)


@api_bp.post("/sessions/<session_id>/sections/<section>/enter")
@_require_candidate
def enter_exam_section(session_id: str, section: str):
    def _enter():
        return enter_section(_load_session(session_id), _parse_section(section))

    return _respond(capture(_enter), _serialise_entry)


@api_bp.put("/sessions/<session_id>/sections/<section>/answers/<int:item_number>")
@_require_candidate
def save_section_answer(session_id: str, section: str, item_number: int):
    data = request.get_json(silent=True) or {}
    if "value" not in data:
        return _json_error("value is required.", kind="validation_failure")

    def _save():
        save_answer(_load_session(session_id), _parse_section(section), item_number, data["value"])
        return {"number": item_number, "saved": True}

    return _respond(capture(_save))


@api_bp.post("/sessions/<session_id>/sections/<section>/submit")
@_require_candidate
def submit_exam_section(session_id: str, section: str):
    data = request.get_json(silent=True) or {}
    answers = data.get("answers") or {}
    if not isinstance(answers, dict):
        return _json_error("answers must be an object keyed by item number.", kind="validation_failure")

    def _submit():
        return submit_section(_load_session(session_id), _parse_section(section), answers)

    return _respond(capture(_submit), _serialise_submission)


@api_bp.post("/sessions/<session_id>/sections/<section>/retake")
@_require_candidate
def retake_exam_section(session_id: str, section: str):
    def _retake():
        return retake_section(_load_session(session_id), _parse_section(section))

    return _respond(capture(_retake), _serialise_session)


@api_bp.get("/sessions/<session_id>/audio")
@_require_candidate
def listening_audio_status(session_id: str):
    def _status():
        return audio_status(_load_session(session_id))

    return _respond(capture(_status), _serialise_media)


@api_bp.post("/sessions/<session_id>/audio/<action>")
@_require_candidate
def listening_audio_control(session_id: str, action: str):
    def _control():
        return control_audio(_load_session(session_id), action)

    return _respond(capture(_control), _serialise_media)


@api_bp.post("/sessions/<session_id>/speaking/cue-card")
@_require_candidate
def begin_cue_card(session_id: str):
    def _begin():
        return start_cue_card(_load_session(session_id))

    return _respond(capture(_begin), _serialise_cue_card)


@api_bp.get("/sessions/<session_id>/speaking/cue-card")
@_require_candidate
def current_cue_card(session_id: str):
    def _current():
        return cue_card_status(_load_session(session_id))

    return _respond(capture(_current), _serialise_cue_card)


@api_bp.get("/sessions/<session_id>/results")
@_require_candidate
def exam_results(session_id: str):
    def _results():
        return session_results(_load_session(session_id))

    def _serialise(results):
        sections = []
        for section, score in results.sections.items():
            entry = _serialise_score(score)
            entry["descriptor"] = band_descriptor(score.band)
            entry["answers"] = score.answers
            if section.objective:
                paper = results.session.mock_test.paper_for(section.value)
                entry["questions"] = _question_review(paper, score) if paper else []
            sections.append(entry)
        return {
            "sessionId": results.session.id,
            "mockTestTitle": results.session.mock_test.title,
            "attemptNumber": results.session.attempt_number,
            "overallBand": results.overall_band,
            "descriptor": results.descriptor,
            "completedAt": _isoformat(results.session.completed_at),
            "sections": sections,
        }

    return _respond(capture(_results), _serialise)


def _question_review(paper: SectionPaper, score: SectionScore) -> list[dict[str, Any]]:
    verdicts = {
        item["number"]: item["correct"] for item in score.feedback.get("questions", [])
    }
    review = []
    for question in paper.questions:
        entry = _serialise_question(question, reveal=True)
        entry["submitted"] = score.answers.get(str(question.number))
        entry["correct"] = verdicts.get(question.number, False)
        review.append(entry)
    return review


@api_bp.get("/practice/papers")
@_require_candidate
def list_practice_papers():
    section = request.args.get("section")
    return _respond(
        capture(practice_papers, section),
        lambda papers: [_serialise_paper(paper, include_content=False) for paper in papers],
    )


@api_bp.get("/practice/papers/<int:paper_id>")
@_require_candidate
def practice_paper_detail(paper_id: int):
    return _respond(capture(get_practice_paper, paper_id), _serialise_paper)


@api_bp.post("/practice/papers/<int:paper_id>/submit")
@_require_candidate
def submit_practice_paper(paper_id: int):
    data = request.get_json(silent=True) or {}
    answers = data.get("answers") or {}
    if not isinstance(answers, dict):
        return _json_error("answers must be an object keyed by item number.", kind="validation_failure")

    def _submit():
        return submit_practice(
            g.candidate_id,
            get_practice_paper(paper_id),
            answers,
            time_spent_seconds=data.get("timeSpentSeconds") or 0,
        )

    def _serialise(attempt: PracticeAttempt):
        payload = _serialise_attempt(attempt)
        payload["descriptor"] = band_descriptor(attempt.band)
        return payload

    return _respond(capture(_submit), _serialise, status=201)


@api_bp.get("/practice/attempts")
@_require_candidate
def list_practice_attempts():
    section = request.args.get("section")

    def _history():
        try:
            return practice_history(g.candidate_id, section)
        except ValueError as exc:
            raise ValidationFailure(str(exc)) from exc

    return _respond(
        capture(_history), lambda attempts: [_serialise_attempt(item) for item in attempts]
    )


@api_bp.get("/progress")
@_require_candidate
def candidate_progress():
    section = request.args.get("section")
    return _respond(
        capture(get_progress_summary, g.candidate_id, section=section), _serialise_progress
    )
