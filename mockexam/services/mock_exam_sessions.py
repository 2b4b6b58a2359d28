from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterator, Mapping
from uuid import uuid4

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import ExamSession, MockTest, SectionPaper, SessionAnswer
from .band_scores import MIN_BAND, band_descriptor
from .evaluation_oracle import build_request, evaluate_section
from .exam_state import (
    SECTION_ORDER,
    ExamSessionStateMachine,
    InvalidTransition,
    Section,
    SectionScore,
    SessionStatus,
)
from .grading import grade_objective
from .media_gate import MediaState, OnePlayMediaGate
from .outcomes import (
    EvaluationOracleFailure,
    NotFound,
    PersistenceFailure,
    PremiumRequired,
    SessionConflict,
    ValidationFailure,
)
from .result_gateway import SqlAlchemyResultGateway, state_from_row

logger = logging.getLogger(__name__)

AUDIO_ACTIONS = ("play", "ended", "pause", "seek", "replay")


@dataclass(slots=True)
class SessionStartResult:
    session: ExamSession
    resumed: bool


@dataclass(slots=True)
class MediaStatus:
    state: MediaState
    warning_remaining: int
    interactive: bool
    accepted: bool = True


@dataclass(slots=True)
class SectionEntry:
    session: ExamSession
    section: Section
    paper: SectionPaper
    remaining_seconds: int
    answers: dict[int, Any]
    media: MediaStatus | None = None


@dataclass(slots=True)
class SectionSubmission:
    section: Section
    score: SectionScore
    next_section: Section | None
    overall_band: float | None
    auto: bool = False


@dataclass(slots=True)
class CueCardStatus:
    phase: str | None
    remaining: int
    completed: bool


@dataclass(slots=True)
class SessionResults:
    session: ExamSession
    overall_band: float
    descriptor: str
    sections: dict[Section, SectionScore] = field(default_factory=dict)


def _gateway() -> SqlAlchemyResultGateway:
    return SqlAlchemyResultGateway()


def _timers():
    return current_app.extensions["section_timers"]


def _machine(session: ExamSession) -> ExamSessionStateMachine:
    return ExamSessionStateMachine(state_from_row(session))


@contextmanager
def _locked(session: ExamSession) -> Iterator[ExamSession]:
    """Hold the session's transition lock over a freshly loaded row.

    A timer thread works in its own app context and database session, so the
    row in this identity map may predate its writes. Every transition check
    must run against what is stored once the lock is held.
    """

    with _timers().lock_for(session.id):
        db.session.expire(session)
        yield session


def _commit(action: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to %s", action)
        raise PersistenceFailure("Your progress could not be saved. Please try again.") from exc


def get_mock_test(mock_test_id: int) -> MockTest:
    mock_test = db.session.get(MockTest, mock_test_id)
    if mock_test is None:
        raise NotFound("Mock test not found.")
    return mock_test


def get_session(session_id: str, candidate_id: str) -> ExamSession:
    session = ExamSession.query.filter_by(id=session_id, candidate_id=candidate_id).first()
    if session is None:
        raise NotFound("Exam session not found.")
    return session


def candidate_sessions(candidate_id: str) -> list[ExamSession]:
    return (
        ExamSession.query.filter_by(candidate_id=candidate_id)
        .order_by(ExamSession.started_at.desc())
        .all()
    )


def latest_session(candidate_id: str, mock_test_id: int) -> ExamSession | None:
    return (
        ExamSession.query.filter_by(candidate_id=candidate_id, mock_test_id=mock_test_id)
        .order_by(ExamSession.attempt_number.desc())
        .first()
    )


def _paper_for(session: ExamSession, section: Section) -> SectionPaper:
    paper = session.mock_test.paper_for(section.value)
    if paper is None:
        raise NotFound(f"This mock test has no {section.value} paper.")
    return paper


def _remaining_seconds(session: ExamSession, now: datetime) -> int:
    if session.section_deadline is None:
        return 0
    return max(int((session.section_deadline - now).total_seconds()), 0)


def _finalise(session: ExamSession, machine: ExamSessionStateMachine) -> float:
    overall = machine.finalize()
    _gateway().finalize(session.id, overall)
    return overall


def start_session(
    candidate_id: str,
    mock_test: MockTest,
    *,
    new_attempt: bool = False,
    premium: bool = False,
) -> SessionStartResult:
    if mock_test.is_premium and not premium:
        logger.info("Candidate %s refused premium mock test %s", candidate_id, mock_test.id)
        raise PremiumRequired("A premium subscription is required for this mock test.")

    unfinished = (
        ExamSession.query.filter(
            ExamSession.candidate_id == candidate_id,
            ExamSession.status != SessionStatus.COMPLETED.value,
        )
        .order_by(ExamSession.started_at.desc())
        .first()
    )
    if unfinished and unfinished.mock_test_id != mock_test.id:
        raise SessionConflict("Finish the current mock test before starting a new one.")

    if unfinished:
        if new_attempt:
            raise SessionConflict("Finish the current attempt before starting another.")
        ensure_session_active(unfinished)
        return SessionStartResult(session=unfinished, resumed=True)

    previous = latest_session(candidate_id, mock_test.id)
    if previous is not None and not new_attempt:
        return SessionStartResult(session=previous, resumed=True)

    missing = [section.value for section in SECTION_ORDER if mock_test.paper_for(section.value) is None]
    if missing:
        raise NotFound(f"This mock test is missing papers for: {', '.join(missing)}.")

    attempt_number = (previous.attempt_number + 1) if previous is not None else 1
    state = _gateway().create(
        uuid4().hex,
        candidate_id=candidate_id,
        mock_test_id=mock_test.id,
        attempt_number=attempt_number,
    )
    session = db.session.get(ExamSession, state.session_id)
    logger.info(
        "Candidate %s started attempt %s of mock test %s (session %s)",
        candidate_id,
        attempt_number,
        mock_test.id,
        session.id,
    )
    return SessionStartResult(session=session, resumed=False)


def ensure_session_active(session: ExamSession) -> ExamSession:
    """Apply any transition that became due while nobody was watching.

    A section whose deadline passed is auto-submitted, and a session whose
    four sections are recorded but which never got finalised is completed.
    """

    if session.status == SessionStatus.COMPLETED.value:
        return session
    if (
        session.timed_section
        and session.section_deadline
        and datetime.utcnow() >= session.section_deadline
    ):
        _auto_submit(session, Section.parse(session.timed_section))
    if _machine(session).ready_to_finalize:
        with _locked(session):
            machine = _machine(session)
            if machine.ready_to_finalize:
                _finalise(session, machine)
    return session


def _on_timer_expired(session_id: str, section_name: str) -> None:
    session = db.session.get(ExamSession, session_id)
    if session is None or session.status == SessionStatus.COMPLETED.value:
        return
    _auto_submit(session, Section.parse(section_name))


def _auto_submit(session: ExamSession, section: Section) -> SectionSubmission | None:
    try:
        return submit_section(session, section, auto=True)
    except (EvaluationOracleFailure, PersistenceFailure) as exc:
        retry_seconds = int(current_app.config.get("AUTO_SUBMIT_RETRY_SECONDS", 1))
        logger.warning(
            "Auto-submit of %s for session %s failed (%s); retrying in %ss",
            section.value,
            session.id,
            exc,
            retry_seconds,
        )
        _timers().arm(session.id, section.value, retry_seconds, _on_timer_expired)
        return None


def _require_open_section(session: ExamSession, section: Section) -> ExamSessionStateMachine:
    machine = _machine(session)
    decision = machine.resolve_entry(section)
    if not decision.allowed:
        raise InvalidTransition(
            f"The {section.value} section is not available right now.",
            redirect=decision.redirect,
        )
    if session.timed_section != section.value:
        raise InvalidTransition(
            f"Open the {section.value} section first.", redirect=section.value
        )
    return machine


def enter_section(session: ExamSession, section: Section | str) -> SectionEntry:
    """Open (or resume) the current section and arm its countdown."""

    target = Section.parse(section)
    ensure_session_active(session)
    with _locked(session):
        machine = _machine(session)
        decision = machine.resolve_entry(target)
        if not decision.allowed:
            raise InvalidTransition(
                f"The {target.value} section is not available right now.",
                redirect=decision.redirect,
            )
        paper = _paper_for(session, target)
        now = datetime.utcnow()
        if machine.begin():
            session.status = SessionStatus.IN_PROGRESS.value
        if session.timed_section != target.value or session.section_deadline is None:
            session.timed_section = target.value
            session.section_started_at = now
            session.section_deadline = now + timedelta(seconds=paper.duration_seconds)
            logger.info(
                "Session %s opened %s for %ss", session.id, target.value, paper.duration_seconds
            )
        media = None
        if target is Section.LISTENING:
            media = _sync_media(session, now)
        _commit(f"open {target.value}")

        remaining = _remaining_seconds(session, now)
        _timers().arm(session.id, target.value, remaining, _on_timer_expired)

    return SectionEntry(
        session=session,
        section=target,
        paper=paper,
        remaining_seconds=remaining,
        answers=stored_answers(session, target),
        media=media,
    )


def stored_answers(session: ExamSession, section: Section) -> dict[int, Any]:
    return {
        answer.item_number: answer.value
        for answer in session.answers
        if answer.section == section.value
    }


def _valid_item_numbers(paper: SectionPaper, section: Section) -> set[int]:
    if section.objective:
        return {question.number for question in paper.questions}
    return {int(task.get("number", 0)) for task in paper.tasks or []}


def _upsert_answer(session: ExamSession, section: Section, item_number: int, value: Any) -> None:
    existing = next(
        (
            answer
            for answer in session.answers
            if answer.section == section.value and answer.item_number == item_number
        ),
        None,
    )
    if existing is None:
        session.answers.append(
            SessionAnswer(section=section.value, item_number=item_number, value=value)
        )
    else:
        existing.value = value
        existing.saved_at = datetime.utcnow()


def _coerce_item_number(raw: Any) -> int:
    try:
        number = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"'{raw}' is not a valid question number.") from exc
    return number


def _store_answers(
    session: ExamSession, section: Section, answers: Mapping[Any, Any]
) -> None:
    if section is Section.LISTENING and not _media_gate(session).interactive:
        raise InvalidTransition(
            "Answers unlock once the recording has finished.", redirect=section.value
        )
    paper = _paper_for(session, section)
    valid = _valid_item_numbers(paper, section)
    for raw_number, value in answers.items():
        number = _coerce_item_number(raw_number)
        if number not in valid:
            raise NotFound(f"Item {number} is not part of the {section.value} paper.")
        _upsert_answer(session, section, number, value)


def save_answer(session: ExamSession, section: Section | str, item_number: int, value: Any) -> None:
    target = Section.parse(section)
    ensure_session_active(session)
    with _locked(session):
        _require_open_section(session, target)
        if session.section_deadline and datetime.utcnow() >= session.section_deadline:
            raise InvalidTransition("Time is up for this section.", redirect=target.value)
        _store_answers(session, target, {item_number: value})
        _commit(f"save {target.value} answer")


def _score_subjective(
    session: ExamSession,
    paper: SectionPaper,
    section: Section,
    answers: dict[int, Any],
    *,
    auto: bool,
) -> tuple[float, dict[str, Any], dict[str, Any]]:
    texts = {number: value for number, value in answers.items() if isinstance(value, str)}
    request = build_request(
        section,
        paper.tasks or [],
        texts,
        metadata={
            "sessionId": session.id,
            "mockTestId": session.mock_test_id,
            "paperId": paper.id,
            "paperTitle": paper.title,
        },
    )
    if not request.responses:
        if not auto:
            raise ValidationFailure("Write a response before submitting this section.")
        # Nothing was written before time ran out; there is nothing to grade.
        return MIN_BAND, {}, {"note": "No response was submitted before time ran out."}
    rubric = evaluate_section(request)
    return rubric.band, rubric.criteria, rubric.feedback_payload()


def submit_section(
    session: ExamSession,
    section: Section | str,
    answers: Mapping[Any, Any] | None = None,
    *,
    auto: bool = False,
) -> SectionSubmission | None:
    """Score and record a section.

    User submits and timer expiry race for the same transition; whichever
    arrives second finds the section recorded. For an auto-submit that is a
    silent no-op (``None``), for a user submit it is an
    :class:`InvalidTransition`.
    """

    target = Section.parse(section)
    with _locked(session):
        machine = _machine(session)
        decision = machine.resolve_entry(target)
        if not decision.allowed:
            if auto:
                return None
            raise InvalidTransition(
                f"The {target.value} section cannot be submitted right now.",
                redirect=decision.redirect,
            )
        if session.timed_section != target.value:
            if auto:
                return None
            raise InvalidTransition(f"Open the {target.value} section first.", redirect=target.value)

        now = datetime.utcnow()
        if not auto and session.section_deadline and now >= session.section_deadline:
            logger.info("Late submit for %s in session %s treated as auto-submit", target.value, session.id)
            auto = True
        if answers and not auto:
            _store_answers(session, target, answers)
            _commit(f"save {target.value} answers")

        paper = _paper_for(session, target)
        collected = stored_answers(session, target)
        started = session.section_started_at or now
        elapsed = min(int((now - started).total_seconds()), paper.duration_seconds)

        if target.objective:
            grade = grade_objective(paper, target, collected)
            correct, total, band, feedback = grade.correct, grade.total, grade.band, grade.feedback
            criteria: dict[str, Any] = {}
        else:
            correct = total = None
            band, criteria, feedback = _score_subjective(
                session, paper, target, collected, auto=auto
            )

        score = SectionScore(
            section=target,
            band=band,
            completed_at=now,
            elapsed_seconds=max(elapsed, 0),
            correct=correct,
            total=total,
            criteria=criteria,
            feedback=feedback,
            answers={str(number): value for number, value in collected.items()},
            auto_submitted=auto,
        )
        machine.record_section(target, score)
        _gateway().record_section(session.id, target, score)
        _timers().cancel(session.id)

        overall = None
        if machine.ready_to_finalize:
            overall = _finalise(session, machine)

        logger.info(
            "Session %s submitted %s (band %.1f, auto=%s)", session.id, target.value, band, auto
        )
        return SectionSubmission(
            section=target,
            score=score,
            next_section=machine.current_section,
            overall_band=overall,
            auto=auto,
        )


def retake_section(session: ExamSession, section: Section | str) -> ExamSession:
    """Discard a recorded section so it can be sat again in this session."""

    target = Section.parse(section)
    ensure_session_active(session)
    with _locked(session):
        if session.timed_section:
            raise InvalidTransition(
                "Submit the section you are working on before retaking another.",
                redirect=session.timed_section,
            )
        machine = _machine(session)
        machine.retake_section(target)
        _gateway().clear_section(session.id, target)
        logger.info("Session %s will retake %s", session.id, target.value)
    return session


def _media_gate(session: ExamSession, now: datetime | None = None) -> OnePlayMediaGate:
    return OnePlayMediaGate.restore(
        session.media_state,
        warning_started_at=session.media_warning_started_at,
        warning_seconds=int(current_app.config.get("AUDIO_WARNING_SECONDS", 2)),
        now=now or datetime.utcnow(),
    )


def _status(gate: OnePlayMediaGate, now: datetime, *, accepted: bool = True) -> MediaStatus:
    return MediaStatus(
        state=gate.state,
        warning_remaining=gate.warning_remaining(now),
        interactive=gate.interactive,
        accepted=accepted,
    )


def _sync_media(session: ExamSession, now: datetime) -> MediaStatus:
    gate = _media_gate(session, now)
    session.media_state = gate.state.value
    session.media_warning_started_at = gate.warning_started_at
    return _status(gate, now)


def audio_status(session: ExamSession) -> MediaStatus:
    now = datetime.utcnow()
    status = _sync_media(session, now)
    _commit("sync audio state")
    return status


def control_audio(session: ExamSession, action: str) -> MediaStatus:
    """Apply a playback request from the listening page."""

    if action not in AUDIO_ACTIONS:
        raise ValidationFailure(f"Unknown audio action '{action}'.")
    ensure_session_active(session)
    with _locked(session):
        _require_open_section(session, Section.LISTENING)
        now = datetime.utcnow()
        gate = _media_gate(session, now)
        if action == "play":
            accepted = gate.request_play(now)
        elif action == "ended":
            accepted = gate.media_ended()
        elif action == "pause":
            accepted = gate.request_pause()
        elif action == "seek":
            accepted = gate.request_seek()
        else:
            accepted = gate.request_replay()
        session.media_state = gate.state.value
        session.media_warning_started_at = gate.warning_started_at
        _commit(f"audio {action}")
        return _status(gate, now, accepted=accepted)


def _cue_card_status(countdown) -> CueCardStatus:
    if countdown is None:
        return CueCardStatus(phase=None, remaining=0, completed=False)
    phase = countdown.current
    return CueCardStatus(
        phase=phase.name if phase else None,
        remaining=countdown.remaining,
        completed=countdown.completed,
    )


def start_cue_card(session: ExamSession) -> CueCardStatus:
    """Begin speaking preparation time, rolling into response time."""

    ensure_session_active(session)
    with _locked(session):
        _require_open_section(session, Section.SPEAKING)
        countdown = _timers().start_cue_card(
            session.id,
            preparation_seconds=int(current_app.config.get("SPEAKING_PREPARATION_SECONDS", 60)),
            response_seconds=int(current_app.config.get("SPEAKING_RESPONSE_SECONDS", 120)),
        )
        return _cue_card_status(countdown)


def cue_card_status(session: ExamSession) -> CueCardStatus:
    return _cue_card_status(_timers().cue_card(session.id))


def session_results(session: ExamSession) -> SessionResults:
    ensure_session_active(session)
    machine = _machine(session)
    if session.status != SessionStatus.COMPLETED.value or session.overall_band is None:
        current = machine.current_section
        raise InvalidTransition(
            "Results are available once all four sections are complete.",
            redirect=current.value if current else None,
        )
    return SessionResults(
        session=session,
        overall_band=session.overall_band,
        descriptor=band_descriptor(session.overall_band),
        sections=dict(machine.state.results),
    )


def section_overview(session: ExamSession) -> dict[str, Any]:
    """Return the status of each section plus the live countdown, if any."""

    machine = _machine(session)
    now = datetime.utcnow()
    sections = []
    for section in SECTION_ORDER:
        result = machine.state.results.get(section)
        sections.append(
            {
                "section": section.value,
                "state": "recorded" if result else "pending",
                "band": result.band if result else None,
                "enterable": machine.can_enter(section),
            }
        )
    current = machine.current_section
    return {
        "currentSection": current.value if current else None,
        "timedSection": session.timed_section,
        "remainingSeconds": _remaining_seconds(session, now) if session.timed_section else None,
        "sections": sections,
    }


def attempt_count(candidate_id: str, mock_test_id: int) -> int:
    return (
        db.session.query(func.count(ExamSession.id))
        .filter(
            ExamSession.candidate_id == candidate_id,
            ExamSession.mock_test_id == mock_test_id,
        )
        .scalar()
        or 0
    )


__all__ = [
    "AUDIO_ACTIONS",
    "CueCardStatus",
    "MediaStatus",
    "SectionEntry",
    "SectionSubmission",
    "SessionResults",
    "SessionStartResult",
    "attempt_count",
    "audio_status",
    "candidate_sessions",
    "control_audio",
    "cue_card_status",
    "enter_section",
    "ensure_session_active",
    "get_mock_test",
    "get_session",
    "latest_session",
    "retake_section",
    "save_answer",
    "section_overview",
    "session_results",
    "start_cue_card",
    "start_session",
    "stored_answers",
    "submit_section",
]
