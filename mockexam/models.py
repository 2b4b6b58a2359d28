from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Enum, UniqueConstraint

from . import db

SECTION_NAMES = ("listening", "reading", "writing", "speaking")
QUESTION_TYPES = (
    "single-choice",
    "multi-choice-set",
    "fill-blank",
    "true-false-not-given",
    "matching",
    "form-field",
)
SESSION_STATUSES = ("not_started", "in_progress", "completed")
MEDIA_STATES = ("unplayed", "warning", "playing", "finished")

DEFAULT_SECTION_MINUTES = {
    "listening": 30,
    "reading": 60,
    "writing": 60,
    "speaking": 15,
}


def _new_session_id() -> str:
    return uuid4().hex


class MockTest(db.Model):
    __tablename__ = "mock_tests"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(80), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    is_premium = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    papers = db.relationship(
        "SectionPaper",
        back_populates="mock_test",
        cascade="all, delete-orphan",
        order_by="SectionPaper.id",
    )
    sessions = db.relationship(
        "ExamSession", back_populates="mock_test", cascade="all, delete-orphan"
    )

    def paper_for(self, section: str) -> "SectionPaper | None":
        return next((paper for paper in self.papers if paper.section == section), None)


class SectionPaper(db.Model):
    __tablename__ = "section_papers"

    id = db.Column(db.Integer, primary_key=True)
    mock_test_id = db.Column(db.Integer, db.ForeignKey("mock_tests.id"))
    section = db.Column(Enum(*SECTION_NAMES, name="section_name"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    difficulty = db.Column(db.String(20), nullable=False, default="medium")
    duration_minutes = db.Column(db.Integer, nullable=False)
    audio_url = db.Column(db.String(500))
    passage = db.Column(db.Text)
    # Writing/speaking prompts: [{"number": 1, "prompt": "...", "minWords": 150}, ...]
    tasks = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    mock_test = db.relationship("MockTest", back_populates="papers")
    questions = db.relationship(
        "Question",
        back_populates="paper",
        cascade="all, delete-orphan",
        order_by="Question.number",
    )

    __table_args__ = (
        UniqueConstraint("mock_test_id", "section", name="uq_mock_test_section"),
    )

    @property
    def is_practice(self) -> bool:
        return self.mock_test_id is None

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    paper_id = db.Column(db.Integer, db.ForeignKey("section_papers.id"), nullable=False)
    number = db.Column(db.Integer, nullable=False)
    question_type = db.Column(Enum(*QUESTION_TYPES, name="question_type"), nullable=False)
    prompt = db.Column(db.Text, nullable=False, default="")
    group_label = db.Column(db.String(120))
    options = db.Column(db.JSON, nullable=False, default=list)
    # A string (optionally slash-delimited), an option index, or a list.
    answer_key = db.Column(db.JSON, nullable=False)

    paper = db.relationship("SectionPaper", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("paper_id", "number", name="uq_paper_question_number"),
    )


class ExamSession(db.Model):
    __tablename__ = "exam_sessions"

    id = db.Column(db.String(36), primary_key=True, default=_new_session_id)
    candidate_id = db.Column(db.String(120), nullable=False, index=True)
    mock_test_id = db.Column(db.Integer, db.ForeignKey("mock_tests.id"), nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        Enum(*SESSION_STATUSES, name="exam_session_status"),
        nullable=False,
        default="not_started",
    )
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    overall_band = db.Column(db.Float)
    # Timer state for the section currently being worked on.
    timed_section = db.Column(Enum(*SECTION_NAMES, name="timed_section_name"))
    section_started_at = db.Column(db.DateTime)
    section_deadline = db.Column(db.DateTime)
    media_state = db.Column(
        Enum(*MEDIA_STATES, name="media_state"), nullable=False, default="unplayed"
    )
    media_warning_started_at = db.Column(db.DateTime)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    mock_test = db.relationship("MockTest", back_populates="sessions")
    results = db.relationship(
        "SectionResult", back_populates="session", cascade="all, delete-orphan"
    )
    answers = db.relationship(
        "SessionAnswer", back_populates="session", cascade="all, delete-orphan"
    )

    def result_for(self, section: str) -> "SectionResult | None":
        return next((result for result in self.results if result.section == section), None)


class SectionResult(db.Model):
    __tablename__ = "section_results"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey("exam_sessions.id"), nullable=False)
    section = db.Column(Enum(*SECTION_NAMES, name="result_section_name"), nullable=False)
    band = db.Column(db.Float, nullable=False)
    raw_correct = db.Column(db.Integer)
    raw_total = db.Column(db.Integer)
    criteria = db.Column(db.JSON, nullable=False, default=dict)
    feedback = db.Column(db.JSON, nullable=False, default=dict)
    answers = db.Column(db.JSON, nullable=False, default=dict)
    elapsed_seconds = db.Column(db.Integer, nullable=False, default=0)
    auto_submitted = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    session = db.relationship("ExamSession", back_populates="results")

    __table_args__ = (
        UniqueConstraint("session_id", "section", name="uq_session_section_result"),
    )


class SessionAnswer(db.Model):
    __tablename__ = "session_answers"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey("exam_sessions.id"), nullable=False)
    section = db.Column(Enum(*SECTION_NAMES, name="answer_section_name"), nullable=False)
    # Question number for objective sections, task number for writing/speaking.
    item_number = db.Column(db.Integer, nullable=False)
    value = db.Column(db.JSON)
    saved_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    session = db.relationship("ExamSession", back_populates="answers")

    __table_args__ = (
        UniqueConstraint("session_id", "section", "item_number", name="uq_session_answer_item"),
    )


class PracticeAttempt(db.Model):
    __tablename__ = "practice_attempts"

    id = db.Column(db.Integer, primary_key=True)
    candidate_id = db.Column(db.String(120), nullable=False, index=True)
    paper_id = db.Column(db.Integer, db.ForeignKey("section_papers.id"), nullable=False)
    section = db.Column(Enum(*SECTION_NAMES, name="practice_section_name"), nullable=False)
    band = db.Column(db.Float, nullable=False)
    raw_correct = db.Column(db.Integer)
    raw_total = db.Column(db.Integer)
    criteria = db.Column(db.JSON, nullable=False, default=dict)
    feedback = db.Column(db.JSON, nullable=False, default=dict)
    answers = db.Column(db.JSON, nullable=False, default=dict)
    time_spent_seconds = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    paper = db.relationship("SectionPaper")


__all__ = [
    "DEFAULT_SECTION_MINUTES",
    "ExamSession",
    "MockTest",
    "PracticeAttempt",
    "Question",
    "SECTION_NAMES",
    "SectionPaper",
    "SectionResult",
    "SessionAnswer",
]
