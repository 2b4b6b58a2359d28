"""Per-session state machine for the four-section mock test."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .band_scores import composite

logger = logging.getLogger(__name__)


class Section(str, Enum):
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    SPEAKING = "speaking"

    @property
    def objective(self) -> bool:
        return self in OBJECTIVE_SECTIONS

    @classmethod
    def parse(cls, value: str | "Section") -> "Section":
        if isinstance(value, Section):
            return value
        return cls((value or "").strip().lower())


SECTION_ORDER: tuple[Section, ...] = (
    Section.LISTENING,
    Section.READING,
    Section.WRITING,
    Section.SPEAKING,
)
OBJECTIVE_SECTIONS = frozenset({Section.LISTENING, Section.READING})


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class InvalidTransition(RuntimeError):
    """Raised when an action does not fit the session's current state.

    ``redirect`` names where the candidate belongs instead: a section name,
    ``"results"`` once the session is complete, or ``None``.
    """

    def __init__(self, message: str, *, redirect: str | None = None) -> None:
        super().__init__(message)
        self.redirect = redirect


@dataclass(slots=True)
class SectionScore:
    """The current recorded outcome of one section."""

    section: Section
    band: float
    completed_at: datetime
    elapsed_seconds: int = 0
    correct: int | None = None
    total: int | None = None
    criteria: dict[str, Any] = field(default_factory=dict)
    feedback: dict[str, Any] = field(default_factory=dict)
    answers: dict[str, Any] = field(default_factory=dict)
    auto_submitted: bool = False


@dataclass(slots=True)
class ExamSessionState:
    session_id: str
    status: SessionStatus = SessionStatus.NOT_STARTED
    results: dict[Section, SectionScore] = field(default_factory=dict)
    overall_band: float | None = None


@dataclass(frozen=True)
class EntryDecision:
    allowed: bool
    section: Section
    redirect: str | None = None


class ExamSessionStateMachine:
    """Decide which section a candidate may work on and fold in results.

    The machine holds only the aggregate it was built from; persistence is
    the caller's concern.
    """

    def __init__(self, state: ExamSessionState) -> None:
        self.state = state

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def current_section(self) -> Section | None:
        if self.state.status is SessionStatus.COMPLETED:
            return None
        for section in SECTION_ORDER:
            if section not in self.state.results:
                return section
        return None

    @property
    def ready_to_finalize(self) -> bool:
        return (
            self.state.status is not SessionStatus.COMPLETED
            and all(section in self.state.results for section in SECTION_ORDER)
        )

    def is_recorded(self, section: Section | str) -> bool:
        return Section.parse(section) in self.state.results

    def _redirect_target(self) -> str | None:
        if self.state.status is SessionStatus.COMPLETED:
            return "results"
        current = self.current_section
        return current.value if current else None

    def can_enter(self, section: Section | str) -> bool:
        return self.resolve_entry(section).allowed

    def resolve_entry(self, section: Section | str) -> EntryDecision:
        target = Section.parse(section)
        if self.state.status is SessionStatus.COMPLETED:
            return EntryDecision(False, target, redirect="results")
        current = self.current_section
        if current is None or target is not current:
            return EntryDecision(False, target, redirect=self._redirect_target())
        return EntryDecision(True, target)

    def begin(self) -> bool:
        """Move a fresh session into progress; return whether it changed."""

        if self.state.status is SessionStatus.NOT_STARTED:
            self.state.status = SessionStatus.IN_PROGRESS
            return True
        return False

    def record_section(self, section: Section | str, result: SectionScore) -> None:
        target = Section.parse(section)
        if result.section is not target:
            raise ValueError("Result does not belong to the section being recorded.")
        if self.state.status is SessionStatus.COMPLETED:
            raise InvalidTransition("This mock test is already complete.", redirect="results")
        if target in self.state.results:
            raise InvalidTransition(
                f"The {target.value} section has already been recorded.",
                redirect=self._redirect_target(),
            )
        if target is not self.current_section:
            raise InvalidTransition(
                f"The {target.value} section is not the current section.",
                redirect=self._redirect_target(),
            )
        self.begin()
        self.state.results[target] = result
        logger.info(
            "Session %s recorded %s at band %.1f", self.session_id, target.value, result.band
        )

    def retake_section(self, section: Section | str) -> SectionScore:
        target = Section.parse(section)
        if self.state.status is not SessionStatus.IN_PROGRESS:
            raise InvalidTransition(
                "Sections can only be retaken while the mock test is in progress.",
                redirect=self._redirect_target(),
            )
        previous = self.state.results.pop(target, None)
        if previous is None:
            raise InvalidTransition(
                f"The {target.value} section has not been recorded yet.",
                redirect=self._redirect_target(),
            )
        logger.info("Session %s reset %s for a retake", self.session_id, target.value)
        return previous

    def finalize(self) -> float:
        if self.state.status is SessionStatus.COMPLETED:
            raise InvalidTransition("This mock test is already complete.", redirect="results")
        if not self.ready_to_finalize:
            raise InvalidTransition(
                "All four sections must be recorded before finishing.",
                redirect=self._redirect_target(),
            )
        overall = composite(
            {section.value: self.state.results[section].band for section in SECTION_ORDER}
        )
        self.state.overall_band = overall
        self.state.status = SessionStatus.COMPLETED
        logger.info("Session %s completed with overall band %.1f", self.session_id, overall)
        return overall


__all__ = [
    "EntryDecision",
    "ExamSessionState",
    "ExamSessionStateMachine",
    "InvalidTransition",
    "OBJECTIVE_SECTIONS",
    "SECTION_ORDER",
    "Section",
    "SectionScore",
    "SessionStatus",
]
