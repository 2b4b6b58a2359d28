"""Discriminated results returned across the service/presentation boundary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from .exam_state import InvalidTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceError(RuntimeError):
    """Base class for failures the presentation layer reports to candidates."""

    kind = "error"
    retryable = False


class EvaluationOracleFailure(ServiceError):
    """Raised when the writing/speaking evaluator cannot produce a rubric."""

    kind = "evaluation_oracle_failure"
    retryable = True


class PersistenceFailure(ServiceError):
    """Raised when session results cannot be read or written."""

    kind = "persistence_failure"
    retryable = True


class NotFound(ServiceError):
    kind = "not_found"


class SessionConflict(ServiceError):
    """Raised when a candidate tries to run two unfinished mock tests."""

    kind = "session_conflict"


class PremiumRequired(ServiceError):
    """Raised when a candidate without a premium tier opens a premium mock test."""

    kind = "premium_required"


class ValidationFailure(ServiceError):
    kind = "validation_failure"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Failure:
    kind: str
    message: str
    retryable: bool = False
    redirect: str | None = None
    ok: bool = False

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": False,
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.redirect is not None:
            payload["redirect"] = self.redirect
        return payload


Outcome = Union[Ok[T], Failure]


def failure_from_exception(exc: Exception) -> Failure:
    if isinstance(exc, InvalidTransition):
        return Failure("invalid_transition", str(exc), redirect=exc.redirect)
    if isinstance(exc, ServiceError):
        return Failure(exc.kind, str(exc), retryable=exc.retryable)
    raise exc


def capture(func: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    """Run a service call and fold known failures into a :class:`Failure`."""

    try:
        return Ok(func(*args, **kwargs))
    except (InvalidTransition, ServiceError) as exc:
        failure = failure_from_exception(exc)
        logger.info("%s failed: %s (%s)", getattr(func, "__name__", func), failure.message, failure.kind)
        return failure


__all__ = [
    "EvaluationOracleFailure",
    "Failure",
    "NotFound",
    "Ok",
    "Outcome",
    "PersistenceFailure",
    "PremiumRequired",
    "ServiceError",
    "SessionConflict",
    "ValidationFailure",
    "capture",
    "failure_from_exception",
]
