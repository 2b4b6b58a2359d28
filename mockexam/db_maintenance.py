"""Database maintenance helpers run at application start-up."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import db


def ensure_core_tables(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Ensure the base SQLAlchemy models are materialised for new databases."""

    logger = logger or logging.getLogger(__name__)
    try:
        db.create_all()
    except SQLAlchemyError:
        logger.exception("Failed to create core tables during maintenance")
        raise


def repair_unfinalised_sessions(engine: Engine, logger: logging.Logger | None = None) -> int:
    """Complete sessions whose four sections were recorded but never finalised.

    This happens when the process stops between writing the last section
    result and writing the composite band. Returns the number of repaired
    sessions.
    """

    inspector = inspect(engine)
    tables: Iterable[str] = inspector.get_table_names()
    if "exam_sessions" not in tables or "section_results" not in tables:
        return 0

    logger = logger or logging.getLogger(__name__)

    from .models import ExamSession
    from .services.exam_state import ExamSessionStateMachine, SessionStatus
    from .services.result_gateway import state_from_row

    repaired = 0
    try:
        with Session(bind=engine) as session:
            pending = (
                session.query(ExamSession)
                .filter(ExamSession.status != SessionStatus.COMPLETED.value)
                .all()
            )
            for row in pending:
                machine = ExamSessionStateMachine(state_from_row(row))
                if not machine.ready_to_finalize:
                    continue
                row.overall_band = machine.finalize()
                row.status = SessionStatus.COMPLETED.value
                row.completed_at = row.completed_at or datetime.utcnow()
                row.timed_section = None
                row.section_started_at = None
                row.section_deadline = None
                repaired += 1
                logger.warning(
                    "Finalised session %s left incomplete after its last section", row.id
                )
            session.commit()
    except SQLAlchemyError:
        logger.exception("Failed to repair unfinalised exam sessions during maintenance")
        raise
    return repaired


def ensure_database_schema(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Run all lightweight schema checks and repairs."""

    ensure_core_tables(engine, logger)
    repair_unfinalised_sessions(engine, logger)


__all__ = ["ensure_core_tables", "ensure_database_schema", "repair_unfinalised_sessions"]
