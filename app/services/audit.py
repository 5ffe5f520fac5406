from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


def best_effort(db: Session, what: str, write: Callable[[], None]) -> bool:
    """
    Run a side-effect write inside a SAVEPOINT.

    A failure rolls back only the savepoint and is logged; the surrounding
    state transition stays in the session and is committed by the caller.
    """
    try:
        with db.begin_nested():
            write()
            db.flush()
        return True
    except SQLAlchemyError:
        logger.warning("%s failed; primary change kept", what, exc_info=True)
        return False


def record_audit(
    db: Session,
    *,
    user_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    changes: dict[str, Any] | None = None,
) -> bool:
    def _write() -> None:
        db.add(
            AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                changes=changes,
            )
        )

    return best_effort(db, f"audit {action} {entity_type}#{entity_id}", _write)
