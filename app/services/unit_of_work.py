from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DependencyFailure, LifecycleError
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(
    db: Session, op: str, notifier: Notifier | None = None
) -> Iterator[None]:
    """Commit on success, roll back on any failure.

    Domain errors propagate unchanged; persistence errors surface as
    DependencyFailure. Queued notifications go out only after the commit.
    """
    try:
        yield
        db.commit()
    except LifecycleError as e:
        db.rollback()
        if notifier is not None:
            notifier.discard()
        logger.info("%s rejected: %s", op, e.message)
        raise
    except SQLAlchemyError as e:
        db.rollback()
        if notifier is not None:
            notifier.discard()
        logger.error("%s failed in persistence", op, exc_info=True)
        raise DependencyFailure("Persistence failure, please retry") from e
    if notifier is not None:
        notifier.dispatch()
