from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.models.audit import NotificationType
from app.models.user import User
from app.services.audit import record_audit
from app.services.notifier import Notifier
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


def get_user(db: Session, caller: CallerContext, user_id: int) -> User:
    if not caller.is_admin and caller.user_id != user_id:
        raise Forbidden("You can only view your own profile")
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def set_suspension(
    db: Session,
    caller: CallerContext,
    user_id: int,
    *,
    is_suspended: bool,
    reason: str | None = None,
    notifier: Notifier | None = None,
) -> User:
    if not caller.is_admin:
        raise Forbidden("Admin role required")
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if user.is_admin:
        raise ValidationFailed("Admin accounts cannot be suspended")

    reason = (reason or "").strip() or None
    notifier = notifier or Notifier()
    with unit_of_work(db, "set_suspension", notifier):
        user.is_suspended = is_suspended
        user.suspended_reason = reason if is_suspended else None
        user.suspended_at = datetime.now(timezone.utc) if is_suspended else None
        db.flush()

        record_audit(
            db,
            user_id=caller.user_id,
            action="SUSPEND_USER" if is_suspended else "UNSUSPEND_USER",
            entity_type="USER",
            entity_id=user.id,
            changes={"is_suspended": is_suspended, "reason": reason},
        )
        if is_suspended:
            message = "Your account has been suspended."
            if reason:
                message = f"{message} Reason: {reason}"
        else:
            message = "Your account has been reinstated."
        notifier.notify(
            db,
            user_id=user.id,
            type=NotificationType.ACCOUNT_UPDATED,
            title="Account Status Changed",
            message=message,
        )

    logger.info(
        "User #%s %s by admin#%s",
        user.id,
        "suspended" if is_suspended else "reinstated",
        caller.user_id,
    )
    return user
