from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, get_notifier, require_admin
from app.models.payment import Payment
from app.models.request import Request
from app.models.ticket import Ticket
from app.models.user import User
from app.schemas.common import Pagination
from app.schemas.users import SuspendIn, UserDetailOut, UserListOut, UserOut
from app.services import users as user_service
from app.services.notifier import Notifier

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=UserListOut)
def list_users(
    role: Optional[str] = None,
    search: Optional[str] = None,
    suspended: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    q = db.query(User)
    if role and role != "all":
        q = q.filter(User.role == role)
    if suspended is not None:
        q = q.filter(User.is_suspended.is_(suspended))
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(User.name.ilike(term), User.email.ilike(term)))

    total = q.count()
    items = (
        q.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "users": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.get("/{user_id}", response_model=UserDetailOut)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    user = user_service.get_user(db, caller, user_id)

    def _count(model) -> int:
        return int(
            db.scalar(select(func.count(model.id)).where(model.user_id == user.id))
            or 0
        )

    return UserDetailOut(
        **UserOut.model_validate(user).model_dump(),
        request_count=_count(Request),
        payment_count=_count(Payment),
        ticket_count=_count(Ticket),
    )


@router.put("/{user_id}/suspend", response_model=UserOut)
def suspend_user(
    user_id: int,
    data: SuspendIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
    notifier: Notifier = Depends(get_notifier),
):
    return user_service.set_suspension(
        db,
        caller,
        user_id,
        is_suspended=data.is_suspended,
        reason=data.reason,
        notifier=notifier,
    )
