from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.audit import Notification, NotificationType
from app.models.user import Role, User
from app.services.audit import best_effort

logger = logging.getLogger(__name__)


@dataclass
class Notifier:
    """
    In-app notifications plus an optional hand-off to the external
    email/push service.

    Rows are written in the caller's transaction (best effort). Outbound
    messages wait in the outbox until dispatch(), which the caller runs only
    after its commit succeeded, so nothing is announced for a rolled-back change.
    """

    webhook_url: str | None = None
    timeout_s: float = 5.0
    outbox: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_settings(cls) -> "Notifier":
        return cls(
            webhook_url=settings.notifier_webhook_url,
            timeout_s=settings.notifier_timeout_s,
        )

    def notify(
        self,
        db: Session,
        *,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        link: str | None = None,
    ) -> None:
        def _write() -> None:
            db.add(
                Notification(
                    user_id=user_id,
                    type=type.value,
                    title=title,
                    message=message,
                    link=link,
                )
            )

        if best_effort(db, f"notification {type.value} to user#{user_id}", _write):
            self.outbox.append(
                {
                    "user_id": user_id,
                    "type": type.value,
                    "title": title,
                    "message": message,
                    "link": link,
                }
            )

    def notify_admins(
        self,
        db: Session,
        *,
        type: NotificationType,
        title: str,
        message: str,
        link: str | None = None,
    ) -> None:
        admin_ids = db.scalars(
            select(User.id).where(User.role == Role.ADMIN.value).order_by(User.id)
        ).all()
        for admin_id in admin_ids:
            self.notify(
                db, user_id=admin_id, type=type, title=title, message=message, link=link
            )

    def discard(self) -> None:
        self.outbox.clear()

    def dispatch(self) -> None:
        pending, self.outbox = self.outbox, []
        if not self.webhook_url or not pending:
            return

        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                for item in pending:
                    r = client.post(self.webhook_url, json=item)
                    if r.status_code >= 400:
                        logger.warning(
                            "Notifier webhook answered %s for %s to user#%s",
                            r.status_code,
                            item["type"],
                            item["user_id"],
                        )
        except httpx.HTTPError:
            logger.error(
                "Notifier webhook unreachable; %d message(s) not handed off",
                len(pending),
                exc_info=True,
            )
