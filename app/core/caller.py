from __future__ import annotations

from dataclasses import dataclass

from app.models.user import Role, User


@dataclass(frozen=True)
class CallerContext:
    """Who is calling: resolved once per HTTP request and handed to every operation."""

    user_id: int
    role: str
    is_suspended: bool = False
    suspended_reason: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @classmethod
    def from_user(cls, user: User) -> "CallerContext":
        return cls(
            user_id=user.id,
            role=user.role,
            is_suspended=bool(user.is_suspended),
            suspended_reason=user.suspended_reason,
        )
