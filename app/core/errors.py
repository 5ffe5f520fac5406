"""
Typed failures raised by the lifecycle engine and the services around it.

Each class carries the HTTP status it maps to; app.main registers a single
handler that renders {"detail": message, "error": code}.
"""

from __future__ import annotations


class LifecycleError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class Unauthenticated(LifecycleError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(LifecycleError):
    status_code = 403
    code = "forbidden"


class AccountSuspended(Forbidden):
    code = "account_suspended"

    def __init__(self, reason: str | None = None) -> None:
        message = "Your account is suspended"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reason = reason


class NotFound(LifecycleError):
    status_code = 404
    code = "not_found"


class InvalidState(LifecycleError):
    status_code = 409
    code = "invalid_state"


class ValidationFailed(LifecycleError):
    status_code = 400
    code = "validation_error"


class DependencyFailure(LifecycleError):
    status_code = 502
    code = "dependency_failure"
