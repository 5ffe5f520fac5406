"""
Attachments a student adds to their own request (briefs, rubrics, drafts).

Size and extension limits come from the "files" settings category and fall
back to the environment defaults in Settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath

from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.config import settings
from app.core.errors import AccountSuspended, Forbidden, NotFound, ValidationFailed
from app.models.request import Request
from app.models.request_file import RequestFile
from app.services.audit import record_audit
from app.services.system_settings import FILES_CATEGORY, read_settings
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass(frozen=True)
class FileLimits:
    max_size_mb: int
    allowed_types: frozenset[str]

    def check(self, file_name: str, size: int) -> None:
        if size <= 0:
            raise ValidationFailed("Uploaded file is empty")
        if size > self.max_size_mb * _MB:
            raise ValidationFailed(
                f"File size exceeds maximum allowed size of {self.max_size_mb}MB"
            )
        ext = PurePosixPath(file_name or "").suffix.lower().lstrip(".")
        if ext not in self.allowed_types:
            allowed = ", ".join(sorted(self.allowed_types))
            raise ValidationFailed(f"File type not allowed. Allowed types: {allowed}")


def file_limits(db: Session) -> FileLimits:
    stored = read_settings(db, FILES_CATEGORY)

    max_mb = settings.max_file_size_mb
    raw = stored.get("max_file_size_mb", "")
    if raw.isdigit() and int(raw) > 0:
        max_mb = int(raw)

    types = settings.allowed_file_types
    if stored.get("allowed_file_types"):
        types = stored["allowed_file_types"].split(",")
    allowed = frozenset(t.strip().lower().lstrip(".") for t in types if t.strip())
    return FileLimits(max_size_mb=max_mb, allowed_types=allowed)


def request_for_files(db: Session, caller: CallerContext, request_id: int) -> Request:
    req = db.get(Request, request_id)
    if not req:
        raise NotFound("Request not found")
    if not caller.is_admin and req.user_id != caller.user_id:
        raise Forbidden("You do not own this request")
    return req


def list_files(db: Session, caller: CallerContext, request_id: int) -> list[RequestFile]:
    req = request_for_files(db, caller, request_id)
    return list(req.files)


def attach_file(
    db: Session,
    caller: CallerContext,
    request_id: int,
    *,
    file_name: str,
    file_url: str,
    file_type: str | None,
    file_size: int,
) -> RequestFile:
    if caller.is_suspended:
        raise AccountSuspended(caller.suspended_reason)
    req = request_for_files(db, caller, request_id)
    file_limits(db).check(file_name, file_size)
    if not (file_url or "").strip():
        raise ValidationFailed("File location is required")

    with unit_of_work(db, "attach_file"):
        row = RequestFile(
            request_id=req.id,
            user_id=caller.user_id,
            file_name=file_name,
            file_url=file_url.strip(),
            file_type=file_type or "application/octet-stream",
            file_size=file_size,
        )
        db.add(row)
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="UPLOAD_FILE",
            entity_type="FILE",
            entity_id=row.id,
            changes={"file_name": file_name, "request_id": req.id},
        )

    logger.info("File #%s attached to request #%s", row.id, req.id)
    return row
