from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.errors import Forbidden, ValidationFailed
from app.models.setting import SystemSetting
from app.services.audit import record_audit
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

FILES_CATEGORY = "files"


def _positive_int(value: str) -> None:
    if not value.isdigit() or int(value) <= 0:
        raise ValueError("must be a positive integer")


def _extension_list(value: str) -> None:
    if not [ext for ext in value.split(",") if ext.strip()]:
        raise ValueError("must list at least one extension")


# keys whose values other code parses
_VALIDATORS = {
    "max_file_size_mb": _positive_int,
    "allowed_file_types": _extension_list,
}


def read_settings(db: Session, category: str | None = None) -> dict[str, str]:
    q = select(SystemSetting).order_by(SystemSetting.key)
    if category:
        q = q.where(SystemSetting.category == category)
    return {s.key: s.value for s in db.scalars(q)}


def _as_text(key: str, value: Any) -> str:
    if isinstance(value, (list, tuple)):
        text = ",".join(str(v).strip() for v in value)
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value).strip()
    check = _VALIDATORS.get(key)
    if check is not None:
        try:
            check(text)
        except ValueError as e:
            raise ValidationFailed(f"{key} {e}")
    return text


def update_settings(
    db: Session,
    caller: CallerContext,
    values: dict[str, Any],
    category: str | None = None,
) -> dict[str, str]:
    """Upsert key/value pairs; keys keep their category unless one is given."""
    if not caller.is_admin:
        raise Forbidden("Admin role required")
    if not values:
        raise ValidationFailed("No settings to update")

    cleaned: dict[str, str] = {}
    for key, value in values.items():
        key = (key or "").strip()
        if not key or len(key) > 100:
            raise ValidationFailed(f"Invalid setting key: {key!r}")
        if value is None:
            raise ValidationFailed(f"Setting {key} needs a value")
        cleaned[key] = _as_text(key, value)

    with unit_of_work(db, "update_settings"):
        for key, value in cleaned.items():
            row = db.scalar(select(SystemSetting).where(SystemSetting.key == key))
            if row is None:
                db.add(
                    SystemSetting(key=key, value=value, category=category or "general")
                )
            else:
                row.value = value
                if category:
                    row.category = category
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="UPDATE_SETTINGS",
            entity_type="SETTINGS",
            entity_id=0,
            changes={"keys": sorted(cleaned), "category": category},
        )

    logger.info("Settings %s updated by admin#%s", sorted(cleaned), caller.user_id)
    return read_settings(db)
