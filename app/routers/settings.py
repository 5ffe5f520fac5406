from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_db, require_admin
from app.schemas.settings import SettingsUpdateIn
from app.services import system_settings

router = APIRouter(prefix="/settings", tags=["settings"])


# public: the site reads display settings before anyone logs in
@router.get("", response_model=Dict[str, str])
def read_settings(category: Optional[str] = None, db: Session = Depends(get_db)):
    return system_settings.read_settings(db, category)


@router.put("", response_model=Dict[str, str])
def update_settings(
    data: SettingsUpdateIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    return system_settings.update_settings(db, caller, data.values, data.category)
