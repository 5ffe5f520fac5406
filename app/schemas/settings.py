from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel


class SettingsUpdateIn(BaseModel):
    values: Dict[str, Any]
    # new keys land in "general" when omitted
    category: Optional[str] = None
