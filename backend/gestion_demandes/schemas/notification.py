from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: str
    titre: str
    message: str
    lu: bool
    demande_id: str | None = None
    projet_id: str | None = None
    created_at: datetime
