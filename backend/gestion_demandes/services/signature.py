from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime
from typing import Any


def generate_signature(
    *,
    user_id: uuid.UUID,
    action: str,
    timestamp: datetime,
    data: dict[str, Any] | None = None,
) -> str:
    """Audit marker for a workflow step; it proves nothing cryptographically."""
    payload = json.dumps(data or {}, sort_keys=True, default=str)
    raw = f"{user_id}:{action}:{timestamp.isoformat()}:{payload}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
