from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.api.deps import get_current_user, parse_uuid
from gestion_demandes.api.errors import http_error
from gestion_demandes.db.session import get_db
from gestion_demandes.models.notification import Notification
from gestion_demandes.models.user import User
from gestion_demandes.schemas.notification import NotificationOut
from gestion_demandes.services import notifications as notification_service
from gestion_demandes.workflow.errors import WorkflowError

router = APIRouter()


def _notification_out(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "titre": notification.titre,
        "message": notification.message,
        "lu": notification.lu,
        "demande_id": str(notification.demande_id) if notification.demande_id else None,
        "projet_id": str(notification.projet_id) if notification.projet_id else None,
        "created_at": notification.created_at,
    }


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    non_lues: bool = Query(default=False),
    limit: int = Query(default=100, le=500),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notifications = await notification_service.list_notifications(db, user=user, non_lues=non_lues, limit=limit)
    return [_notification_out(n) for n in notifications]


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    nid = parse_uuid(notification_id, "notification_id")
    try:
        notification = await notification_service.mark_as_read(db, notification_id=nid, user=user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _notification_out(notification)
