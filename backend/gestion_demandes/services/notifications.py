from __future__ import annotations

import logging
import uuid
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.models.notification import Notification
from gestion_demandes.models.projet import projet_membres
from gestion_demandes.models.user import User
from gestion_demandes.workflow.enums import Role
from gestion_demandes.workflow.errors import NotFoundError


logger = logging.getLogger("chantier_api.notifications")


async def users_with_role_in_project(
    db: AsyncSession,
    *,
    role: Role | str,
    projet_id: uuid.UUID,
) -> list[User]:
    res = await db.execute(
        select(User)
        .join(projet_membres, projet_membres.c.user_id == User.id)
        .where(projet_membres.c.projet_id == projet_id)
        .where(User.role == str(role))
        .where(User.active.is_(True))
    )
    return list(res.scalars().all())


async def notify_users(
    db: AsyncSession,
    users: Iterable[User],
    *,
    titre: str,
    message: str,
    demande_id: uuid.UUID | None = None,
    projet_id: uuid.UUID | None = None,
    exclude_user_id: uuid.UUID | None = None,
) -> list[User]:
    """Adds one inbox row per recipient; the caller owns the commit."""
    notified: list[User] = []
    seen: set[uuid.UUID] = set()
    for user in users:
        if user.id == exclude_user_id or user.id in seen:
            continue
        seen.add(user.id)
        db.add(
            Notification(
                user_id=user.id,
                titre=titre,
                message=message,
                demande_id=demande_id,
                projet_id=projet_id,
            )
        )
        notified.append(user)
    if notified:
        await db.flush()
    logger.info("notifications queued titre=%s recipients=%s", titre, len(notified))
    return notified


async def notify_role_in_project(
    db: AsyncSession,
    *,
    role: Role | str,
    projet_id: uuid.UUID,
    titre: str,
    message: str,
    demande_id: uuid.UUID | None = None,
    exclude_user_id: uuid.UUID | None = None,
) -> list[User]:
    users = await users_with_role_in_project(db, role=role, projet_id=projet_id)
    if not users:
        logger.warning("No %s member in project %s to notify", role, projet_id)
    return await notify_users(
        db,
        users,
        titre=titre,
        message=message,
        demande_id=demande_id,
        projet_id=projet_id,
        exclude_user_id=exclude_user_id,
    )


async def list_notifications(
    db: AsyncSession,
    *,
    user: User,
    non_lues: bool = False,
    limit: int = 100,
) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user.id)
    if non_lues:
        query = query.where(Notification.lu.is_(False))
    query = query.order_by(Notification.created_at.desc()).limit(limit)
    res = await db.execute(query)
    return list(res.scalars().all())


async def mark_as_read(db: AsyncSession, *, notification_id: uuid.UUID, user: User) -> Notification:
    res = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user.id)
    )
    notification = res.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    notification.lu = True
    await db.commit()
    await db.refresh(notification)
    return notification
