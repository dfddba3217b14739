from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.api.deps import get_current_user, get_login_limiter
from gestion_demandes.core.rate_limit import AttemptLimiter
from gestion_demandes.core.security import create_access_token, verify_password
from gestion_demandes.db.session import get_db
from gestion_demandes.models.projet import projet_membres
from gestion_demandes.models.user import User
from gestion_demandes.schemas.auth import LoginRequest, MeResponse, TokenResponse

router = APIRouter()
logger = logging.getLogger("chantier_api.auth")


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    limiter: AttemptLimiter = Depends(get_login_limiter),
) -> TokenResponse:
    key = payload.email.lower()
    if not limiter.check(key):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Trop de tentatives de connexion. Réessayez plus tard.",
        )

    res = await db.execute(select(User).where(User.email == payload.email))
    user = res.scalar_one_or_none()
    if user is None or not user.active or not user.hashed_password:
        limiter.record(key)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not verify_password(payload.password, user.hashed_password):
        limiter.record(key)
        logger.info("login failed email=%s", key)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    limiter.reset(key)
    access_token, access_exp = create_access_token(subject=str(user.id), role=user.role)
    return TokenResponse(
        access_token=access_token,
        expires_in=int((access_exp - datetime.now(timezone.utc)).total_seconds()),
        role=user.role,
    )


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    res = await db.execute(select(projet_membres.c.projet_id).where(projet_membres.c.user_id == user.id))
    return MeResponse(
        id=str(user.id),
        email=user.email,
        nom=user.nom,
        prenom=user.prenom,
        role=user.role,
        is_admin=user.is_admin,
        active=user.active,
        projets=[str(pid) for pid in res.scalars().all()],
    )
