from fastapi import APIRouter

from gestion_demandes.api.v1.endpoints import (
    auth,
    demandes,
    notifications,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(demandes.router, prefix="/demandes", tags=["demandes"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
