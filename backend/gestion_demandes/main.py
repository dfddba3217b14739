from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gestion_demandes.api.router import router
from gestion_demandes.core.config import settings
from gestion_demandes.core.rate_limit import LoginAttemptLimiter

logging.basicConfig(level=settings.log_level.upper())

app = FastAPI(title="Gestion des demandes de chantier API")
logger = logging.getLogger("chantier_api")

app.state.login_limiter = LoginAttemptLimiter(
    max_attempts=settings.login_max_attempts,
    lockout=timedelta(minutes=settings.login_lockout_minutes),
)

default_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
origins = default_origins + settings.parsed_cors_origins()
origins = list(dict.fromkeys(origins))
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(router)


@app.get("/")
async def root() -> dict:
    return {"name": "gestion-demandes-api", "version": "v1"}
