from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    nom: str | None = None
    prenom: str | None = None
    role: str
    is_admin: bool
    active: bool
    projets: list[str] = []
