import os
import sys
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[2]
BACKEND_ROOT = PROJECT_ROOT / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from gestion_demandes.db.all_models import metadata  # noqa: E402
from gestion_demandes.models.projet import Projet, projet_membres  # noqa: E402
from gestion_demandes.models.user import User  # noqa: E402
from gestion_demandes.workflow.enums import Role  # noqa: E402


@pytest.fixture(scope="session")
def test_database_url() -> str:
    # An in-memory SQLite database is used unless a real server is configured.
    return os.environ.get("TEST_DATABASE_URL") or "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def async_engine(test_database_url: str) -> AsyncEngine:
    if test_database_url.startswith("sqlite"):
        engine = create_async_engine(
            test_database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(test_database_url, pool_pre_ping=True)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine: AsyncEngine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db_session(async_session):
    session: AsyncSession = async_session()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture
async def projet(db_session) -> Projet:
    projet = Projet(nom="Chantier Test")
    db_session.add(projet)
    await db_session.commit()
    return projet


@pytest.fixture
def make_user(db_session, projet):
    async def _make(role, *, member: bool = True, is_admin: bool = False, email: str | None = None) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            nom=str(role),
            prenom="Test",
            role=str(role),
            is_admin=is_admin,
            active=True,
        )
        db_session.add(user)
        await db_session.flush()
        if member:
            await db_session.execute(insert(projet_membres).values(projet_id=projet.id, user_id=user.id))
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def team(make_user) -> dict[Role, User]:
    """One project member per role, plus a superadmin outside the project."""
    members = {}
    for role in (
        Role.EMPLOYE,
        Role.CONDUCTEUR_TRAVAUX,
        Role.RESPONSABLE_TRAVAUX,
        Role.CHARGE_AFFAIRE,
        Role.RESPONSABLE_APPRO,
        Role.RESPONSABLE_LOGISTIQUE,
        Role.RESPONSABLE_LIVREUR,
    ):
        members[role] = await make_user(role)
    members[Role.SUPERADMIN] = await make_user(Role.SUPERADMIN, member=False, is_admin=True)
    return members
