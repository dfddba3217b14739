from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timezone

from sqlalchemy import insert, select

# Ensure the backend root is in sys.path when executed in the container.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from gestion_demandes.core.security import hash_password  # noqa: E402
from gestion_demandes.db.session import SessionLocal  # noqa: E402
from gestion_demandes.models.projet import Projet, projet_membres  # noqa: E402
from gestion_demandes.models.user import User  # noqa: E402

EMAIL = os.environ.get("SEED_EMAIL", "admin@chantier.local")
PASSWORD = os.environ.get("SEED_PASSWORD", "changeme123")
NOM = "Admin"
PRENOM = "Chantier"
ROLE = "superadmin"
PROJET_NOM = "Chantier pilote"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def main() -> None:
    async with SessionLocal() as session:
        result = await session.execute(select(User).where(User.email == EMAIL))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(
                email=EMAIL,
                nom=NOM,
                prenom=PRENOM,
                role=ROLE,
                is_admin=True,
                active=True,
                hashed_password=hash_password(PASSWORD),
                created_at=_utcnow(),
                updated_at=_utcnow(),
            )
            session.add(user)
            await session.flush()
            print("created user:", EMAIL)
        else:
            user.hashed_password = hash_password(PASSWORD)
            user.active = True
            user.role = ROLE
            user.is_admin = True
            user.updated_at = _utcnow()
            print("updated user:", EMAIL)

        res = await session.execute(select(Projet).where(Projet.nom == PROJET_NOM))
        projet = res.scalar_one_or_none()
        if projet is None:
            projet = Projet(nom=PROJET_NOM, created_by=user.id)
            session.add(projet)
            await session.flush()
            await session.execute(insert(projet_membres).values(projet_id=projet.id, user_id=user.id))
            print("created projet:", PROJET_NOM)

        await session.commit()


if __name__ == "__main__":
    asyncio.run(main())
