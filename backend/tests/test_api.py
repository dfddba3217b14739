from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from gestion_demandes.core.rate_limit import LoginAttemptLimiter
from gestion_demandes.core.security import create_access_token, hash_password
from gestion_demandes.db.session import get_db
from gestion_demandes.main import app
from gestion_demandes.workflow.enums import Role


@pytest_asyncio.fixture
async def client(async_session):
    async def _get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.state.login_limiter = LoginAttemptLimiter(max_attempts=3, lockout=timedelta(minutes=15))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _auth(user) -> dict[str, str]:
    token, _ = create_access_token(subject=str(user.id), role=user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_login_me_and_lockout(client, db_session, make_user, projet):
    user = await make_user(Role.EMPLOYE, email="chef@example.com")
    user.hashed_password = hash_password("secret123")
    await db_session.commit()

    res = await client.post("/api/v1/auth/login", json={"email": "chef@example.com", "password": "secret123"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["projets"] == [str(projet.id)]

    for _ in range(3):
        res = await client.post("/api/v1/auth/login", json={"email": "chef@example.com", "password": "wrong"})
        assert res.status_code == 401
    res = await client.post("/api/v1/auth/login", json={"email": "chef@example.com", "password": "secret123"})
    assert res.status_code == 429


@pytest.mark.asyncio
async def test_requires_authentication(client):
    res = await client.get("/api/v1/demandes")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_create_validate_reject_over_http(client, team, projet):
    employe = team[Role.EMPLOYE]
    body = {
        "type": "materiel",
        "projet_id": str(projet.id),
        "items": [{"designation": "Ciment 50kg", "quantite_demandee": 10, "prix_unitaire": "12.50"}],
    }
    res = await client.post("/api/v1/demandes", json=body, headers=_auth(employe))
    assert res.status_code == 201
    created = res.json()
    assert created["status"] == "en_attente_validation_conducteur"
    assert created["items"][0]["prix_unitaire"] is None
    assert created["cout_total"] is None
    demande_id = created["id"]

    appro_view = await client.get(f"/api/v1/demandes/{demande_id}", headers=_auth(team[Role.RESPONSABLE_APPRO]))
    assert appro_view.status_code == 200
    assert float(appro_view.json()["cout_total"]) == 125.0

    res = await client.post(
        f"/api/v1/demandes/{demande_id}/actions",
        json={"action": "valider"},
        headers=_auth(team[Role.CHARGE_AFFAIRE]),
    )
    assert res.status_code == 403
    assert res.json()["detail"]["code"] == "forbidden"

    res = await client.post(
        f"/api/v1/demandes/{demande_id}/actions",
        json={"action": "valider", "commentaire": "ok"},
        headers=_auth(team[Role.CONDUCTEUR_TRAVAUX]),
    )
    assert res.status_code == 200
    assert res.json()["status"] == "en_attente_validation_responsable_travaux"

    res = await client.post(
        f"/api/v1/demandes/{demande_id}/actions",
        json={"action": "rejeter"},
        headers=_auth(team[Role.RESPONSABLE_TRAVAUX]),
    )
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "rejection_reason_required"

    res = await client.post(
        f"/api/v1/demandes/{demande_id}/actions",
        json={"action": "rejeter", "commentaire": "Quantité excessive"},
        headers=_auth(team[Role.RESPONSABLE_TRAVAUX]),
    )
    assert res.status_code == 200
    assert res.json()["status"] == "en_attente_validation_conducteur"
    assert res.json()["nombre_rejets"] == 1

    history = await client.get(f"/api/v1/demandes/{demande_id}/historique", headers=_auth(employe))
    assert history.status_code == 200
    assert len(history.json()) == 3

    reconciliation = await client.get(f"/api/v1/demandes/{demande_id}/reconciliation", headers=_auth(employe))
    assert reconciliation.status_code == 200
    assert reconciliation.json()["total_validee"] == 10
    assert reconciliation.json()["cout_total"] is None

    inbox = await client.get("/api/v1/notifications", headers=_auth(team[Role.CONDUCTEUR_TRAVAUX]))
    assert inbox.status_code == 200
    assert len(inbox.json()) == 2


@pytest.mark.asyncio
async def test_invalid_ids_and_missing_demande(client, team):
    employe = team[Role.EMPLOYE]
    res = await client.get("/api/v1/demandes/not-a-uuid", headers=_auth(employe))
    assert res.status_code == 400

    res = await client.get(
        "/api/v1/demandes/00000000-0000-0000-0000-000000000000", headers=_auth(employe)
    )
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_close_before_final_is_a_conflict(client, team, projet):
    employe = team[Role.EMPLOYE]
    body = {
        "type": "outillage",
        "projet_id": str(projet.id),
        "items": [{"designation": "Perceuse", "quantite_demandee": 1}],
    }
    res = await client.post("/api/v1/demandes", json=body, headers=_auth(employe))
    demande_id = res.json()["id"]

    res = await client.post(
        f"/api/v1/demandes/{demande_id}/actions", json={"action": "cloturer"}, headers=_auth(employe)
    )
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "invalid_state"

    res = await client.delete(f"/api/v1/demandes/{demande_id}", headers=_auth(employe))
    assert res.status_code == 200
    assert res.json() == {"ok": True}
