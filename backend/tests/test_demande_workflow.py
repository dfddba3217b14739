import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from gestion_demandes.core.config import settings
from gestion_demandes.models.demande import Demande
from gestion_demandes.models.history_entry import HistoryEntry
from gestion_demandes.models.notification import Notification
from gestion_demandes.models.validation_signature import ValidationSignature
from gestion_demandes.schemas.demande import DemandeCreate, ItemDemandeCreate
from gestion_demandes.services import demande_service
from gestion_demandes.services.demande_service import act_on_demande, create_demande
from gestion_demandes.workflow.enums import Action, DemandeStatus, DemandeType, Role
from gestion_demandes.workflow.errors import (
    AuthorizationError,
    ConflictError,
    MaxRejectionsError,
    RejectionReasonRequiredError,
    StateError,
    WorkflowValidationError,
)
from gestion_demandes.workflow.quantities import reconcile

S = DemandeStatus

MATERIEL_PATH = [
    (Role.CONDUCTEUR_TRAVAUX, Action.VALIDER),
    (Role.RESPONSABLE_TRAVAUX, Action.VALIDER),
    (Role.CHARGE_AFFAIRE, Action.VALIDER),
    (Role.RESPONSABLE_APPRO, Action.PREPARER),
    (Role.RESPONSABLE_LIVREUR, Action.RECEPTIONNER),
    (Role.RESPONSABLE_LIVREUR, Action.LIVRER),
]


def _payload(projet, *, type_=DemandeType.MATERIEL, quantites=(10,), prix=None, brouillon=False):
    return DemandeCreate(
        type=type_,
        projet_id=projet.id,
        items=[
            ItemDemandeCreate(designation=f"Article {index}", quantite_demandee=q, prix_unitaire=prix)
            for index, q in enumerate(quantites)
        ],
        brouillon=brouillon,
    )


async def _advance(db, demande, team, path):
    for role, action in path:
        await act_on_demande(db, demande_id=demande.id, user=team[role], action=action)
    return demande


async def _history(db, demande_id):
    res = await db.execute(
        select(HistoryEntry).where(HistoryEntry.demande_id == demande_id).order_by(HistoryEntry.timestamp)
    )
    return list(res.scalars().all())


@pytest.mark.asyncio
async def test_materiel_happy_path_until_closure(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    demande = outcome.demande

    assert demande.status == S.EN_ATTENTE_VALIDATION_CONDUCTEUR
    assert re.fullmatch(r"DA-MAT-\d{4}-0001", demande.numero)
    assert [u.id for u in outcome.notified] == [team[Role.CONDUCTEUR_TRAVAUX].id]

    expected = [
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
        S.EN_ATTENTE_PREPARATION_APPRO,
        S.EN_ATTENTE_RECEPTION_LIVREUR,
        S.EN_ATTENTE_LIVRAISON,
        S.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR,
    ]
    for (role, action), status in zip(MATERIEL_PATH, expected):
        step = await act_on_demande(db_session, demande_id=demande.id, user=team[role], action=action)
        assert step.demande.status == status

    assert demande.livreur_assigne_id == team[Role.RESPONSABLE_LIVREUR].id
    closed = await act_on_demande(
        db_session, demande_id=demande.id, user=team[Role.EMPLOYE], action=Action.CLOTURER
    )
    assert closed.demande.status == S.CLOTUREE
    assert closed.demande.date_cloture is not None

    items = await demande_service.load_items(db_session, demande.id)
    assert [(i.quantite_demandee, i.quantite_validee, i.quantite_sortie, i.quantite_recue) for i in items] == [
        (10, 10, 10, 10)
    ]
    assert reconcile(items).ecart_total == 0

    history = await _history(db_session, demande.id)
    assert len(history) == 8
    assert history[-1].nouveau_status == S.CLOTUREE
    res = await db_session.execute(
        select(func.count()).select_from(ValidationSignature).where(ValidationSignature.demande_id == demande.id)
    )
    assert res.scalar_one() == 8


@pytest.mark.asyncio
async def test_works_manager_creation_skips_two_steps(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.RESPONSABLE_TRAVAUX], payload=_payload(projet))

    assert outcome.demande.status == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE
    assert [u.id for u in outcome.notified] == [team[Role.CHARGE_AFFAIRE].id]

    history = await _history(db_session, outcome.demande.id)
    skips = [h for h in history if h.details and h.details.get("auto_skip")]
    assert len(skips) == 2
    assert [h.ancien_status for h in skips] == [
        S.EN_ATTENTE_VALIDATION_CONDUCTEUR,
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
    ]
    assert skips[-1].nouveau_status == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE


@pytest.mark.asyncio
async def test_outillage_numbering_and_flow(db_session, team, projet):
    first = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    second = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    tool = await create_demande(
        db_session, user=team[Role.EMPLOYE], payload=_payload(projet, type_=DemandeType.OUTILLAGE)
    )

    assert first.demande.numero.endswith("-0001")
    assert second.demande.numero.endswith("-0002")
    assert re.fullmatch(r"DA-OUT-\d{4}-0001", tool.demande.numero)
    assert tool.demande.status == S.EN_ATTENTE_VALIDATION_LOGISTIQUE

    await _advance(
        db_session,
        tool.demande,
        team,
        [
            (Role.RESPONSABLE_LOGISTIQUE, Action.VALIDER),
            (Role.RESPONSABLE_TRAVAUX, Action.VALIDER),
            (Role.CHARGE_AFFAIRE, Action.VALIDER),
        ],
    )
    assert tool.demande.status == S.EN_ATTENTE_PREPARATION_LOGISTIQUE
    await act_on_demande(
        db_session, demande_id=tool.demande.id, user=team[Role.RESPONSABLE_LOGISTIQUE], action=Action.PREPARER
    )
    assert tool.demande.status == S.EN_ATTENTE_RECEPTION_LIVREUR


@pytest.mark.asyncio
async def test_numero_collision_falls_back_to_random_suffix(db_session, team, projet, monkeypatch):
    existing = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    taken = existing.demande.numero

    attempts = {"count": 0}

    async def fake_generate_demande_numero(*args, **kwargs):
        attempts["count"] += 1
        return taken

    monkeypatch.setattr(demande_service, "generate_demande_numero", fake_generate_demande_numero)
    monkeypatch.setattr(settings, "numero_max_attempts", 2)
    monkeypatch.setattr(settings, "numero_retry_backoff_ms", 0)

    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))

    assert attempts["count"] == 2
    assert outcome.demande.numero != taken
    assert outcome.demande.numero.startswith("DA-MAT-")


@pytest.mark.asyncio
async def test_rejection_rolls_back_and_notifies_previous_validator(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    demande = outcome.demande
    await _advance(db_session, demande, team, MATERIEL_PATH[:2])
    assert demande.status == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE

    rejected = await act_on_demande(
        db_session,
        demande_id=demande.id,
        user=team[Role.CHARGE_AFFAIRE],
        action=Action.REJETER,
        commentaire="fiche technique manquante",
    )

    assert rejected.demande.status == S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX
    assert rejected.demande.status_precedent == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE
    assert rejected.demande.nombre_rejets == 1
    assert rejected.demande.rejet_motif == "fiche technique manquante"
    assert [u.id for u in rejected.notified] == [team[Role.RESPONSABLE_TRAVAUX].id]

    res = await db_session.execute(
        select(Notification).where(
            Notification.user_id == team[Role.RESPONSABLE_TRAVAUX].id,
            Notification.demande_id == demande.id,
        )
    )
    messages = [n.message for n in res.scalars().all()]
    assert any(demande.numero in m and "fiche technique manquante" in m for m in messages)

    await act_on_demande(
        db_session, demande_id=demande.id, user=team[Role.RESPONSABLE_TRAVAUX], action=Action.VALIDER
    )
    assert demande.status == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE
    assert demande.status_precedent is None
    assert demande.nombre_rejets == 1


@pytest.mark.asyncio
async def test_rejection_ceiling_blocks_further_rejections(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    demande = outcome.demande
    await _advance(db_session, demande, team, MATERIEL_PATH[:1])
    demande.nombre_rejets = settings.max_rejections
    await db_session.commit()

    with pytest.raises(MaxRejectionsError):
        await act_on_demande(
            db_session,
            demande_id=demande.id,
            user=team[Role.RESPONSABLE_TRAVAUX],
            action=Action.REJETER,
            commentaire="encore",
        )

    await db_session.refresh(demande)
    assert demande.nombre_rejets == settings.max_rejections
    assert demande.status == S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX


@pytest.mark.asyncio
async def test_rejection_at_first_step_ends_the_demande(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))

    with pytest.raises(RejectionReasonRequiredError):
        await act_on_demande(
            db_session,
            demande_id=outcome.demande.id,
            user=team[Role.CONDUCTEUR_TRAVAUX],
            action=Action.REJETER,
            commentaire="  ",
        )

    rejected = await act_on_demande(
        db_session,
        demande_id=outcome.demande.id,
        user=team[Role.CONDUCTEUR_TRAVAUX],
        action=Action.REJETER,
        commentaire="hors budget",
    )
    assert rejected.demande.status == S.REJETEE
    assert [u.id for u in rejected.notified] == [team[Role.EMPLOYE].id]


@pytest.mark.asyncio
async def test_unauthorized_actions_do_not_mutate(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    demande = outcome.demande

    with pytest.raises(AuthorizationError):
        await act_on_demande(db_session, demande_id=demande.id, user=team[Role.CHARGE_AFFAIRE], action=Action.VALIDER)
    with pytest.raises(AuthorizationError):
        await act_on_demande(
            db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX], action=Action.PREPARER
        )
    with pytest.raises(WorkflowValidationError):
        await act_on_demande(db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX], action="signer")
    with pytest.raises(AuthorizationError):
        await act_on_demande(
            db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX], action=Action.CLOTURER
        )

    await db_session.refresh(demande)
    assert demande.status == S.EN_ATTENTE_VALIDATION_CONDUCTEUR
    assert demande.version == 1


@pytest.mark.asyncio
async def test_non_member_cannot_create_or_read(db_session, team, projet, make_user):
    outsider = await make_user(Role.EMPLOYE, member=False)
    with pytest.raises(AuthorizationError):
        await create_demande(db_session, user=outsider, payload=_payload(projet))

    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    with pytest.raises(AuthorizationError):
        await demande_service.get_demande_for_user(db_session, outcome.demande.id, outsider)


@pytest.mark.asyncio
async def test_validation_quantities_update_cost(db_session, team, projet):
    outcome = await create_demande(
        db_session, user=team[Role.EMPLOYE], payload=_payload(projet, quantites=(10, 4), prix=Decimal("2.50"))
    )
    demande = outcome.demande
    assert demande.cout_total == Decimal("35.00")
    items = await demande_service.load_items(db_session, demande.id)

    await act_on_demande(
        db_session,
        demande_id=demande.id,
        user=team[Role.CONDUCTEUR_TRAVAUX],
        action=Action.VALIDER,
        quantites={items[0].id: 8},
    )
    items = await demande_service.load_items(db_session, demande.id)
    assert items[0].quantite_validee == 8
    assert demande.cout_total == Decimal("30.00")

    await _advance(db_session, demande, team, MATERIEL_PATH[1:4])
    with pytest.raises(WorkflowValidationError):
        await act_on_demande(
            db_session,
            demande_id=demande.id,
            user=team[Role.RESPONSABLE_LIVREUR],
            action=Action.RECEPTIONNER,
            quantites={items[0].id: 1},
        )


@pytest.mark.asyncio
async def test_stale_version_is_reported_as_conflict(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))
    demande = outcome.demande

    # Another writer bumps the row behind this session's back.
    await db_session.execute(
        update(Demande)
        .where(Demande.id == demande.id)
        .values(version=Demande.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()

    with pytest.raises(ConflictError):
        await act_on_demande(
            db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX], action=Action.VALIDER
        )

    await db_session.refresh(demande)
    assert demande.status == S.EN_ATTENTE_VALIDATION_CONDUCTEUR
    assert demande.version == 2


@pytest.mark.asyncio
async def test_draft_then_submit(db_session, team, projet):
    outcome = await create_demande(
        db_session, user=team[Role.CONDUCTEUR_TRAVAUX], payload=_payload(projet, brouillon=True)
    )
    demande = outcome.demande
    assert demande.status == S.BROUILLON
    assert demande.numero.startswith("BROUILLON-")
    assert outcome.notified == []

    submitted = await demande_service.submit_demande(
        db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX]
    )
    assert submitted.demande.status == S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX
    assert re.fullmatch(r"DA-MAT-\d{4}-\d{4}", submitted.demande.numero)
    assert [u.id for u in submitted.notified] == [team[Role.RESPONSABLE_TRAVAUX].id]

    with pytest.raises(StateError):
        await demande_service.submit_demande(db_session, demande_id=demande.id, user=team[Role.CONDUCTEUR_TRAVAUX])


@pytest.mark.asyncio
async def test_list_demandes_a_traiter(db_session, team, projet):
    outcome = await create_demande(db_session, user=team[Role.EMPLOYE], payload=_payload(projet))

    pending = await demande_service.list_demandes(db_session, user=team[Role.CONDUCTEUR_TRAVAUX], a_traiter=True)
    assert [d.id for d in pending] == [outcome.demande.id]

    pending = await demande_service.list_demandes(db_session, user=team[Role.CHARGE_AFFAIRE], a_traiter=True)
    assert pending == []

    visible = await demande_service.list_demandes(db_session, user=team[Role.CHARGE_AFFAIRE])
    assert [d.id for d in visible] == [outcome.demande.id]
