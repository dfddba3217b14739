from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.api.deps import get_current_user, parse_uuid
from gestion_demandes.api.errors import http_error
from gestion_demandes.core.config import settings
from gestion_demandes.db.session import get_db
from gestion_demandes.models.demande import Demande
from gestion_demandes.models.history_entry import HistoryEntry
from gestion_demandes.models.item_demande import ItemDemande
from gestion_demandes.models.user import User
from gestion_demandes.schemas.demande import (
    DemandeActionIn,
    DemandeCreate,
    DemandeOut,
    HistoryEntryOut,
    LivraisonIn,
    LivraisonOut,
    OverrideStatusIn,
    ReceptionIn,
    ReconciliationOut,
    ValidationReceptionOut,
)
from gestion_demandes.services import demande_service
from gestion_demandes.services.demande_service import WorkflowOutcome
from gestion_demandes.services.mailer import send_workflow_email
from gestion_demandes.workflow.errors import WorkflowError
from gestion_demandes.workflow.permissions import can_see_costs
from gestion_demandes.workflow.quantities import DeliveryStatus, cout_total, reconcile

router = APIRouter()
logger = logging.getLogger("chantier_api.demandes")


def _show_prices(user: User) -> bool:
    return can_see_costs(user.role, settings.parsed_cost_visible_roles())


def _item_out(item: ItemDemande, *, show_prices: bool) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "article_id": item.article_id,
        "reference": item.reference,
        "designation": item.designation,
        "unite": item.unite,
        "quantite_demandee": item.quantite_demandee,
        "quantite_validee": item.quantite_validee,
        "quantite_sortie": item.quantite_sortie,
        "quantite_recue": item.quantite_recue,
        "prix_unitaire": item.prix_unitaire if show_prices else None,
        "commentaire": item.commentaire,
    }


def _demande_out(
    demande: Demande,
    items: list[ItemDemande] | None = None,
    *,
    show_prices: bool,
) -> dict[str, Any]:
    return {
        "id": str(demande.id),
        "numero": demande.numero,
        "type": demande.type,
        "type_demande": demande.type_demande,
        "demande_parent_id": str(demande.demande_parent_id) if demande.demande_parent_id else None,
        "motif_sous_demande": demande.motif_sous_demande,
        "status": demande.status,
        "status_precedent": demande.status_precedent,
        "nombre_rejets": demande.nombre_rejets,
        "rejet_motif": demande.rejet_motif,
        "technicien_id": str(demande.technicien_id),
        "projet_id": str(demande.projet_id),
        "livreur_assigne_id": str(demande.livreur_assigne_id) if demande.livreur_assigne_id else None,
        "commentaires": demande.commentaires,
        "cout_total": demande.cout_total if show_prices else None,
        "version": demande.version,
        "date_creation": demande.date_creation,
        "date_modification": demande.date_modification,
        "date_livraison_souhaitee": demande.date_livraison_souhaitee,
        "date_cloture": demande.date_cloture,
        "items": [_item_out(i, show_prices=show_prices) for i in items or []],
    }


def _history_out(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "user_id": str(entry.user_id) if entry.user_id else None,
        "action": entry.action,
        "ancien_status": entry.ancien_status,
        "nouveau_status": entry.nouveau_status,
        "commentaire": entry.commentaire,
        "signature": entry.signature,
        "details": entry.details,
        "timestamp": entry.timestamp,
    }


def _delivery_out(progress: DeliveryStatus, demande: Demande, livraison_id: Any = None) -> dict[str, Any]:
    return {
        "livraison_id": str(livraison_id) if livraison_id else None,
        "demande_status": demande.status,
        "lignes": [
            {
                "item_id": str(line.item_id),
                "validee": line.validee,
                "livree": line.livree,
                "restante": line.restante,
            }
            for line in progress.lines
        ],
        "total_validee": progress.total_validee,
        "total_livree": progress.total_livree,
        "pourcentage": progress.pourcentage,
        "complete": progress.complete,
    }


def _schedule_emails(background_tasks: BackgroundTasks, outcome: WorkflowOutcome) -> None:
    if not outcome.notified or not outcome.titre:
        return
    try:
        if not settings.smtp_enabled():
            logger.debug("SMTP not configured; skipping workflow email for %s", outcome.demande.numero)
            return
        background_tasks.add_task(
            send_workflow_email,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user or settings.email_expediteur,
            smtp_password=settings.smtp_password,
            sender=settings.email_expediteur,
            recipients=[u.email for u in outcome.notified],
            titre=outcome.titre,
            message=outcome.message or "",
            numero=outcome.demande.numero,
        )
    except Exception:
        logger.exception("Failed to schedule workflow email for demande %s", outcome.demande.numero)


async def _outcome_out(db: AsyncSession, outcome: WorkflowOutcome, user: User) -> dict[str, Any]:
    items = await demande_service.load_items(db, outcome.demande.id)
    return _demande_out(outcome.demande, items, show_prices=_show_prices(user))


@router.get("", response_model=list[DemandeOut])
async def list_demandes(
    status_filter: str | None = Query(default=None, alias="status"),
    projet_id: str | None = Query(default=None),
    type: str | None = Query(default=None),
    a_traiter: bool = Query(default=False),
    limit: int | None = Query(default=200),
    offset: int = Query(default=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    demandes = await demande_service.list_demandes(
        db,
        user=user,
        status=status_filter,
        projet_id=parse_uuid(projet_id, "projet_id") if projet_id else None,
        type_=type,
        a_traiter=a_traiter,
        limit=limit,
        offset=offset,
    )
    logger.info("demandes list user=%s count=%s", user.id, len(demandes))
    show_prices = _show_prices(user)
    return [_demande_out(d, show_prices=show_prices) for d in demandes]


@router.post("", response_model=DemandeOut, status_code=status.HTTP_201_CREATED)
async def create_demande(
    payload: DemandeCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        outcome = await demande_service.create_demande(db, user=user, payload=payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    return await _outcome_out(db, outcome, user)


@router.get("/{demande_id}", response_model=DemandeOut)
async def get_demande(
    demande_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        demande = await demande_service.get_demande_for_user(db, did, user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    items = await demande_service.load_items(db, demande.id)
    return _demande_out(demande, items, show_prices=_show_prices(user))


@router.delete("/{demande_id}")
async def delete_demande(
    demande_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    did = parse_uuid(demande_id, "demande_id")
    try:
        await demande_service.delete_demande(db, demande_id=did, user=user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return {"ok": True}


@router.post("/{demande_id}/submit", response_model=DemandeOut)
async def submit_demande(
    demande_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        outcome = await demande_service.submit_demande(db, demande_id=did, user=user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    return await _outcome_out(db, outcome, user)


@router.post("/{demande_id}/actions", response_model=DemandeOut)
async def act_on_demande(
    demande_id: str,
    payload: DemandeActionIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        outcome = await demande_service.act_on_demande(
            db,
            demande_id=did,
            user=user,
            action=payload.action,
            commentaire=payload.commentaire,
            quantites=payload.quantites,
        )
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    return await _outcome_out(db, outcome, user)


@router.post("/{demande_id}/override", response_model=DemandeOut)
async def override_status(
    demande_id: str,
    payload: OverrideStatusIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        outcome = await demande_service.override_status(
            db,
            demande_id=did,
            user=user,
            target=payload.status,
            commentaire=payload.commentaire,
            notifier_valideurs=payload.notifier_valideurs,
        )
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    return await _outcome_out(db, outcome, user)


@router.post("/{demande_id}/reception", response_model=ValidationReceptionOut)
async def validate_reception(
    demande_id: str,
    payload: ReceptionIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        outcome = await demande_service.validate_reception(db, demande_id=did, user=user, payload=payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    validation = outcome.validation
    lines = await demande_service.validation_items(db, validation.id)
    return {
        "id": str(validation.id),
        "demande_id": str(validation.demande_id),
        "statut": validation.statut,
        "refuser_tout": validation.refuser_tout,
        "commentaire_general": validation.commentaire_general,
        "sous_demande_id": str(validation.sous_demande_id) if validation.sous_demande_id else None,
        "sous_demande_numero": outcome.sous_demande.numero if outcome.sous_demande else None,
        "demande_status": outcome.demande.status,
        "items": [
            {
                "item_id": str(line.item_id),
                "quantite_validee": line.quantite_validee,
                "quantite_recue": line.quantite_recue,
                "quantite_acceptee": line.quantite_acceptee,
                "quantite_refusee": line.quantite_refusee,
                "statut": line.statut,
                "motif_refus": line.motif_refus,
                "commentaire": line.commentaire,
                "photos": line.photos or [],
            }
            for line in lines
        ],
    }


@router.get("/{demande_id}/reconciliation", response_model=ReconciliationOut)
async def get_reconciliation(
    demande_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        demande = await demande_service.get_demande_for_user(db, did, user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    items = await demande_service.load_items(db, demande.id)
    result = reconcile(items)
    return {
        "items": [
            {
                "item_id": str(line.item_id),
                "demandee": line.demandee,
                "validee": line.validee,
                "sortie": line.sortie,
                "recue": line.recue,
                "ecart_validation": line.ecart_validation,
                "ecart_stock": line.ecart_stock,
                "ecart_livraison": line.ecart_livraison,
                "ecart_total": line.ecart_total,
                "anomalies": line.anomalies,
            }
            for line in result.items
        ],
        "total_demandee": result.total_demandee,
        "total_validee": result.total_validee,
        "total_sortie": result.total_sortie,
        "total_recue": result.total_recue,
        "ecart_total": result.ecart_total,
        "sous_demande_requise": result.needs_sous_demande,
        "cout_total": cout_total(items) if _show_prices(user) else None,
    }


@router.get("/{demande_id}/historique", response_model=list[HistoryEntryOut])
async def get_historique(
    demande_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        entries = await demande_service.historique(db, demande_id=did, user=user)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return [_history_out(e) for e in entries]


@router.post("/{demande_id}/livraisons", response_model=LivraisonOut, status_code=status.HTTP_201_CREATED)
async def create_livraison(
    demande_id: str,
    payload: LivraisonIn,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        outcome = await demande_service.record_livraison(db, demande_id=did, user=user, payload=payload)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    _schedule_emails(background_tasks, outcome)
    return _delivery_out(outcome.delivery, outcome.demande, outcome.livraison.id)


@router.get("/{demande_id}/livraisons", response_model=LivraisonOut)
async def get_livraisons(
    demande_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    did = parse_uuid(demande_id, "demande_id")
    try:
        progress = await demande_service.delivery_progress(db, demande_id=did, user=user)
        demande = await demande_service.get_demande(db, did)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return _delivery_out(progress, demande)
