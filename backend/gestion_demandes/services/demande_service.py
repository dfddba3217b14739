"""Lifecycle orchestration of demandes.

Each public coroutine is one unit of work: load, authorize, plan with the pure
workflow engine, apply the status change through a conditional write, record
one signature and one history entry, commit, then notify best effort.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.core.config import settings
from gestion_demandes.models.demande import Demande
from gestion_demandes.models.history_entry import HistoryEntry
from gestion_demandes.models.item_demande import ItemDemande
from gestion_demandes.models.livraison import ItemLivraison, Livraison
from gestion_demandes.models.notification import Notification
from gestion_demandes.models.projet import Projet, projet_membres
from gestion_demandes.models.user import User
from gestion_demandes.models.validation_reception import ValidationItem, ValidationReception
from gestion_demandes.models.validation_signature import ValidationSignature
from gestion_demandes.schemas.demande import DemandeCreate, LivraisonIn, ReceptionIn
from gestion_demandes.services.document_sequences import (
    draft_numero,
    fallback_demande_numero,
    fallback_sous_demande_numero,
    generate_demande_numero,
    generate_sous_demande_numero,
)
from gestion_demandes.services.notifications import notify_role_in_project, notify_users
from gestion_demandes.services.signature import generate_signature
from gestion_demandes.workflow.enums import (
    DELETABLE_STATUSES,
    TERMINAL_STATUSES,
    Action,
    DemandeStatus,
    DemandeType,
    Role,
    StatutReception,
    TypeDemande,
    role_label,
)
from gestion_demandes.workflow.errors import (
    ActiveSubRequestsError,
    AuthorizationError,
    NotFoundError,
    SequenceExhaustedError,
    StateError,
    WorkflowValidationError,
    ConflictError,
)
from gestion_demandes.workflow.flows import PREPARATION_ROLE, PREPARATION_STATUS, FLOWS, step_at
from gestion_demandes.workflow.initial_status import SkippedStep, initial_status
from gestion_demandes.workflow.permissions import modification_permissions
from gestion_demandes.workflow.quantities import cout_total, delivery_status, DeliveryStatus
from gestion_demandes.workflow.reception import ReceptionInput, evaluate_reception
from gestion_demandes.workflow.rejection import plan_rejection, rejection_message
from gestion_demandes.workflow.transitions import is_authorized, skipped_by_override


logger = logging.getLogger("chantier_api.demandes")

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowOutcome:
    demande: Demande
    notified: list[User] = field(default_factory=list)
    titre: str | None = None
    message: str | None = None
    sous_demande: Demande | None = None
    validation: ValidationReception | None = None
    livraison: Livraison | None = None
    delivery: DeliveryStatus | None = None


def is_admin(user: User) -> bool:
    return user.role == Role.SUPERADMIN or bool(user.is_admin)


async def _is_project_member(db: AsyncSession, user_id: uuid.UUID, projet_id: uuid.UUID) -> bool:
    res = await db.execute(
        select(projet_membres.c.user_id).where(
            projet_membres.c.user_id == user_id,
            projet_membres.c.projet_id == projet_id,
        )
    )
    return res.first() is not None


async def get_demande(db: AsyncSession, demande_id: uuid.UUID) -> Demande:
    res = await db.execute(select(Demande).where(Demande.id == demande_id))
    demande = res.scalar_one_or_none()
    if demande is None:
        raise NotFoundError("Demande", demande_id)
    return demande


async def ensure_access(db: AsyncSession, demande: Demande, user: User) -> None:
    if is_admin(user) or demande.technicien_id == user.id:
        return
    if await _is_project_member(db, user.id, demande.projet_id):
        return
    raise AuthorizationError("Accès non autorisé à ce projet")


async def get_demande_for_user(db: AsyncSession, demande_id: uuid.UUID, user: User) -> Demande:
    demande = await get_demande(db, demande_id)
    await ensure_access(db, demande, user)
    return demande


async def load_items(db: AsyncSession, demande_id: uuid.UUID) -> list[ItemDemande]:
    res = await db.execute(
        select(ItemDemande).where(ItemDemande.demande_id == demande_id).order_by(ItemDemande.ordre)
    )
    return list(res.scalars().all())


def _record_step(
    db: AsyncSession,
    demande_id: uuid.UUID,
    user: User,
    *,
    action: str,
    label: str,
    ancien: str | None,
    nouveau: str | None,
    commentaire: str | None = None,
    details: dict[str, Any] | None = None,
) -> str:
    now = _utcnow()
    signature = generate_signature(
        user_id=user.id,
        action=action,
        timestamp=now,
        data={"demande_id": str(demande_id), "ancien": ancien, "nouveau": nouveau},
    )
    db.add(
        ValidationSignature(
            demande_id=demande_id,
            user_id=user.id,
            role=user.role,
            action=action,
            commentaire=commentaire,
            signature=signature,
            date=now,
        )
    )
    db.add(
        HistoryEntry(
            demande_id=demande_id,
            user_id=user.id,
            action=label,
            ancien_status=ancien,
            nouveau_status=nouveau,
            commentaire=commentaire,
            signature=signature,
            details=details,
            timestamp=now,
        )
    )
    return signature


async def _apply_status(
    db: AsyncSession,
    demande: Demande,
    *,
    expected_status: str,
    expected_version: int,
    values: dict[str, Any],
) -> None:
    numero = demande.numero
    stmt = (
        update(Demande)
        .where(
            Demande.id == demande.id,
            Demande.status == expected_status,
            Demande.version == expected_version,
        )
        .values(version=expected_version + 1, date_modification=_utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount != 1:
        await db.rollback()
        logger.warning("stale demande write numero=%s expected_status=%s", numero, expected_status)
        raise ConflictError(numero, expected_status)


async def _notify(
    db: AsyncSession,
    demande: Demande,
    *,
    titre: str,
    message: str,
    actor: User,
    role: Role | str | None = None,
    users: list[User] | None = None,
) -> list[User]:
    numero = demande.numero
    try:
        if role is not None:
            notified = await notify_role_in_project(
                db,
                role=role,
                projet_id=demande.projet_id,
                titre=titre,
                message=message,
                demande_id=demande.id,
                exclude_user_id=actor.id,
            )
        else:
            notified = await notify_users(
                db,
                users or [],
                titre=titre,
                message=message,
                demande_id=demande.id,
                projet_id=demande.projet_id,
                exclude_user_id=actor.id,
            )
        await db.commit()
        return notified
    except Exception:
        logger.exception("Failed to notify for demande %s", numero)
        await _rollback(db, demande, actor)
        return []


async def _rollback(db: AsyncSession, *objs: Any) -> None:
    """Rolls back and reloads the given session-bound objects, which a rollback expires."""
    await db.rollback()
    for obj in objs:
        if obj is not None and obj in db:
            await db.refresh(obj)


async def _requester(db: AsyncSession, demande: Demande) -> User | None:
    res = await db.execute(select(User).where(User.id == demande.technicien_id))
    return res.scalar_one_or_none()


async def _notify_next_actor(db: AsyncSession, demande: Demande, actor: User) -> WorkflowOutcome:
    status = DemandeStatus(demande.status)
    if status == DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR:
        requester = await _requester(db, demande)
        titre = "Demande prête pour validation finale"
        message = f"La demande {demande.numero} a été livrée. Veuillez valider la réception et clôturer."
        notified = await _notify(
            db, demande, titre=titre, message=message, actor=actor, users=[requester] if requester else []
        )
        return WorkflowOutcome(demande=demande, notified=notified, titre=titre, message=message)

    step = step_at(status, demande.type)
    if step is None:
        return WorkflowOutcome(demande=demande)
    titre = "Demande en attente de votre action"
    message = f"La demande {demande.numero} attend votre intervention ({role_label(step.role)})."
    notified = await _notify(db, demande, titre=titre, message=message, actor=actor, role=step.role)
    return WorkflowOutcome(demande=demande, notified=notified, titre=titre, message=message)


async def _ensure_projet(db: AsyncSession, projet_id: uuid.UUID, user: User) -> Projet:
    res = await db.execute(select(Projet).where(Projet.id == projet_id))
    projet = res.scalar_one_or_none()
    if projet is None:
        raise NotFoundError("Projet", projet_id)
    if not projet.actif:
        raise StateError(f"Le projet {projet.nom} n'est plus actif")
    if not is_admin(user) and not await _is_project_member(db, user.id, projet_id):
        raise AuthorizationError("Vous n'êtes pas membre de ce projet")
    return projet


def _add_auto_skip_entries(
    db: AsyncSession,
    demande_id: uuid.UUID,
    creator: User,
    skipped: list[SkippedStep],
    final_status: DemandeStatus,
) -> None:
    statuses = [s.status for s in skipped] + [final_status]
    for index, skip in enumerate(skipped):
        db.add(
            HistoryEntry(
                demande_id=demande_id,
                user_id=creator.id,
                action=f"Validation automatique: {role_label(skip.role)}",
                ancien_status=skip.status,
                nouveau_status=statuses[index + 1],
                commentaire=skip.reason,
                details={"auto_skip": True, "role": str(skip.role)},
                timestamp=_utcnow(),
            )
        )


async def create_demande(db: AsyncSession, *, user: User, payload: DemandeCreate) -> WorkflowOutcome:
    await _ensure_projet(db, payload.projet_id, user)

    if payload.brouillon:
        status, skipped = DemandeStatus.BROUILLON, []
    else:
        status, skipped = initial_status(payload.type, user.role)

    max_attempts = settings.numero_max_attempts
    last_error: Exception | None = None
    demande_id = uuid.uuid4()
    for attempt in range(max_attempts + 1):
        try:
            if payload.brouillon:
                numero = draft_numero()
            elif attempt < max_attempts:
                numero = await generate_demande_numero(db, payload.type)
            else:
                numero = fallback_demande_numero(payload.type)

            now = _utcnow()
            demande_id = uuid.uuid4()
            demande = Demande(
                id=demande_id,
                numero=numero,
                type=str(payload.type),
                type_demande=TypeDemande.PRINCIPALE,
                status=status,
                nombre_rejets=0,
                version=1,
                technicien_id=user.id,
                projet_id=payload.projet_id,
                commentaires=payload.commentaires,
                date_livraison_souhaitee=payload.date_livraison_souhaitee,
                date_creation=now,
                date_modification=now,
            )
            items = [
                ItemDemande(
                    demande_id=demande_id,
                    article_id=item.article_id,
                    reference=item.reference,
                    designation=item.designation,
                    unite=item.unite,
                    quantite_demandee=item.quantite_demandee,
                    quantite_validee=item.quantite_demandee,
                    prix_unitaire=item.prix_unitaire,
                    commentaire=item.commentaire,
                    ordre=index,
                )
                for index, item in enumerate(payload.items)
            ]
            demande.cout_total = cout_total(items)
            db.add(demande)
            await db.flush()
            db.add_all(items)
            _record_step(
                db,
                demande_id,
                user,
                action="creation",
                label="Création de la demande" if not payload.brouillon else "Création du brouillon",
                ancien=None,
                nouveau=status,
                commentaire=payload.commentaires,
            )
            _add_auto_skip_entries(db, demande_id, user, skipped, status)
            await db.commit()
            last_error = None
            break
        except IntegrityError as exc:
            last_error = exc
            await _rollback(db, user)
            logger.warning("numero collision on create attempt=%s", attempt + 1)
            await asyncio.sleep(settings.numero_retry_backoff_ms * (attempt + 1) / 1000)

    if last_error is not None:
        raise SequenceExhaustedError("Impossible d'attribuer un numéro à la demande")

    demande = await get_demande(db, demande_id)
    logger.info(
        "demande created numero=%s type=%s status=%s skipped=%s",
        demande.numero,
        demande.type,
        demande.status,
        len(skipped),
    )
    if payload.brouillon:
        return WorkflowOutcome(demande=demande)
    return await _notify_next_actor(db, demande, user)


async def submit_demande(db: AsyncSession, *, demande_id: uuid.UUID, user: User) -> WorkflowOutcome:
    demande = await get_demande_for_user(db, demande_id, user)
    if demande.technicien_id != user.id and not is_admin(user):
        raise AuthorizationError("Seul le demandeur peut soumettre ce brouillon")
    if demande.status != DemandeStatus.BROUILLON:
        raise StateError(f"La demande {demande.numero} n'est pas un brouillon")

    creator = await _requester(db, demande)
    creator_role = creator.role if creator else user.role
    status, skipped = initial_status(demande.type, creator_role)
    expected_version = demande.version
    type_ = demande.type

    max_attempts = settings.numero_max_attempts
    last_error: Exception | None = None
    for attempt in range(max_attempts + 1):
        try:
            if attempt < max_attempts:
                numero = await generate_demande_numero(db, type_)
            else:
                numero = fallback_demande_numero(type_)
            await _apply_status(
                db,
                demande,
                expected_status=DemandeStatus.BROUILLON,
                expected_version=expected_version,
                values={"status": status, "numero": numero},
            )
            _record_step(
                db,
                demande_id,
                user,
                action="soumission",
                label="Soumission de la demande",
                ancien=DemandeStatus.BROUILLON,
                nouveau=status,
            )
            _add_auto_skip_entries(db, demande_id, creator or user, skipped, status)
            await db.commit()
            last_error = None
            break
        except IntegrityError as exc:
            last_error = exc
            await _rollback(db, demande, user, creator)
            logger.warning("numero collision on submit attempt=%s", attempt + 1)
            await asyncio.sleep(settings.numero_retry_backoff_ms * (attempt + 1) / 1000)

    if last_error is not None:
        raise SequenceExhaustedError("Impossible d'attribuer un numéro à la demande")

    await db.refresh(demande)
    logger.info("demande submitted numero=%s status=%s", demande.numero, demande.status)
    return await _notify_next_actor(db, demande, user)


def _apply_quantities(items: list[ItemDemande], quantites: dict[uuid.UUID, int], attr: str) -> None:
    by_id = {item.id: item for item in items}
    unknown = [str(item_id) for item_id in quantites if item_id not in by_id]
    if unknown:
        raise WorkflowValidationError(f"Articles inconnus pour cette demande: {', '.join(unknown)}")
    for item_id, quantite in quantites.items():
        setattr(by_id[item_id], attr, quantite)


async def act_on_demande(
    db: AsyncSession,
    *,
    demande_id: uuid.UUID,
    user: User,
    action: Action | str,
    commentaire: str | None = None,
    quantites: dict[uuid.UUID, int] | None = None,
) -> WorkflowOutcome:
    try:
        action = Action(action)
    except ValueError:
        raise WorkflowValidationError(f"Action non reconnue: {action}")

    demande = await get_demande_for_user(db, demande_id, user)
    if action == Action.REJETER:
        return await _reject(db, demande, user, commentaire)
    if action == Action.CLOTURER:
        return await _close(db, demande, user, commentaire)

    current = demande.status
    step = step_at(current, demande.type)
    if step is None:
        raise StateError(f"Aucune action possible sur la demande {demande.numero} au statut {current}")
    if not is_authorized(user.role, current, demande.type, action):
        raise AuthorizationError("Action non autorisée pour ce rôle et statut")
    if action != step.action and not (is_admin(user) and action == Action.VALIDER):
        raise StateError(f"L'action attendue au statut {current} est '{step.action}'")

    items = await load_items(db, demande.id)
    values: dict[str, Any] = {"status": step.next_status, "status_precedent": None}

    if quantites:
        if not modification_permissions(user.role).quantities:
            raise AuthorizationError("Votre rôle ne permet pas de modifier les quantités")
        if step.action == Action.VALIDER:
            _apply_quantities(items, quantites, "quantite_validee")
        elif step.action == Action.PREPARER:
            _apply_quantities(items, quantites, "quantite_sortie")
        else:
            raise WorkflowValidationError("Les quantités ne sont modifiables qu'à la validation ou la préparation")

    now = _utcnow()
    if step.action == Action.VALIDER:
        values["cout_total"] = cout_total(items)
    elif step.action == Action.PREPARER:
        for item in items:
            if item.quantite_sortie is None:
                item.quantite_sortie = item.quantite_validee if item.quantite_validee is not None else item.quantite_demandee
        values["date_sortie"] = now
    elif step.action == Action.RECEPTIONNER:
        values["date_reception_livreur"] = now
        values["livreur_assigne_id"] = demande.livreur_assigne_id or user.id
    elif step.action == Action.LIVRER:
        values["date_livraison"] = now

    await _apply_status(
        db,
        demande,
        expected_status=current,
        expected_version=demande.version,
        values=values,
    )
    _record_step(
        db,
        demande.id,
        user,
        action=str(step.action),
        label=f"{str(step.action).capitalize()} ({role_label(user.role)})",
        ancien=current,
        nouveau=step.next_status,
        commentaire=commentaire,
        details={"quantites": {str(k): v for k, v in quantites.items()}} if quantites else None,
    )
    await db.commit()
    await db.refresh(demande)
    logger.info(
        "demande action numero=%s action=%s %s->%s by=%s",
        demande.numero,
        step.action,
        current,
        demande.status,
        user.id,
    )
    return await _notify_next_actor(db, demande, user)


async def _reject(db: AsyncSession, demande: Demande, user: User, motif: str | None) -> WorkflowOutcome:
    current = demande.status
    requester_at_final = (
        current == DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR and demande.technicien_id == user.id
    )
    if not (is_authorized(user.role, current, demande.type, Action.REJETER) or requester_at_final):
        raise AuthorizationError("Action non autorisée pour ce rôle et statut")

    plan = plan_rejection(
        numero=demande.numero,
        current=current,
        type_=demande.type,
        nombre_rejets=demande.nombre_rejets,
        motif=motif,
        max_rejections=settings.max_rejections,
    )
    await _apply_status(
        db,
        demande,
        expected_status=current,
        expected_version=demande.version,
        values={
            "status": plan.new_status,
            "status_precedent": plan.status_precedent,
            "nombre_rejets": plan.nombre_rejets,
            "rejet_motif": plan.motif,
        },
    )
    _record_step(
        db,
        demande.id,
        user,
        action="rejet",
        label=f"Rejet ({role_label(user.role)})",
        ancien=current,
        nouveau=plan.new_status,
        commentaire=plan.motif,
        details={"nombre_rejets": plan.nombre_rejets},
    )
    await db.commit()
    await db.refresh(demande)
    logger.info(
        "demande rejected numero=%s %s->%s count=%s",
        demande.numero,
        current,
        demande.status,
        demande.nombre_rejets,
    )

    message = rejection_message(demande.numero, user.role, plan.motif)
    if plan.terminal:
        titre = "Demande rejetée"
        requester = await _requester(db, demande)
        notified = await _notify(
            db, demande, titre=titre, message=message, actor=user, users=[requester] if requester else []
        )
    else:
        titre = "Demande rejetée - correction requise"
        notified = await _notify(db, demande, titre=titre, message=message, actor=user, role=plan.notify_role)
    return WorkflowOutcome(demande=demande, notified=notified, titre=titre, message=message)


async def active_sous_demandes(db: AsyncSession, demande_id: uuid.UUID) -> list[str]:
    res = await db.execute(
        select(Demande.numero).where(
            Demande.demande_parent_id == demande_id,
            Demande.status.not_in([str(s) for s in TERMINAL_STATUSES]),
        )
    )
    return list(res.scalars().all())


async def _close(db: AsyncSession, demande: Demande, user: User, commentaire: str | None) -> WorkflowOutcome:
    if demande.technicien_id != user.id:
        raise AuthorizationError("Seul le demandeur peut clôturer la demande")
    current = demande.status
    if current != DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR:
        raise StateError(f"La demande {demande.numero} n'est pas en attente de validation finale")
    active = await active_sous_demandes(db, demande.id)
    if active:
        raise ActiveSubRequestsError(demande.numero, active)

    for item in await load_items(db, demande.id):
        if item.quantite_recue is None:
            if item.quantite_sortie is not None:
                item.quantite_recue = item.quantite_sortie
            elif item.quantite_validee is not None:
                item.quantite_recue = item.quantite_validee
            else:
                item.quantite_recue = item.quantite_demandee

    now = _utcnow()
    await _apply_status(
        db,
        demande,
        expected_status=current,
        expected_version=demande.version,
        values={"status": DemandeStatus.CLOTUREE, "status_precedent": None, "date_cloture": now},
    )
    _record_step(
        db,
        demande.id,
        user,
        action="cloture",
        label="Clôture par le demandeur",
        ancien=current,
        nouveau=DemandeStatus.CLOTUREE,
        commentaire=commentaire,
    )
    await db.commit()
    await db.refresh(demande)
    logger.info("demande closed numero=%s", demande.numero)
    return WorkflowOutcome(demande=demande)


async def override_status(
    db: AsyncSession,
    *,
    demande_id: uuid.UUID,
    user: User,
    target: DemandeStatus | str,
    commentaire: str | None = None,
    notifier_valideurs: bool = True,
) -> WorkflowOutcome:
    if user.role != Role.SUPERADMIN:
        raise AuthorizationError("Seul un super administrateur peut forcer un statut")
    try:
        target = DemandeStatus(target)
    except ValueError:
        raise WorkflowValidationError(f"Statut inconnu: {target}")

    demande = await get_demande(db, demande_id)
    current = demande.status
    if target == current:
        raise StateError(f"La demande {demande.numero} est déjà au statut {target}")

    skipped = skipped_by_override(current, target, demande.type)
    values: dict[str, Any] = {"status": target, "status_precedent": None}
    if target == DemandeStatus.CLOTUREE:
        values["date_cloture"] = _utcnow()

    await _apply_status(
        db,
        demande,
        expected_status=current,
        expected_version=demande.version,
        values=values,
    )
    _record_step(
        db,
        demande.id,
        user,
        action="forcage",
        label="Changement de statut forcé (super administrateur)",
        ancien=current,
        nouveau=target,
        commentaire=commentaire,
        details={"validateurs_sautes": [str(role) for role in skipped]},
    )
    await db.commit()
    await db.refresh(demande)
    logger.info("demande status forced numero=%s %s->%s skipped=%s", demande.numero, current, target, skipped)

    notified: list[User] = []
    if notifier_valideurs:
        message = (
            f"La demande {demande.numero} a été passée au statut {target} par un super administrateur; "
            "votre validation n'est plus requise."
        )
        for role in skipped:
            notified += await _notify(
                db, demande, titre="Validation sautée", message=message, actor=user, role=role
            )
    outcome = await _notify_next_actor(db, demande, user)
    outcome.notified = notified + outcome.notified
    return outcome


async def _add_sous_demande(
    db: AsyncSession,
    parent: Demande,
    user: User,
    items: list[ItemDemande],
    *,
    outstanding: dict[uuid.UUID, int],
    sous_demande_id: uuid.UUID,
    sous_numero: str,
) -> None:
    statut = PREPARATION_STATUS[DemandeType(parent.type)]
    db.add(
        Demande(
            id=sous_demande_id,
            numero=sous_numero,
            type=parent.type,
            type_demande=TypeDemande.SOUS_DEMANDE,
            demande_parent_id=parent.id,
            motif_sous_demande=f"Quantités manquantes après réception de {parent.numero}",
            status=statut,
            nombre_rejets=0,
            version=1,
            technicien_id=parent.technicien_id,
            projet_id=parent.projet_id,
            date_creation=_utcnow(),
            date_modification=_utcnow(),
        )
    )
    await db.flush()
    db.add_all(
        [
            ItemDemande(
                demande_id=sous_demande_id,
                article_id=item.article_id,
                reference=item.reference,
                designation=item.designation,
                unite=item.unite,
                quantite_demandee=outstanding[item.id],
                quantite_validee=outstanding[item.id],
                prix_unitaire=item.prix_unitaire,
                commentaire=item.commentaire,
                ordre=index,
            )
            for index, item in enumerate(items)
            if outstanding.get(item.id, 0) > 0
        ]
    )
    db.add(
        HistoryEntry(
            demande_id=sous_demande_id,
            user_id=user.id,
            action=f"Création de la sous-demande (parent {parent.numero})",
            ancien_status=None,
            nouveau_status=statut,
            details={"demande_parent_id": str(parent.id)},
            timestamp=_utcnow(),
        )
    )


async def validate_reception(
    db: AsyncSession,
    *,
    demande_id: uuid.UUID,
    user: User,
    payload: ReceptionIn,
) -> WorkflowOutcome:
    demande = await get_demande_for_user(db, demande_id, user)
    if demande.technicien_id != user.id and user.role != Role.SUPERADMIN:
        raise AuthorizationError("Seul le demandeur peut valider la réception")
    current = demande.status
    if current != DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR:
        raise StateError(f"La demande {demande.numero} n'est pas en attente de réception")
    deja_validee = await db.execute(
        select(ValidationReception.id)
        .where(
            ValidationReception.demande_id == demande.id,
            ValidationReception.statut != str(StatutReception.REFUSEE_TOTALE),
        )
        .limit(1)
    )
    if deja_validee.scalar_one_or_none() is not None:
        raise StateError(f"La réception de la demande {demande.numero} a déjà été validée")

    items = await load_items(db, demande.id)
    by_id = {item.id: item for item in items}
    provided = {entry.item_id: entry for entry in payload.items}
    unknown = [str(item_id) for item_id in provided if item_id not in by_id]
    if unknown:
        raise WorkflowValidationError(f"Articles inconnus pour cette demande: {', '.join(unknown)}")

    entries = []
    for item in items:
        validee = item.quantite_validee if item.quantite_validee is not None else item.quantite_demandee
        entry = provided.get(item.id)
        if entry is None:
            entries.append(ReceptionInput(item_id=item.id, quantite_validee=validee, quantite_recue=validee))
            continue
        entries.append(
            ReceptionInput(
                item_id=item.id,
                quantite_validee=validee,
                quantite_recue=entry.quantite_recue,
                quantite_acceptee=entry.quantite_acceptee,
                motif_refus=entry.motif_refus,
                commentaire=entry.commentaire,
                photos=tuple(entry.photos),
            )
        )
    result = evaluate_reception(
        entries,
        refuser_tout=payload.refuser_tout,
        commentaire_general=payload.commentaire_general,
    )

    type_ = DemandeType(demande.type)
    numero = demande.numero
    expected_version = demande.version
    refusee = result.statut == StatutReception.REFUSEE_TOTALE
    new_status = PREPARATION_STATUS[type_] if refusee else DemandeStatus(current)
    values: dict[str, Any] = {"date_validation_finale": _utcnow()}
    if refusee:
        values.update({"status": new_status, "status_precedent": current})
    acceptees = {line.item_id: line.quantite_acceptee for line in result.lines}

    max_attempts = settings.numero_max_attempts
    last_error: Exception | None = None
    for attempt in range(max_attempts + 1):
        validation_id = uuid.uuid4()
        sous_demande_id: uuid.UUID | None = None
        sous_numero: str | None = None
        try:
            items = await load_items(db, demande.id)
            for item in items:
                if refusee:
                    item.quantite_sortie = None
                    item.quantite_recue = None
                else:
                    item.quantite_recue = acceptees[item.id]

            if result.needs_sous_demande:
                if attempt < max_attempts:
                    sous_numero = await generate_sous_demande_numero(db, demande)
                else:
                    sous_numero = fallback_sous_demande_numero(demande)
                sous_demande_id = uuid.uuid4()
                await _add_sous_demande(
                    db,
                    demande,
                    user,
                    items,
                    outstanding=result.outstanding,
                    sous_demande_id=sous_demande_id,
                    sous_numero=sous_numero,
                )

            await _apply_status(
                db,
                demande,
                expected_status=current,
                expected_version=expected_version,
                values=values,
            )
            validation = ValidationReception(
                id=validation_id,
                demande_id=demande_id,
                valide_par=user.id,
                statut=str(result.statut),
                refuser_tout=result.refuser_tout,
                commentaire_general=payload.commentaire_general,
                sous_demande_id=sous_demande_id,
            )
            db.add(validation)
            await db.flush()
            db.add_all(
                [
                    ValidationItem(
                        validation_id=validation_id,
                        item_id=line.item_id,
                        quantite_validee=line.quantite_validee,
                        quantite_recue=line.quantite_recue,
                        quantite_acceptee=line.quantite_acceptee,
                        quantite_refusee=line.quantite_refusee,
                        statut=str(line.statut),
                        motif_refus=str(line.motif_refus) if line.motif_refus else None,
                        commentaire=line.commentaire,
                        photos=list(line.photos),
                    )
                    for line in result.lines
                ]
            )
            _record_step(
                db,
                demande_id,
                user,
                action="reception",
                label=f"Validation de réception: {result.statut}",
                ancien=current,
                nouveau=new_status,
                commentaire=payload.commentaire_general,
                details={"sous_demande": sous_numero} if sous_numero else None,
            )
            await db.commit()
            last_error = None
            break
        except IntegrityError as exc:
            last_error = exc
            await _rollback(db, demande, user)
            logger.warning("sous-demande numero collision numero=%s attempt=%s", numero, attempt + 1)
            await asyncio.sleep(settings.numero_retry_backoff_ms * (attempt + 1) / 1000)

    if last_error is not None:
        raise SequenceExhaustedError(f"Impossible d'attribuer un numéro à la sous-demande de {numero}")

    await db.refresh(demande)
    await db.refresh(validation)
    logger.info("reception validated numero=%s statut=%s sous_demande=%s", numero, result.statut, sous_numero)

    outcome = WorkflowOutcome(demande=demande, validation=validation)
    role = PREPARATION_ROLE[type_]
    if result.statut == StatutReception.REFUSEE_TOTALE:
        outcome.titre = "Livraison refusée"
        outcome.message = f"La livraison de la demande {numero} a été refusée: {payload.commentaire_general or '-'}"
        outcome.notified = await _notify(db, demande, titre=outcome.titre, message=outcome.message, actor=user, role=role)
    elif sous_demande_id is not None:
        outcome.sous_demande = await get_demande(db, sous_demande_id)
        outcome.titre = "Sous-demande à préparer"
        outcome.message = f"La sous-demande {sous_numero} couvre les quantités manquantes de {numero}."
        outcome.notified = await _notify(
            db, outcome.sous_demande, titre=outcome.titre, message=outcome.message, actor=user, role=role
        )
    return outcome


async def delivered_quantities(db: AsyncSession, demande_id: uuid.UUID) -> dict[uuid.UUID, int]:
    res = await db.execute(
        select(ItemLivraison.item_demande_id, func.coalesce(func.sum(ItemLivraison.quantite_livree), 0))
        .join(Livraison, Livraison.id == ItemLivraison.livraison_id)
        .where(Livraison.demande_id == demande_id)
        .group_by(ItemLivraison.item_demande_id)
    )
    return {row[0]: int(row[1]) for row in res.all()}


async def record_livraison(
    db: AsyncSession,
    *,
    demande_id: uuid.UUID,
    user: User,
    payload: LivraisonIn,
) -> WorkflowOutcome:
    demande = await get_demande_for_user(db, demande_id, user)
    type_ = DemandeType(demande.type)
    if user.role != Role.SUPERADMIN and user.role != PREPARATION_ROLE[type_]:
        raise AuthorizationError("Seul le responsable de la préparation peut enregistrer une livraison")
    current = demande.status
    if current != PREPARATION_STATUS[type_]:
        raise StateError(f"La demande {demande.numero} n'est pas en préparation")

    if payload.livreur_id is not None:
        res = await db.execute(select(User).where(User.id == payload.livreur_id))
        livreur = res.scalar_one_or_none()
        if livreur is None or livreur.role != Role.RESPONSABLE_LIVREUR:
            raise WorkflowValidationError("Le livreur désigné est invalide")

    items = await load_items(db, demande.id)
    by_id = {item.id: item for item in items}
    unknown = [str(line.item_id) for line in payload.items if line.item_id not in by_id]
    if unknown:
        raise WorkflowValidationError(f"Articles inconnus pour cette demande: {', '.join(unknown)}")

    delivered = await delivered_quantities(db, demande.id)
    for line in payload.items:
        item = by_id[line.item_id]
        validee = item.quantite_validee if item.quantite_validee is not None else item.quantite_demandee
        if delivered.get(item.id, 0) + line.quantite > validee:
            raise WorkflowValidationError(
                f"La quantité livrée dépasse la quantité validée pour {item.designation}"
            )
        delivered[item.id] = delivered.get(item.id, 0) + line.quantite

    livraison = Livraison(
        id=uuid.uuid4(),
        demande_id=demande.id,
        livreur_id=payload.livreur_id,
        prepare_par=user.id,
        commentaire=payload.commentaire,
    )
    db.add(livraison)
    await db.flush()
    db.add_all(
        [
            ItemLivraison(livraison_id=livraison.id, item_demande_id=line.item_id, quantite_livree=line.quantite)
            for line in payload.items
        ]
    )
    for item in items:
        if item.id in delivered:
            item.quantite_sortie = delivered[item.id]

    progress = delivery_status(items, delivered)
    values: dict[str, Any] = {}
    new_status = current
    if progress.complete:
        new_status = DemandeStatus.EN_ATTENTE_RECEPTION_LIVREUR
        values = {
            "status": new_status,
            "status_precedent": None,
            "date_sortie": _utcnow(),
            "livreur_assigne_id": payload.livreur_id or demande.livreur_assigne_id,
        }
    await _apply_status(
        db,
        demande,
        expected_status=current,
        expected_version=demande.version,
        values=values,
    )
    _record_step(
        db,
        demande.id,
        user,
        action="preparer" if progress.complete else "livraison_partielle",
        label="Préparation terminée" if progress.complete else f"Livraison partielle préparée ({progress.pourcentage}%)",
        ancien=current,
        nouveau=new_status,
        commentaire=payload.commentaire,
    )
    await db.commit()
    await db.refresh(demande)
    await db.refresh(livraison)
    logger.info(
        "livraison recorded numero=%s pourcentage=%s complete=%s",
        demande.numero,
        progress.pourcentage,
        progress.complete,
    )

    if not progress.complete:
        return WorkflowOutcome(demande=demande, livraison=livraison, delivery=progress)
    outcome = await _notify_next_actor(db, demande, user)
    outcome.livraison = livraison
    outcome.delivery = progress
    return outcome


async def delivery_progress(db: AsyncSession, *, demande_id: uuid.UUID, user: User) -> DeliveryStatus:
    demande = await get_demande_for_user(db, demande_id, user)
    items = await load_items(db, demande.id)
    return delivery_status(items, await delivered_quantities(db, demande.id))


async def delete_demande(db: AsyncSession, *, demande_id: uuid.UUID, user: User) -> None:
    demande = await get_demande(db, demande_id)
    admin = is_admin(user)
    if demande.technicien_id != user.id and not admin:
        raise AuthorizationError("Seul le demandeur ou un administrateur peut supprimer la demande")
    if not admin and demande.status not in DELETABLE_STATUSES:
        raise StateError(
            f"La demande {demande.numero} ne peut plus être supprimée au statut {demande.status}"
        )
    res = await db.execute(select(func.count()).select_from(Demande).where(Demande.demande_parent_id == demande.id))
    if res.scalar_one() > 0:
        raise StateError(f"La demande {demande.numero} possède des sous-demandes")

    numero = demande.numero
    livraison_ids = select(Livraison.id).where(Livraison.demande_id == demande.id)
    validation_ids = select(ValidationReception.id).where(ValidationReception.demande_id == demande.id)
    await db.execute(delete(ItemLivraison).where(ItemLivraison.livraison_id.in_(livraison_ids)))
    await db.execute(delete(Livraison).where(Livraison.demande_id == demande.id))
    await db.execute(delete(ValidationItem).where(ValidationItem.validation_id.in_(validation_ids)))
    await db.execute(delete(ValidationReception).where(ValidationReception.demande_id == demande.id))
    await db.execute(
        update(ValidationReception)
        .where(ValidationReception.sous_demande_id == demande.id)
        .values(sous_demande_id=None)
    )
    await db.execute(
        update(Notification).where(Notification.demande_id == demande.id).values(demande_id=None)
    )
    await db.execute(delete(HistoryEntry).where(HistoryEntry.demande_id == demande.id))
    await db.execute(delete(ValidationSignature).where(ValidationSignature.demande_id == demande.id))
    await db.execute(delete(ItemDemande).where(ItemDemande.demande_id == demande.id))
    await db.delete(demande)
    await db.commit()
    logger.info("demande deleted numero=%s by=%s", numero, user.id)


def _statuses_for_role(role: str) -> list[str]:
    statuses = set()
    for steps in FLOWS.values():
        for step in steps:
            if step.role == role:
                statuses.add(str(step.status))
    return sorted(statuses)


async def list_demandes(
    db: AsyncSession,
    *,
    user: User,
    status: str | None = None,
    projet_id: uuid.UUID | None = None,
    type_: str | None = None,
    a_traiter: bool = False,
    limit: int | None = 200,
    offset: int = 0,
) -> list[Demande]:
    query = select(Demande)
    if not is_admin(user):
        member_projects = select(projet_membres.c.projet_id).where(projet_membres.c.user_id == user.id)
        query = query.where(or_(Demande.technicien_id == user.id, Demande.projet_id.in_(member_projects)))
    if status:
        query = query.where(Demande.status == status)
    if projet_id:
        query = query.where(Demande.projet_id == projet_id)
    if type_:
        query = query.where(Demande.type == type_)
    if a_traiter:
        own_final = (Demande.technicien_id == user.id) & (
            Demande.status == DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR
        )
        query = query.where(or_(Demande.status.in_(_statuses_for_role(user.role)), own_final))
    query = query.order_by(Demande.date_creation.desc()).offset(offset)
    if limit is not None:
        query = query.limit(limit)
    res = await db.execute(query)
    return list(res.scalars().all())


async def historique(db: AsyncSession, *, demande_id: uuid.UUID, user: User) -> list[HistoryEntry]:
    await get_demande_for_user(db, demande_id, user)
    res = await db.execute(
        select(HistoryEntry).where(HistoryEntry.demande_id == demande_id).order_by(HistoryEntry.timestamp)
    )
    return list(res.scalars().all())


async def validation_items(db: AsyncSession, validation_id: uuid.UUID) -> list[ValidationItem]:
    res = await db.execute(select(ValidationItem).where(ValidationItem.validation_id == validation_id))
    return list(res.scalars().all())
