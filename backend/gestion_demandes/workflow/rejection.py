from __future__ import annotations

from dataclasses import dataclass

from gestion_demandes.workflow.enums import DemandeStatus, DemandeType, Role, TERMINAL_STATUSES, role_label
from gestion_demandes.workflow.errors import MaxRejectionsError, RejectionReasonRequiredError, StateError
from gestion_demandes.workflow.flows import first_step
from gestion_demandes.workflow.transitions import previous_status, previous_validator_role


@dataclass(frozen=True)
class RejectionPlan:
    new_status: DemandeStatus
    status_precedent: DemandeStatus
    nombre_rejets: int
    motif: str
    # None when the demande is rejected for good and only the requester hears about it.
    notify_role: Role | None
    terminal: bool


def rejection_message(numero: str, rejecting_role: Role | str, motif: str) -> str:
    return (
        f"La demande {numero} a été rejetée par {role_label(rejecting_role)}. "
        f"Motif: {motif}. Veuillez corriger et revalider la demande."
    )


def plan_rejection(
    *,
    numero: str,
    current: DemandeStatus | str,
    type_: DemandeType | str,
    nombre_rejets: int,
    motif: str | None,
    max_rejections: int,
) -> RejectionPlan:
    """Decide where a rejection sends the demande, without touching it.

    Rolls back one step along the flow. Rejecting at the first validation step
    ends the demande in ``rejetee``. The rejection counter is bounded by
    ``max_rejections``; once reached, the demande must be recreated.
    """
    motif = (motif or "").strip()
    if not motif:
        raise RejectionReasonRequiredError()

    current = DemandeStatus(current)
    if current in (DemandeStatus.BROUILLON, DemandeStatus.SOUMISE) or current in TERMINAL_STATUSES:
        raise StateError(f"Impossible de rejeter la demande {numero} au statut {current}")

    if nombre_rejets >= max_rejections:
        raise MaxRejectionsError(numero, max_rejections)

    previous = previous_status(current, type_)
    if previous is None:
        if current != first_step(type_).status:
            raise StateError(f"Aucun statut précédent pour {current}")
        return RejectionPlan(
            new_status=DemandeStatus.REJETEE,
            status_precedent=current,
            nombre_rejets=nombre_rejets + 1,
            motif=motif,
            notify_role=None,
            terminal=True,
        )

    return RejectionPlan(
        new_status=previous,
        status_precedent=current,
        nombre_rejets=nombre_rejets + 1,
        motif=motif,
        notify_role=previous_validator_role(current, type_),
        terminal=False,
    )
