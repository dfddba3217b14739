from __future__ import annotations

from gestion_demandes.workflow.enums import Action, DemandeStatus, DemandeType, Role
from gestion_demandes.workflow.flows import flow_for, step_at
from gestion_demandes.workflow.permissions import allowed_actions


def next_status(
    current: DemandeStatus | str,
    acting_role: Role | str,
    type_: DemandeType | str,
    action: Action | str | None = None,
) -> DemandeStatus | None:
    """Status reached when ``acting_role`` moves the demande forward.

    Returns None when the role does not own the current step, when ``action``
    is not the step's forward action, or when the status is terminal.
    """
    step = step_at(current, type_)
    if step is None or step.role != acting_role:
        return None
    if action is not None and action != step.action:
        return None
    return step.next_status


def previous_status(current: DemandeStatus | str, type_: DemandeType | str) -> DemandeStatus | None:
    """Status a rejection rolls back to; None from the first step or outside the flow."""
    steps = flow_for(type_)
    if current == DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR:
        return steps[-1].status
    for index, step in enumerate(steps):
        if step.status == current:
            return steps[index - 1].status if index > 0 else None
    return None


def previous_validator_role(current: DemandeStatus | str, type_: DemandeType | str) -> Role | None:
    previous = previous_status(current, type_)
    if previous is None:
        return None
    step = step_at(previous, type_)
    return step.role if step is not None else None


def is_authorized(
    role: Role | str,
    current: DemandeStatus | str,
    type_: DemandeType | str,
    action: Action | str,
) -> bool:
    if role == Role.SUPERADMIN:
        return True
    return action in allowed_actions(role, current, type_)


def skipped_by_override(
    current: DemandeStatus | str,
    target: DemandeStatus | str,
    type_: DemandeType | str,
) -> list[Role]:
    """Validator roles whose step is jumped over when forcing ``current`` -> ``target``.

    Only forward jumps along the flow skip anyone; backward or off-flow targets
    return an empty list.
    """
    steps = flow_for(type_)
    positions = {step.status: index for index, step in enumerate(steps)}
    start = positions.get(DemandeStatus(current))
    if start is None:
        return []
    if target == DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR or target in (
        DemandeStatus.CONFIRMEE_DEMANDEUR,
        DemandeStatus.CLOTUREE,
    ):
        end = len(steps)
    else:
        end = positions.get(DemandeStatus(target))
        if end is None or end <= start:
            return []
    skipped: list[Role] = []
    for step in steps[start:end]:
        if step.role not in skipped:
            skipped.append(step.role)
    return skipped
