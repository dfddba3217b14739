from __future__ import annotations

from dataclasses import dataclass

from gestion_demandes.workflow.enums import DemandeStatus, DemandeType, Role, role_label
from gestion_demandes.workflow.flows import FlowStep, flow_for, outranks


@dataclass(frozen=True)
class SkippedStep:
    status: DemandeStatus
    role: Role
    reason: str


def _skip_reason(step: FlowStep, creator_role: str, type_: DemandeType) -> str | None:
    if step.role == creator_role:
        return f"Auto-validation: le demandeur est {role_label(creator_role)}"
    if outranks(creator_role, step.role, type_):
        return (
            f"Auto-validation: {role_label(step.role)} est subordonné au demandeur "
            f"({role_label(creator_role)})"
        )
    return None


def initial_status(
    type_: DemandeType | str,
    creator_role: Role | str,
) -> tuple[DemandeStatus, list[SkippedStep]]:
    """First status of a newly submitted demande and the steps skipped on the way.

    Steps are walked in flow order; a step is skipped when its validator is the
    creator's own role or a role the creator outranks. The walk stops at the
    first step that is kept. A superadmin never skips anything.
    """
    type_ = DemandeType(type_)
    steps = flow_for(type_)
    if creator_role == Role.SUPERADMIN:
        return steps[0].status, []

    skipped: list[SkippedStep] = []
    for step in steps:
        reason = _skip_reason(step, creator_role, type_)
        if reason is None:
            return step.status, skipped
        skipped.append(SkippedStep(status=step.status, role=step.role, reason=reason))
    return DemandeStatus.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR, skipped
