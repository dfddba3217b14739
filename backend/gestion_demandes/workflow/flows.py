from __future__ import annotations

from dataclasses import dataclass

from gestion_demandes.workflow.enums import Action, DemandeStatus, DemandeType, Role


@dataclass(frozen=True)
class FlowStep:
    """One actionable position of a flow: who acts at ``status`` and where it leads."""

    status: DemandeStatus
    role: Role
    action: Action
    next_status: DemandeStatus
    # Validation steps are the ones an approval hierarchy can auto-skip at creation.
    validation: bool = False


S = DemandeStatus

MATERIEL_FLOW: tuple[FlowStep, ...] = (
    FlowStep(
        S.EN_ATTENTE_VALIDATION_CONDUCTEUR,
        Role.CONDUCTEUR_TRAVAUX,
        Action.VALIDER,
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        Role.RESPONSABLE_TRAVAUX,
        Action.VALIDER,
        S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
        Role.CHARGE_AFFAIRE,
        Action.VALIDER,
        S.EN_ATTENTE_PREPARATION_APPRO,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_PREPARATION_APPRO,
        Role.RESPONSABLE_APPRO,
        Action.PREPARER,
        S.EN_ATTENTE_RECEPTION_LIVREUR,
    ),
    FlowStep(
        S.EN_ATTENTE_RECEPTION_LIVREUR,
        Role.RESPONSABLE_LIVREUR,
        Action.RECEPTIONNER,
        S.EN_ATTENTE_LIVRAISON,
    ),
    FlowStep(
        S.EN_ATTENTE_LIVRAISON,
        Role.RESPONSABLE_LIVREUR,
        Action.LIVRER,
        S.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR,
    ),
)

OUTILLAGE_FLOW: tuple[FlowStep, ...] = (
    FlowStep(
        S.EN_ATTENTE_VALIDATION_LOGISTIQUE,
        Role.RESPONSABLE_LOGISTIQUE,
        Action.VALIDER,
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        Role.RESPONSABLE_TRAVAUX,
        Action.VALIDER,
        S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
        Role.CHARGE_AFFAIRE,
        Action.VALIDER,
        S.EN_ATTENTE_PREPARATION_LOGISTIQUE,
        validation=True,
    ),
    FlowStep(
        S.EN_ATTENTE_PREPARATION_LOGISTIQUE,
        Role.RESPONSABLE_LOGISTIQUE,
        Action.PREPARER,
        S.EN_ATTENTE_RECEPTION_LIVREUR,
    ),
    FlowStep(
        S.EN_ATTENTE_RECEPTION_LIVREUR,
        Role.RESPONSABLE_LIVREUR,
        Action.RECEPTIONNER,
        S.EN_ATTENTE_LIVRAISON,
    ),
    FlowStep(
        S.EN_ATTENTE_LIVRAISON,
        Role.RESPONSABLE_LIVREUR,
        Action.LIVRER,
        S.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR,
    ),
)

FLOWS: dict[DemandeType, tuple[FlowStep, ...]] = {
    DemandeType.MATERIEL: MATERIEL_FLOW,
    DemandeType.OUTILLAGE: OUTILLAGE_FLOW,
}

# Ascending authority; a creator outranks every role listed before their own.
VALIDATION_HIERARCHY: dict[DemandeType, tuple[Role, ...]] = {
    DemandeType.MATERIEL: (
        Role.CONDUCTEUR_TRAVAUX,
        Role.RESPONSABLE_TRAVAUX,
        Role.CHARGE_AFFAIRE,
    ),
    DemandeType.OUTILLAGE: (
        Role.RESPONSABLE_TRAVAUX,
        Role.CHARGE_AFFAIRE,
    ),
}

PREPARATION_STATUS: dict[DemandeType, DemandeStatus] = {
    DemandeType.MATERIEL: S.EN_ATTENTE_PREPARATION_APPRO,
    DemandeType.OUTILLAGE: S.EN_ATTENTE_PREPARATION_LOGISTIQUE,
}

PREPARATION_ROLE: dict[DemandeType, Role] = {
    DemandeType.MATERIEL: Role.RESPONSABLE_APPRO,
    DemandeType.OUTILLAGE: Role.RESPONSABLE_LOGISTIQUE,
}


def flow_for(type_: DemandeType | str) -> tuple[FlowStep, ...]:
    return FLOWS[DemandeType(type_)]


def step_at(status: DemandeStatus | str, type_: DemandeType | str) -> FlowStep | None:
    for step in flow_for(type_):
        if step.status == status:
            return step
    return None


def first_step(type_: DemandeType | str) -> FlowStep:
    return flow_for(type_)[0]


def outranks(creator_role: Role | str, validator_role: Role | str, type_: DemandeType | str) -> bool:
    hierarchy = VALIDATION_HIERARCHY[DemandeType(type_)]
    if creator_role not in hierarchy or validator_role not in hierarchy:
        return False
    return hierarchy.index(creator_role) > hierarchy.index(validator_role)
