"""Role x type x status permission table.

The table is derived once from the flow definitions: the role owning a flow
step may perform the step's action and may reject the demande back one step.
The requester's own decisions at the final status are identity based and are
handled by the orchestrator, not by this table.
"""

from __future__ import annotations

from dataclasses import dataclass

from gestion_demandes.workflow.enums import Action, DemandeStatus, DemandeType, Role
from gestion_demandes.workflow.flows import FLOWS


def _build_table() -> dict[tuple[Role, DemandeType, DemandeStatus], frozenset[Action]]:
    table: dict[tuple[Role, DemandeType, DemandeStatus], frozenset[Action]] = {}
    for type_, steps in FLOWS.items():
        for step in steps:
            table[(step.role, type_, step.status)] = frozenset({step.action, Action.REJETER})
    return table


PERMISSIONS = _build_table()


def allowed_actions(role: Role | str, status: DemandeStatus | str, type_: DemandeType | str) -> frozenset[Action]:
    try:
        key = (Role(role), DemandeType(type_), DemandeStatus(status))
    except ValueError:
        return frozenset()
    return PERMISSIONS.get(key, frozenset())


def can_act_on(role: Role | str, status: DemandeStatus | str, type_: DemandeType | str) -> bool:
    """True when ``role`` owns the step at ``status`` for this demande type."""
    return bool(allowed_actions(role, status, type_))


@dataclass(frozen=True)
class ModificationPermissions:
    quantities: bool
    articles: bool
    comments: bool
    date_besoin: bool


_FULL = ModificationPermissions(quantities=True, articles=True, comments=True, date_besoin=True)

MODIFICATION_PERMISSIONS: dict[Role, ModificationPermissions] = {
    Role.SUPERADMIN: _FULL,
    Role.CONDUCTEUR_TRAVAUX: _FULL,
    Role.RESPONSABLE_LOGISTIQUE: _FULL,
    Role.RESPONSABLE_TRAVAUX: _FULL,
    Role.CHARGE_AFFAIRE: ModificationPermissions(quantities=True, articles=True, comments=True, date_besoin=False),
    Role.RESPONSABLE_APPRO: ModificationPermissions(quantities=True, articles=True, comments=True, date_besoin=False),
    Role.RESPONSABLE_LIVREUR: ModificationPermissions(
        quantities=True, articles=False, comments=True, date_besoin=False
    ),
}

_DEFAULT_MODIFICATION = ModificationPermissions(quantities=False, articles=False, comments=True, date_besoin=False)


def modification_permissions(role: Role | str) -> ModificationPermissions:
    try:
        return MODIFICATION_PERMISSIONS.get(Role(role), _DEFAULT_MODIFICATION)
    except ValueError:
        return _DEFAULT_MODIFICATION


def can_see_costs(role: Role | str, cost_visible_roles: set[str] | frozenset[str]) -> bool:
    return role == Role.SUPERADMIN or role in cost_visible_roles
