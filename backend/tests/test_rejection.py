import pytest

from gestion_demandes.workflow.enums import DemandeStatus, DemandeType, Role
from gestion_demandes.workflow.errors import MaxRejectionsError, RejectionReasonRequiredError, StateError
from gestion_demandes.workflow.rejection import plan_rejection, rejection_message

S = DemandeStatus


def _plan(current, *, type_=DemandeType.MATERIEL, nombre_rejets=0, motif="fiche technique manquante", max_rejections=3):
    return plan_rejection(
        numero="DA-MAT-2026-0001",
        current=current,
        type_=type_,
        nombre_rejets=nombre_rejets,
        motif=motif,
        max_rejections=max_rejections,
    )


def test_rejection_rolls_back_one_step_and_notifies_previous_validator():
    plan = _plan(S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE)
    assert plan.new_status == S.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX
    assert plan.status_precedent == S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE
    assert plan.nombre_rejets == 1
    assert plan.notify_role == Role.RESPONSABLE_TRAVAUX
    assert not plan.terminal


def test_rejection_from_final_status_goes_back_to_delivery():
    plan = _plan(S.EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR, type_=DemandeType.OUTILLAGE, nombre_rejets=1)
    assert plan.new_status == S.EN_ATTENTE_LIVRAISON
    assert plan.notify_role == Role.RESPONSABLE_LIVREUR
    assert plan.nombre_rejets == 2


def test_rejection_at_first_step_is_terminal():
    plan = _plan(S.EN_ATTENTE_VALIDATION_LOGISTIQUE, type_=DemandeType.OUTILLAGE)
    assert plan.new_status == S.REJETEE
    assert plan.terminal
    assert plan.notify_role is None


@pytest.mark.parametrize("motif", [None, "", "   "])
def test_rejection_requires_a_reason(motif):
    with pytest.raises(RejectionReasonRequiredError) as exc_info:
        _plan(S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE, motif=motif)
    assert exc_info.value.code == "rejection_reason_required"


@pytest.mark.parametrize("current", [S.BROUILLON, S.SOUMISE, S.CLOTUREE, S.REJETEE, S.ARCHIVEE])
def test_rejection_is_refused_outside_the_flow(current):
    with pytest.raises(StateError):
        _plan(current)


def test_rejection_ceiling_is_enforced():
    with pytest.raises(MaxRejectionsError) as exc_info:
        _plan(S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE, nombre_rejets=3)
    assert exc_info.value.limit == 3
    assert "nouvelle demande" in exc_info.value.message

    plan = _plan(S.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE, nombre_rejets=2)
    assert plan.nombre_rejets == 3


def test_rejection_message_names_number_role_and_reason():
    message = rejection_message("DA-MAT-2026-0007", Role.CHARGE_AFFAIRE, "fiche technique manquante")
    assert "DA-MAT-2026-0007" in message
    assert "Chargé d'affaire" in message
    assert "fiche technique manquante" in message
