from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SUPERADMIN = "superadmin"
    EMPLOYE = "employe"
    CONDUCTEUR_TRAVAUX = "conducteur_travaux"
    RESPONSABLE_TRAVAUX = "responsable_travaux"
    RESPONSABLE_LOGISTIQUE = "responsable_logistique"
    RESPONSABLE_APPRO = "responsable_appro"
    CHARGE_AFFAIRE = "charge_affaire"
    RESPONSABLE_LIVREUR = "responsable_livreur"


class DemandeType(StrEnum):
    MATERIEL = "materiel"
    OUTILLAGE = "outillage"


class TypeDemande(StrEnum):
    PRINCIPALE = "principale"
    SOUS_DEMANDE = "sous_demande"


class DemandeStatus(StrEnum):
    BROUILLON = "brouillon"
    SOUMISE = "soumise"
    EN_ATTENTE_VALIDATION_CONDUCTEUR = "en_attente_validation_conducteur"
    EN_ATTENTE_VALIDATION_LOGISTIQUE = "en_attente_validation_logistique"
    EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX = "en_attente_validation_responsable_travaux"
    EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE = "en_attente_validation_charge_affaire"
    EN_ATTENTE_PREPARATION_APPRO = "en_attente_preparation_appro"
    EN_ATTENTE_PREPARATION_LOGISTIQUE = "en_attente_preparation_logistique"
    EN_ATTENTE_RECEPTION_LIVREUR = "en_attente_reception_livreur"
    EN_ATTENTE_LIVRAISON = "en_attente_livraison"
    EN_ATTENTE_VALIDATION_FINALE_DEMANDEUR = "en_attente_validation_finale_demandeur"
    CONFIRMEE_DEMANDEUR = "confirmee_demandeur"
    CLOTUREE = "cloturee"
    REJETEE = "rejetee"
    ARCHIVEE = "archivee"


class Action(StrEnum):
    VALIDER = "valider"
    REJETER = "rejeter"
    PREPARER = "preparer"
    RECEPTIONNER = "receptionner"
    LIVRER = "livrer"
    CLOTURER = "cloturer"


class MotifRefus(StrEnum):
    ENDOMMAGE = "endommage"
    NON_CONFORME = "non_conforme"
    MANQUANT = "manquant"
    AUTRE = "autre"


class StatutReception(StrEnum):
    ACCEPTEE_TOTALE = "acceptee_totale"
    ACCEPTEE_PARTIELLE = "acceptee_partielle"
    REFUSEE_TOTALE = "refusee_totale"


class StatutItemReception(StrEnum):
    ACCEPTE_TOTAL = "accepte_total"
    ACCEPTE_PARTIEL = "accepte_partiel"
    REFUSE_TOTAL = "refuse_total"


TERMINAL_STATUSES = frozenset(
    {
        DemandeStatus.CLOTUREE,
        DemandeStatus.REJETEE,
        DemandeStatus.ARCHIVEE,
    }
)

# A non-admin requester may only delete a request before the business manager signs it.
DELETABLE_STATUSES = frozenset(
    {
        DemandeStatus.BROUILLON,
        DemandeStatus.SOUMISE,
        DemandeStatus.EN_ATTENTE_VALIDATION_CONDUCTEUR,
        DemandeStatus.EN_ATTENTE_VALIDATION_LOGISTIQUE,
        DemandeStatus.EN_ATTENTE_VALIDATION_RESPONSABLE_TRAVAUX,
        DemandeStatus.EN_ATTENTE_VALIDATION_CHARGE_AFFAIRE,
    }
)

NUMERO_PREFIXES = {
    DemandeType.MATERIEL: "DA-MAT",
    DemandeType.OUTILLAGE: "DA-OUT",
}

ROLE_LABELS = {
    Role.SUPERADMIN: "Super administrateur",
    Role.EMPLOYE: "Employé",
    Role.CONDUCTEUR_TRAVAUX: "Conducteur de travaux",
    Role.RESPONSABLE_TRAVAUX: "Responsable des travaux",
    Role.RESPONSABLE_LOGISTIQUE: "Responsable logistique",
    Role.RESPONSABLE_APPRO: "Responsable appro",
    Role.CHARGE_AFFAIRE: "Chargé d'affaire",
    Role.RESPONSABLE_LIVREUR: "Responsable livreur",
}


def role_label(role: str | None) -> str:
    if role is None:
        return "Demandeur"
    try:
        return ROLE_LABELS[Role(role)]
    except ValueError:
        return role
