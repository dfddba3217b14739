from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from gestion_demandes.schemas.base import DecimalBaseModel
from gestion_demandes.workflow.enums import Action, DemandeStatus, DemandeType, MotifRefus


class ItemDemandeCreate(DecimalBaseModel):
    designation: str = Field(min_length=1, max_length=255)
    quantite_demandee: int = Field(gt=0)
    reference: str | None = None
    article_id: str | None = None
    unite: str = "piece"
    prix_unitaire: Decimal | None = Field(default=None, ge=0)
    commentaire: str | None = None


class DemandeCreate(DecimalBaseModel):
    type: DemandeType
    projet_id: uuid.UUID
    items: list[ItemDemandeCreate] = Field(min_length=1)
    commentaires: str | None = None
    date_livraison_souhaitee: datetime | None = None
    brouillon: bool = False


class DemandeActionIn(BaseModel):
    action: Action
    commentaire: str | None = None
    # item id -> new quantity for the stage the action owns
    quantites: dict[uuid.UUID, int] | None = None

    @field_validator("quantites")
    @classmethod
    def validate_quantites(cls, value: dict[uuid.UUID, int] | None):
        if value is None:
            return value
        if any(q < 0 for q in value.values()):
            raise ValueError("Les quantités doivent être positives")
        return value


class OverrideStatusIn(BaseModel):
    status: DemandeStatus
    commentaire: str | None = None
    notifier_valideurs: bool = True


class ReceptionItemIn(BaseModel):
    item_id: uuid.UUID
    quantite_recue: int = Field(ge=0)
    quantite_acceptee: int | None = Field(default=None, ge=0)
    motif_refus: MotifRefus | None = None
    commentaire: str | None = None
    photos: list[str] = []


class ReceptionIn(BaseModel):
    items: list[ReceptionItemIn] = []
    refuser_tout: bool = False
    commentaire_general: str | None = None


class LivraisonItemIn(BaseModel):
    item_id: uuid.UUID
    quantite: int = Field(gt=0)


class LivraisonIn(BaseModel):
    items: list[LivraisonItemIn] = Field(min_length=1)
    livreur_id: uuid.UUID | None = None
    commentaire: str | None = None


class ItemDemandeOut(DecimalBaseModel):
    id: str
    article_id: str | None = None
    reference: str | None = None
    designation: str
    unite: str
    quantite_demandee: int
    quantite_validee: int | None = None
    quantite_sortie: int | None = None
    quantite_recue: int | None = None
    prix_unitaire: Decimal | None = None
    commentaire: str | None = None


class DemandeOut(DecimalBaseModel):
    id: str
    numero: str
    type: str
    type_demande: str
    demande_parent_id: str | None = None
    motif_sous_demande: str | None = None
    status: str
    status_precedent: str | None = None
    nombre_rejets: int
    rejet_motif: str | None = None
    technicien_id: str
    projet_id: str
    livreur_assigne_id: str | None = None
    commentaires: str | None = None
    cout_total: Decimal | None = None
    version: int
    date_creation: datetime
    date_modification: datetime
    date_livraison_souhaitee: datetime | None = None
    date_cloture: datetime | None = None
    items: list[ItemDemandeOut] = []


class HistoryEntryOut(BaseModel):
    id: str
    user_id: str | None = None
    action: str
    ancien_status: str | None = None
    nouveau_status: str | None = None
    commentaire: str | None = None
    signature: str | None = None
    details: dict | None = None
    timestamp: datetime


class ItemReconciliationOut(BaseModel):
    item_id: str
    demandee: int
    validee: int
    sortie: int
    recue: int
    ecart_validation: int
    ecart_stock: int
    ecart_livraison: int
    ecart_total: int
    anomalies: list[str] = []


class ReconciliationOut(DecimalBaseModel):
    items: list[ItemReconciliationOut]
    total_demandee: int
    total_validee: int
    total_sortie: int
    total_recue: int
    ecart_total: int
    sous_demande_requise: bool
    cout_total: Decimal | None = None


class ValidationItemOut(BaseModel):
    item_id: str
    quantite_validee: int
    quantite_recue: int
    quantite_acceptee: int
    quantite_refusee: int
    statut: str
    motif_refus: str | None = None
    commentaire: str | None = None
    photos: list[str] = []


class ValidationReceptionOut(BaseModel):
    id: str
    demande_id: str
    statut: str
    refuser_tout: bool
    commentaire_general: str | None = None
    sous_demande_id: str | None = None
    sous_demande_numero: str | None = None
    demande_status: str
    items: list[ValidationItemOut] = []


class LivraisonLineOut(BaseModel):
    item_id: str
    validee: int
    livree: int
    restante: int


class LivraisonOut(BaseModel):
    livraison_id: str | None = None
    demande_status: str
    lignes: list[LivraisonLineOut]
    total_validee: int
    total_livree: int
    pourcentage: int
    complete: bool
