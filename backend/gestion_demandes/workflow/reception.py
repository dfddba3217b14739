"""Requester-side reception check of delivered items.

Quantities are derived from one of two inputs per line. When only the received
quantity is given, everything received is accepted up to the validated
quantity and the gap to the validated quantity counts as refused. When an
accepted quantity is given, it is clamped to what was received and the rest of
the received quantity counts as refused.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from gestion_demandes.workflow.enums import MotifRefus, StatutItemReception, StatutReception
from gestion_demandes.workflow.errors import RefusalReasonRequiredError, WorkflowValidationError


@dataclass(frozen=True)
class ReceptionInput:
    item_id: Any
    quantite_validee: int
    quantite_recue: int
    quantite_acceptee: int | None = None
    motif_refus: MotifRefus | None = None
    commentaire: str | None = None
    photos: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReceptionLine:
    item_id: Any
    quantite_validee: int
    quantite_recue: int
    quantite_acceptee: int
    quantite_refusee: int
    motif_refus: MotifRefus | None
    commentaire: str | None
    photos: tuple[str, ...]

    @property
    def statut(self) -> StatutItemReception:
        if self.quantite_acceptee <= 0:
            return StatutItemReception.REFUSE_TOTAL
        if self.quantite_acceptee >= self.quantite_validee:
            return StatutItemReception.ACCEPTE_TOTAL
        return StatutItemReception.ACCEPTE_PARTIEL

    @property
    def quantite_manquante(self) -> int:
        """Quantity still owed to the requester for this line."""
        return max(self.quantite_validee - self.quantite_acceptee, 0)


@dataclass
class ReceptionResult:
    statut: StatutReception
    lines: list[ReceptionLine] = field(default_factory=list)
    refuser_tout: bool = False

    @property
    def outstanding(self) -> dict[Any, int]:
        return {line.item_id: line.quantite_manquante for line in self.lines if line.quantite_manquante > 0}

    @property
    def needs_sous_demande(self) -> bool:
        return self.statut == StatutReception.ACCEPTEE_PARTIELLE and bool(self.outstanding)


def evaluate_line(entry: ReceptionInput) -> ReceptionLine:
    if entry.quantite_recue < 0 or (entry.quantite_acceptee is not None and entry.quantite_acceptee < 0):
        raise WorkflowValidationError(f"Quantité négative pour l'article {entry.item_id}")

    if entry.quantite_acceptee is None:
        acceptee = min(entry.quantite_recue, entry.quantite_validee)
        refusee = entry.quantite_validee - acceptee
    else:
        acceptee = min(entry.quantite_acceptee, entry.quantite_recue)
        refusee = entry.quantite_recue - acceptee

    if refusee > 0 and entry.motif_refus is None:
        raise RefusalReasonRequiredError(entry.item_id)

    return ReceptionLine(
        item_id=entry.item_id,
        quantite_validee=entry.quantite_validee,
        quantite_recue=entry.quantite_recue,
        quantite_acceptee=acceptee,
        quantite_refusee=refusee,
        motif_refus=entry.motif_refus if refusee > 0 else None,
        commentaire=entry.commentaire,
        photos=entry.photos,
    )


def aggregate_statut(lines: Iterable[ReceptionLine]) -> StatutReception:
    lines = list(lines)
    if all(line.quantite_acceptee >= line.quantite_validee for line in lines):
        return StatutReception.ACCEPTEE_TOTALE
    if all(line.quantite_acceptee <= 0 for line in lines):
        return StatutReception.REFUSEE_TOTALE
    return StatutReception.ACCEPTEE_PARTIELLE


def evaluate_reception(
    entries: Iterable[ReceptionInput],
    *,
    refuser_tout: bool = False,
    commentaire_general: str | None = None,
) -> ReceptionResult:
    entries = list(entries)
    if not entries:
        raise WorkflowValidationError("Aucun article à réceptionner")

    if refuser_tout:
        if not (commentaire_general or "").strip():
            raise WorkflowValidationError("Un commentaire est obligatoire pour refuser toute la livraison")
        lines = [
            ReceptionLine(
                item_id=entry.item_id,
                quantite_validee=entry.quantite_validee,
                quantite_recue=entry.quantite_recue,
                quantite_acceptee=0,
                quantite_refusee=entry.quantite_validee,
                motif_refus=entry.motif_refus or MotifRefus.AUTRE,
                commentaire=entry.commentaire or commentaire_general,
                photos=entry.photos,
            )
            for entry in entries
        ]
        return ReceptionResult(statut=StatutReception.REFUSEE_TOTALE, lines=lines, refuser_tout=True)

    lines = [evaluate_line(entry) for entry in entries]
    return ReceptionResult(statut=aggregate_statut(lines), lines=lines)
