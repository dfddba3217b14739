from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gestion_demandes.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Demande(Base):
    __tablename__ = "demandes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    numero: Mapped[str] = mapped_column(String(60), nullable=False, unique=True, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    type_demande: Mapped[str] = mapped_column(String(20), nullable=False, default="principale")
    demande_parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("demandes.id"),
        nullable=True,
        index=True,
    )
    motif_sous_demande: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(60), nullable=False, default="brouillon", index=True)
    status_precedent: Mapped[str | None] = mapped_column(String(60), nullable=True)
    nombre_rejets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejet_motif: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Bumped on every status write; paired with status for conditional updates.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    technicien_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    projet_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projets.id"), nullable=False, index=True)
    livreur_assigne_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)

    commentaires: Mapped[str | None] = mapped_column(Text, nullable=True)
    cout_total: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    date_creation: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    date_modification: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    date_livraison_souhaitee: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_sortie: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_reception_livreur: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_livraison: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_validation_finale: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_cloture: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
