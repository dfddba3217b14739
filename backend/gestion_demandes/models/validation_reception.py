from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gestion_demandes.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationReception(Base):
    __tablename__ = "validations_reception"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    demande_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("demandes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    valide_par: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    statut: Mapped[str] = mapped_column(String(30), nullable=False)
    refuser_tout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commentaire_general: Mapped[str | None] = mapped_column(Text, nullable=True)
    sous_demande_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("demandes.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ValidationItem(Base):
    __tablename__ = "validation_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    validation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("validations_reception.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("items_demande.id", ondelete="CASCADE"),
        nullable=False,
    )
    quantite_validee: Mapped[int] = mapped_column(Integer, nullable=False)
    quantite_recue: Mapped[int] = mapped_column(Integer, nullable=False)
    quantite_acceptee: Mapped[int] = mapped_column(Integer, nullable=False)
    quantite_refusee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    statut: Mapped[str] = mapped_column(String(30), nullable=False)
    motif_refus: Mapped[str | None] = mapped_column(String(30), nullable=True)
    commentaire: Mapped[str | None] = mapped_column(Text, nullable=True)
    photos: Mapped[list | None] = mapped_column(JSON, nullable=True)
