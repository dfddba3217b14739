from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gestion_demandes.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Livraison(Base):
    __tablename__ = "livraisons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    demande_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("demandes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    livreur_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    prepare_par: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    statut: Mapped[str] = mapped_column(String(30), nullable=False, default="prete")
    commentaire: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ItemLivraison(Base):
    __tablename__ = "items_livraison"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    livraison_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("livraisons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_demande_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("items_demande.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantite_livree: Mapped[int] = mapped_column(Integer, nullable=False)
