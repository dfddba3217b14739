from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gestion_demandes.db.base import Base


class ItemDemande(Base):
    __tablename__ = "items_demande"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    demande_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("demandes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    article_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(80), nullable=True)
    designation: Mapped[str] = mapped_column(String(255), nullable=False)
    unite: Mapped[str] = mapped_column(String(30), nullable=False, default="piece")

    quantite_demandee: Mapped[int] = mapped_column(Integer, nullable=False)
    quantite_validee: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantite_sortie: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantite_recue: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prix_unitaire: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    commentaire: Mapped[str | None] = mapped_column(Text, nullable=True)
    ordre: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
