from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gestion_demandes.models.demande import Demande
from gestion_demandes.models.document_sequence import DocumentSequence
from gestion_demandes.workflow.enums import DemandeType, NUMERO_PREFIXES
from gestion_demandes.workflow.errors import SequenceExhaustedError

_SOUS_DEMANDE_SUFFIX = re.compile(r"-SD(\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def generate_document_number(db: AsyncSession, doc_type: str) -> str:
    year = datetime.now(timezone.utc).year
    stmt = (
        select(DocumentSequence)
        .where(DocumentSequence.doc_type == doc_type, DocumentSequence.year == year)
        .with_for_update()
    )
    res = await db.execute(stmt)
    seq = res.scalar_one_or_none()
    if not seq:
        seq = DocumentSequence(doc_type=doc_type, year=year, counter=1, updated_at=_utcnow())
        db.add(seq)
    else:
        if seq.counter >= 9999:
            raise SequenceExhaustedError(f"Capacité annuelle atteinte pour {doc_type}")
        seq.counter += 1
        seq.updated_at = _utcnow()
    await db.flush()
    return f"{doc_type}-{year}-{seq.counter:04d}"


async def generate_demande_numero(db: AsyncSession, type_: DemandeType | str) -> str:
    return await generate_document_number(db, NUMERO_PREFIXES[DemandeType(type_)])


def fallback_demande_numero(type_: DemandeType | str) -> str:
    """Collision-proof number used once the sequence retry budget is spent."""
    year = datetime.now(timezone.utc).year
    return f"{NUMERO_PREFIXES[DemandeType(type_)]}-{year}-{secrets.token_hex(3).upper()}"


def draft_numero() -> str:
    return f"BROUILLON-{secrets.token_hex(4).upper()}"


async def generate_sous_demande_numero(db: AsyncSession, parent: Demande) -> str:
    """Next `{parent}-SD{k}` after the highest suffix still in use."""
    res = await db.execute(select(Demande.numero).where(Demande.demande_parent_id == parent.id))
    highest = 0
    for numero in res.scalars():
        match = _SOUS_DEMANDE_SUFFIX.search(numero)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{parent.numero}-SD{highest + 1}"


def fallback_sous_demande_numero(parent: Demande) -> str:
    return f"{parent.numero}-SD-{secrets.token_hex(2).upper()}"
