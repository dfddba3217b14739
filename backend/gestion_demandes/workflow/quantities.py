from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable


@dataclass(frozen=True)
class ItemReconciliation:
    item_id: Any
    demandee: int
    validee: int
    sortie: int
    recue: int

    @property
    def ecart_validation(self) -> int:
        return self.demandee - self.validee

    @property
    def ecart_stock(self) -> int:
        return self.validee - self.sortie

    @property
    def ecart_livraison(self) -> int:
        return self.sortie - self.recue

    @property
    def ecart_total(self) -> int:
        return self.demandee - self.recue

    @property
    def anomalies(self) -> list[str]:
        # Stage order violations are tolerated and reported, never rejected.
        found = []
        if self.validee > self.demandee:
            found.append("validee_superieure_demandee")
        if self.sortie > self.validee:
            found.append("sortie_superieure_validee")
        if self.recue > self.sortie:
            found.append("recue_superieure_sortie")
        return found


@dataclass
class Reconciliation:
    items: list[ItemReconciliation] = field(default_factory=list)
    total_demandee: int = 0
    total_validee: int = 0
    total_sortie: int = 0
    total_recue: int = 0

    @property
    def ecart_total(self) -> int:
        return self.total_demandee - self.total_recue

    @property
    def needs_sous_demande(self) -> bool:
        return any(item.ecart_total > 0 for item in self.items)


def _qty(value: int | None) -> int:
    return int(value or 0)


def reconcile_item(item: Any) -> ItemReconciliation:
    demandee = _qty(item.quantite_demandee)
    validee = demandee if item.quantite_validee is None else _qty(item.quantite_validee)
    return ItemReconciliation(
        item_id=getattr(item, "id", None),
        demandee=demandee,
        validee=validee,
        sortie=_qty(item.quantite_sortie),
        recue=_qty(item.quantite_recue),
    )


def reconcile(items: Iterable[Any]) -> Reconciliation:
    """Per-item variances and summed totals over the four quantity stages."""
    result = Reconciliation()
    for item in items:
        line = reconcile_item(item)
        result.items.append(line)
        result.total_demandee += line.demandee
        result.total_validee += line.validee
        result.total_sortie += line.sortie
        result.total_recue += line.recue
    return result


def cout_total(items: Iterable[Any]) -> Decimal:
    """Sum of validated quantity x unit price; lines without a price count as zero."""
    total = Decimal("0")
    for item in items:
        if item.prix_unitaire is None:
            continue
        validee = item.quantite_demandee if item.quantite_validee is None else item.quantite_validee
        total += Decimal(_qty(validee)) * Decimal(item.prix_unitaire)
    return total


@dataclass(frozen=True)
class DeliveryLine:
    item_id: Any
    validee: int
    livree: int

    @property
    def restante(self) -> int:
        return max(self.validee - self.livree, 0)


@dataclass
class DeliveryStatus:
    lines: list[DeliveryLine]

    @property
    def total_validee(self) -> int:
        return sum(line.validee for line in self.lines)

    @property
    def total_livree(self) -> int:
        return sum(line.livree for line in self.lines)

    @property
    def pourcentage(self) -> int:
        if self.total_validee == 0:
            return 0
        return round(min(self.total_livree, self.total_validee) * 100 / self.total_validee)

    @property
    def complete(self) -> bool:
        return all(line.livree >= line.validee for line in self.lines)


def delivery_status(items: Iterable[Any], delivered: dict[Any, int]) -> DeliveryStatus:
    """Progress of partial deliveries against validated quantities."""
    lines = []
    for item in items:
        validee = item.quantite_demandee if item.quantite_validee is None else item.quantite_validee
        lines.append(DeliveryLine(item_id=item.id, validee=_qty(validee), livree=delivered.get(item.id, 0)))
    return DeliveryStatus(lines=lines)
