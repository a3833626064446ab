"""
Validation des totaux de commande (logique pure, pas de Stripe, pas de DB).

computed_total = round2(Σ quantity × unit_price) + delivery_fee − discount
valid          = |computed_total − claimed_total| <= tolérance (0.01 par défaut)

Le calcul se fait en Decimal pour que la borne de tolérance soit exacte
(un écart de 0.01 est accepté, 0.02 est refusé).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from comanda.config import CHECKOUT_TOLERANCE

CENT = Decimal("0.01")


@dataclass(frozen=True)
class TotalCheck:
    valid: bool
    computed_total: float
    items_subtotal: float


def _dec(v: Any) -> Decimal:
    return Decimal(str(v if v is not None else 0))


def round2(v: Any) -> Decimal:
    return _dec(v).quantize(CENT, rounding=ROUND_HALF_UP)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def items_subtotal(line_items: Iterable[Any]) -> Decimal:
    """Somme arrondie au centime de quantity × unit_price (dicts ou LineItem)."""
    total = Decimal("0")
    for it in line_items or []:
        total += _dec(_field(it, "quantity")) * _dec(_field(it, "unit_price"))
    return round2(total)


def validate(line_items: Iterable[Any], delivery_fee: Any, discount: Any, claimed_total: Any, tolerance: Any = None) -> TotalCheck:
    subtotal = items_subtotal(line_items)
    computed = subtotal + _dec(delivery_fee) - _dec(discount)
    tol = _dec(CHECKOUT_TOLERANCE if tolerance is None else tolerance)
    valid = abs(computed - _dec(claimed_total)) <= tol
    return TotalCheck(valid=valid, computed_total=float(round2(computed)), items_subtotal=float(subtotal))


def to_minor_units(amount: Any) -> int:
    """Montant -> centimes (arrondi half-up), unité attendue par Stripe."""
    return int((_dec(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
