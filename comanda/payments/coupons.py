"""
Registre des coupons (Coupon/Discount Ledger).

- redeem: enregistre l'utilisation d'un coupon pour une commande, au plus une
  fois par couple (coupon_id, order_id). Un second appel lève AlreadyRedeemed.
- check_coupon: lecture de validité (actif, non expiré, non épuisé) avant paiement.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from . import repository
from comanda.errors import AlreadyRedeemed, InvalidCoupon, PersistenceFailure
from .schemas import coupon_redemption_row

logger = logging.getLogger(__name__)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def check_coupon(coupon_id: str) -> Dict[str, Any]:
    """Retourne le coupon s'il est utilisable, sinon InvalidCoupon."""
    coupon = repository.get_coupon(coupon_id)
    if not coupon:
        raise InvalidCoupon("Cupom não encontrado")
    if coupon.get("active") is False:
        raise InvalidCoupon("Cupom inativo")
    expires_at = _parse_ts(coupon.get("expires_at"))
    if expires_at and expires_at < datetime.now(timezone.utc):
        raise InvalidCoupon("Cupom expirado")
    max_uses = coupon.get("max_uses")
    if max_uses is not None and int(coupon.get("current_uses") or 0) >= int(max_uses):
        raise InvalidCoupon("Cupom esgotado")
    return coupon


def redeem(coupon_id: str, user_id: str, order_id: str, discount_amount: float) -> Dict[str, Any]:
    """
    Enregistre la redemption puis incrémente le compteur d'usage du coupon.
    - Lecture avant insertion + contrainte d'unicité (coupon_id, order_id) pour les courses.
    - L'incrément du compteur est best-effort (journalisé en cas d'échec).
    """
    if repository.find_coupon_redemption(coupon_id, order_id):
        raise AlreadyRedeemed(f"Cupom {coupon_id} já registrado para o pedido {order_id}")
    try:
        redemption = repository.insert_coupon_redemption(
            coupon_redemption_row(coupon_id, user_id, order_id, discount_amount)
        )
    except repository.DuplicateRecord:
        raise AlreadyRedeemed(f"Cupom {coupon_id} já registrado para o pedido {order_id}")

    try:
        coupon = repository.get_coupon(coupon_id)
        if coupon:
            repository.update_coupon_usage(coupon_id, int(coupon.get("current_uses") or 0) + 1)
    except PersistenceFailure:
        logger.warning("coupons.redeem usage counter not updated coupon_id=%s order_id=%s", coupon_id, order_id)

    logger.info("coupons.redeem coupon_id=%s order_id=%s amount=%s", coupon_id, order_id, discount_amount)
    return redemption
