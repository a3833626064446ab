"""
Matérialisation d'une commande payée (orders + order_line_items + coupon_redemptions).

Invariants:
- Une seule commande par session de paiement: lecture avant insertion, puis
  contrainte d'unicité sur orders.payment_session_id. Le perdant d'une course
  relit la commande du gagnant et ne la retourne qu'une fois ses line items
  écrits (sinon PersistenceFailure, retryable).
- Tout ou rien: si les line items ou la redemption du coupon échouent après
  l'insertion de la commande, la commande est supprimée (cascade sur les items)
  et l'appel échoue en PersistenceFailure.
- Un second appel pour la même session ne crée aucune ligne: seule la redemption
  du coupon est retentée, et le registre la dédoublonne. Une commande orpheline
  (compensation échouée) retrouve ses line items depuis le brouillon.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from comanda import config
from . import coupons, loyalty, repository, stripe_client, totals
from .context import CheckoutContext
from comanda.errors import AlreadyRedeemed, InvalidAmount, PaymentNotConfirmed, PersistenceFailure
from .schemas import ORDERS_TABLE, OrderDraft, PaymentSession, line_item_rows, order_row

logger = logging.getLogger(__name__)


@dataclass
class Materialization:
    order: Dict[str, Any]
    created: bool
    items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def order_id(self) -> str:
        return str(self.order["id"])


def _redeem_coupon(ctx: CheckoutContext, draft: OrderDraft, order_id: str) -> None:
    if not draft.coupon_id or not ctx.enabled("coupons"):
        return
    try:
        coupons.redeem(draft.coupon_id, draft.user_id, order_id, draft.redeemed_discount)
    except AlreadyRedeemed:
        logger.info("materialize.coupon already redeemed coupon_id=%s order_id=%s", draft.coupon_id, order_id)


def _compensate(order_id: str) -> None:
    try:
        repository.delete_order(order_id)
        logger.warning("materialize.compensated order_id=%s", order_id)
    except PersistenceFailure:
        # Commande orpheline: à reprendre manuellement, l'appelant reçoit quand même l'erreur
        logger.critical("materialize.compensation failed order_id=%s", order_id)


def _is_stale(order: Dict[str, Any]) -> bool:
    created_at = order.get("created_at")
    if not created_at:
        return True
    try:
        ts = datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
    except ValueError:
        return True
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - ts > timedelta(seconds=config.ORPHAN_ORDER_GRACE_SECONDS)


def _repair(order_id: str, draft: OrderDraft) -> List[Dict[str, Any]]:
    """Réinsère les line items d'une commande orpheline (compensation précédente échouée)."""
    items = repository.insert_line_items(line_item_rows(order_id, draft.line_items))
    if len(items) != len(draft.line_items):
        raise PersistenceFailure(f"Line items incomplets ({len(items)}/{len(draft.line_items)})")
    logger.warning("materialize.repaired order_id=%s items=%s", order_id, len(items))
    return items


def _existing(ctx: CheckoutContext, draft: OrderDraft, order: Dict[str, Any]) -> Materialization:
    """
    Commande déjà présente pour la session. Elle n'est retournée qu'avec ses line items:
    - sans items et récente: l'écrivain concurrent n'a pas fini (ou va compenser),
      PersistenceFailure (retryable) plutôt qu'un orderId qui peut disparaître;
    - sans items et ancienne: orpheline, les items sont réinsérés depuis le brouillon.
    """
    order_id = str(order["id"])
    items = repository.list_line_items(order_id)
    if not items:
        if not _is_stale(order):
            logger.info("materialize.in_progress order_id=%s", order_id)
            raise PersistenceFailure("Pedido em processamento, tente novamente.")
        try:
            items = _repair(order_id, draft)
        except repository.DuplicateRecord:
            raise PersistenceFailure("Erro ao inserir itens do pedido.")
    _redeem_coupon(ctx, draft, order_id)
    logger.info("materialize.existing order_id=%s session_id=%s", order_id, order.get("payment_session_id"))
    return Materialization(order=order, created=False, items=items)


def materialize(
    ctx: CheckoutContext,
    payment_session_id: str,
    draft: OrderDraft,
    validated_total: float,
    session: Optional[PaymentSession] = None,
) -> Materialization:
    """
    Persiste la commande et ses line items exactement une fois pour la session.
    - session: état Stripe déjà lu par l'appelant; relu ici s'il est absent.
    - Erreurs: PaymentNotConfirmed (précondition), InvalidAmount, PersistenceFailure.
    """
    if session is None or session.session_id != payment_session_id:
        session = stripe_client.fetch_session_status(payment_session_id)
    if not session.paid:
        raise PaymentNotConfirmed("Pagamento não confirmado.")

    check = totals.validate(draft.line_items, draft.delivery_fee, draft.discount, validated_total)
    if not check.valid:
        raise InvalidAmount("Total validé incohérent avec les line items")

    existing = repository.find_order_by_session(payment_session_id)
    if existing:
        return _existing(ctx, draft, existing)

    try:
        order = repository.insert_order(order_row(draft, payment_session_id, check.items_subtotal, validated_total))
    except repository.DuplicateRecord:
        winner = repository.find_order_by_session(payment_session_id)
        if not winner:
            raise PersistenceFailure("Commande concurrente introuvable après conflit d'unicité")
        return _existing(ctx, draft, winner)

    order_id = str(order["id"])
    try:
        items = repository.insert_line_items(line_item_rows(order_id, draft.line_items))
        if len(items) != len(draft.line_items):
            raise PersistenceFailure(f"Line items incomplets ({len(items)}/{len(draft.line_items)})")
        _redeem_coupon(ctx, draft, order_id)
    except (PersistenceFailure, repository.DuplicateRecord):
        _compensate(order_id)
        raise PersistenceFailure("Erro ao inserir itens do pedido.")

    if ctx.enabled("loyalty"):
        loyalty.apply(draft, order_id, check.items_subtotal)

    ctx.publish(ORDERS_TABLE, "INSERT", order)
    logger.info("materialize.created order_id=%s session_id=%s items=%s", order_id, payment_session_id, len(items))
    return Materialization(order=order, created=True, items=items)
