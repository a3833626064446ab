"""
Cas d'usage 'payments': orchestre validation des totaux, Stripe, matérialisation et coupons.

Cycle d'une tentative de checkout:
    DRAFTED -> SESSION_CREATED -> [PAID -> MATERIALIZED] | [EXPIRED|CANCELED -> terminal]

- start_checkout: aucune ligne n'est créée en base, le brouillon voyage dans la session Stripe.
- complete_checkout: relit toujours la session chez Stripe et revalide le brouillon issu des
  metadata de la session (frontière de confiance), jamais une saisie client.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import coupons, materializer, metadata, repository, stripe_client, totals
from .context import CheckoutContext
from comanda.errors import InvalidAmount, PaymentFailed, PaymentNotConfirmed
from .schemas import CheckoutResult, OrderDraft

logger = logging.getLogger(__name__)


def start_checkout(ctx: CheckoutContext, draft: OrderDraft) -> Dict[str, Any]:
    """
    Prépare la session Stripe à partir du brouillon soumis.
    - Pré-contrôle du total (InvalidAmount si écart > tolérance).
    - Vérifie le coupon éventuel (InvalidCoupon).
    - Le total transmis à Stripe est le total recalculé côté serveur.
    Retour: {"session_id", "redirect_url"}
    """
    check = totals.validate(draft.line_items, draft.delivery_fee, draft.discount, draft.total)
    logger.info(
        "checkout.start company_id=%s claimed=%s computed=%s valid=%s",
        draft.company_id, draft.total, check.computed_total, check.valid,
    )
    if not check.valid:
        raise InvalidAmount("O valor do pedido foi alterado. Por favor, atualize a página e tente novamente.")
    if check.computed_total <= 0:
        raise InvalidAmount("Total do pedido inválido")

    if draft.coupon_id and ctx.enabled("coupons"):
        coupons.check_coupon(draft.coupon_id)

    validated = draft.model_copy(update={"total": check.computed_total, "subtotal": check.items_subtotal})
    session = stripe_client.create_checkout_session(
        validated,
        totals.to_minor_units(validated.total),
        ctx.return_urls(),
        currency=ctx.currency,
    )
    logger.info("checkout.session_created session_id=%s", session.get("session_id"))
    return session


def complete_checkout(ctx: CheckoutContext, session_id: str) -> CheckoutResult:
    """
    Réconcilie une session payée avec une commande locale, exactement une fois.
    - Session non payée: résultat non fatal PaymentNotConfirmed (ou PaymentFailed si expirée/annulée).
    - Session payée: brouillon depuis metadata, revalidation, matérialisation idempotente.
    Les autres erreurs (SessionNotFound, ProviderUnavailable, InvalidDraft, InvalidAmount,
    PersistenceFailure) sont levées pour l'appelant.
    """
    session = stripe_client.fetch_session_status(session_id)
    if session.status in ("expired", "canceled"):
        logger.info("checkout.complete terminal session_id=%s status=%s", session_id, session.status)
        return CheckoutResult(success=False, error=PaymentFailed.code)
    if not session.paid:
        logger.info("checkout.complete pending session_id=%s payment_status=%s", session_id, session.payment_status)
        return CheckoutResult(success=False, error=PaymentNotConfirmed.code)

    draft = metadata.draft_from_metadata(session.metadata)
    check = totals.validate(draft.line_items, draft.delivery_fee, draft.discount, draft.total)
    if not check.valid:
        logger.error(
            "checkout.complete total mismatch session_id=%s claimed=%s computed=%s",
            session_id, draft.total, check.computed_total,
        )
        raise InvalidAmount("Metadata da sessão inconsistentes com o total")
    if session.amount_minor_units is not None and session.amount_minor_units != totals.to_minor_units(check.computed_total):
        logger.error(
            "checkout.complete amount mismatch session_id=%s paid=%s computed=%s",
            session_id, session.amount_minor_units, check.computed_total,
        )
        raise InvalidAmount("Valor pago diferente do total do pedido")

    result = materializer.materialize(ctx, session_id, draft, check.computed_total, session=session)
    logger.info("checkout.complete order_id=%s created=%s", result.order_id, result.created)
    return CheckoutResult(success=True, order_id=result.order_id, already_existed=not result.created)


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    """Commande et ses line items (page de suivi), None si inconnue."""
    order = repository.get_order(order_id)
    if not order:
        return None
    return {**order, "items": repository.list_line_items(order_id)}


def record_refund(ctx: CheckoutContext, charge: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    """
    charge.refunded: passe en 'succeeded' les remboursements en cours de la commande
    (metadata order_id) ou de l'abonnement (metadata subscription_id) de la charge.
    Retour: lignes mises à jour, None si la charge ne référence ni l'un ni l'autre.
    """
    meta = dict(charge.get("metadata") or {})
    refunds = ((charge.get("refunds") or {}).get("data")) or []
    now = datetime.now(timezone.utc).isoformat()
    values = {
        "status": "succeeded",
        "stripe_refund_id": refunds[0].get("id") if refunds else None,
        "processed_at": now,
        "updated_at": now,
    }
    updated: Optional[List[Dict[str, Any]]] = None
    for key in ("order_id", "subscription_id"):
        if meta.get(key):
            updated = (updated or []) + repository.mark_refund_succeeded(key, meta[key], values)
    logger.info("checkout.refund charge_id=%s updated=%s", charge.get("id"), len(updated or []))
    return updated
