import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from comanda.utils.http import json_body, session_id_from
from comanda.utils.rate_limit import optional_rate_limit
from comanda.payments import service as payments_service
from comanda.payments import stripe_client
from comanda.payments.context import CheckoutContext, get_checkout_context
from comanda.errors import CheckoutError, InvalidDraft
from comanda.payments.schemas import OrderDraft
from comanda.subscriptions import service as subscriptions_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkout", tags=["Checkout API"])


def _parse_draft(body: Dict[str, Any]) -> OrderDraft:
    """
    Accepte le brouillon à plat, ou l'enveloppe historique {orderData, total}.
    """
    data = body
    if isinstance(body.get("orderData"), dict):
        data = dict(body["orderData"])
        if "total" not in data and body.get("total") is not None:
            data["total"] = body["total"]
    try:
        return OrderDraft.model_validate(data)
    except ValidationError as e:
        raise InvalidDraft(f"Dados do pedido inválidos: {e.error_count()} erro(s)")


# module comanda.payments.views
@router.post("/start", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def checkout_start(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    """
    Crée une session Checkout Stripe pour un brouillon de commande (aucune ligne en base).
    - Entrée JSON: champs du brouillon (companyId, addressId, userId, lineItems, deliveryFee,
      discount, total, couponId, notes) ou {orderData, total}
    - Réponse: {redirectUrl, sessionId}
    - Erreurs: {error, detail}, 400 pour InvalidAmount/InvalidDraft/InvalidCoupon, 503 ProviderUnavailable
    """
    draft = _parse_draft(await json_body(request))
    session = await run_in_threadpool(payments_service.start_checkout, ctx, draft)
    return {"redirectUrl": session.get("redirect_url"), "sessionId": session.get("session_id")}


@router.post("/complete")
async def checkout_complete(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    """
    Réconcilie une session Stripe avec une commande (appelé au retour du paiement).
    - Entrée JSON: {sessionId} (ou ?session_id=...)
    - Réponse: {success: true, orderId} ou {success: false, error}
    - PaymentNotConfirmed / PaymentFailed: 200 (non fatal, le front peut réessayer ou afficher l'erreur)
    """
    try:
        session_id = session_id_from(request, await json_body(request))
        result = await run_in_threadpool(payments_service.complete_checkout, ctx, session_id)
    except CheckoutError as e:
        logger.warning("checkout.complete failed code=%s message=%s", e.code, e.message)
        return JSONResponse(status_code=e.status_code, content={"success": False, "error": e.code})
    if not result.success:
        return {"success": False, "error": result.error}
    return {"success": True, "orderId": result.order_id}


@router.get("/orders/{order_id}")
def checkout_order(order_id: str):
    """Commande matérialisée et ses items (page de suivi / succès)."""
    order = payments_service.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    return order


def _lifecycle_handler(event_type: str):
    """Handler des événements hors checkout.session.completed (None si non traité)."""
    return {
        "customer.subscription.created": subscriptions_service.sync_subscription,
        "customer.subscription.updated": subscriptions_service.sync_subscription,
        "customer.subscription.deleted": subscriptions_service.cancel_subscription,
        "invoice.paid": subscriptions_service.record_invoice_paid,
        "invoice.payment_failed": subscriptions_service.record_invoice_failed,
        "charge.refunded": payments_service.record_refund,
    }.get(event_type)


@router.post("/webhook", include_in_schema=False)
async def checkout_webhook(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    """
    Webhook Stripe: consomme checkout.session.completed, en concurrence possible avec
    la redirection du client (la matérialisation est idempotente).
    - mode "subscription": délègue à la réconciliation des abonnements.
    - sinon: complete_checkout(session.id).
    - cycle de vie des abonnements (customer.subscription.*, invoice.*) et charge.refunded:
      {"status": "ok"}, ou "ignored" si l'objet ne correspond à aucune ligne locale.
    - Erreurs transitoires (5xx) renvoyées telles quelles pour que Stripe réessaie.
    """
    try:
        event = await stripe_client.parse_event(request)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("checkout.webhook invalid signature or payload")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    event_type = (event or {}).get("type") or ""
    obj = (((event or {}).get("data") or {}).get("object")) or {}
    if event_type != "checkout.session.completed":
        handler = _lifecycle_handler(event_type)
        if handler is None:
            return {"status": "ignored"}
        result = await run_in_threadpool(handler, ctx, obj)
        logger.info("checkout.webhook type=%s object_id=%s handled=%s", event_type, obj.get("id"), result is not None)
        return {"status": "ok" if result is not None else "ignored"}

    session = obj
    session_id = session.get("id") or ""
    if session.get("mode") == "subscription":
        result = await run_in_threadpool(subscriptions_service.complete_subscription_checkout, ctx, session_id)
        logger.info("checkout.webhook subscription session_id=%s success=%s", session_id, result.get("success"))
        return {"status": "ok" if result.get("success") else "pending"}

    result = await run_in_threadpool(payments_service.complete_checkout, ctx, session_id)
    logger.info("checkout.webhook session_id=%s success=%s order_id=%s", session_id, result.success, result.order_id)
    return {"status": "ok" if result.success else "pending", "orderId": result.order_id}
