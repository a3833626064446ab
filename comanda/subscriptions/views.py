import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from comanda.errors import CheckoutError, InvalidDraft
from comanda.payments.context import CheckoutContext, get_checkout_context
from comanda.utils.http import json_body, session_id_from
from comanda.utils.rate_limit import optional_rate_limit
from . import service as subscriptions_service
from .schemas import SubscriptionDraft

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/subscriptions", tags=["Subscriptions API"])


# module comanda.subscriptions.views
@router.post("/checkout/start", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def subscription_checkout_start(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    """
    Crée une session Stripe (mode subscription) pour un plan.
    - Entrée JSON: {companyId, planId, period: monthly|yearly, trialDays?}
    - Réponse: {redirectUrl, sessionId}
    """
    body = await json_body(request)
    try:
        draft = SubscriptionDraft.model_validate(body)
    except ValidationError as e:
        raise InvalidDraft(f"Dados da assinatura inválidos: {e.error_count()} erro(s)")
    session = await run_in_threadpool(subscriptions_service.start_subscription_checkout, ctx, draft)
    return {"redirectUrl": session.get("redirect_url"), "sessionId": session.get("session_id")}


@router.post("/checkout/complete")
async def subscription_checkout_complete(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    """Réconcilie la session d'abonnement: {success, ...} ou {success: false, error}."""
    try:
        session_id = session_id_from(request, await json_body(request))
        return await run_in_threadpool(subscriptions_service.complete_subscription_checkout, ctx, session_id)
    except CheckoutError as e:
        logger.warning("subscriptions.complete failed code=%s message=%s", e.code, e.message)
        return JSONResponse(status_code=e.status_code, content={"success": False, "error": e.code})
