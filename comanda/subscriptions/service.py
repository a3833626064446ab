"""
Cas d'usage 'subscriptions': même schéma de réconciliation que le checkout delivery,
appliqué aux abonnements des entreprises (plans mensuels/annuels avec période d'essai).

- start_subscription_checkout: aucune écriture en base, le brouillon voyage en metadata.
- complete_subscription_checkout: relit la session et l'abonnement chez Stripe, puis
  upsert de l'abonnement sur company_id (idempotent) et mise à jour du statut entreprise.
- sync_subscription, cancel_subscription, record_invoice_paid, record_invoice_failed:
  événements de cycle de vie du webhook Stripe. Un abonnement past_due, unpaid ou
  canceled bloque l'entreprise (companies.blocked_at, block_reason).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from comanda import config
from comanda.errors import InvalidAmount, InvalidDraft, PaymentNotConfirmed
from comanda.infra.storage import DuplicateRecord
from comanda.payments import stripe_client
from comanda.payments.context import CheckoutContext
from comanda.payments.schemas import SCHEMA_VERSION
from comanda.payments.totals import to_minor_units
from . import repository
from .schemas import (
    PERIOD_MONTHLY,
    PERIOD_YEARLY,
    SUBSCRIPTIONS_TABLE,
    SubscriptionDraft,
    canceled_row,
    company_status_row,
    draft_to_metadata,
    invoice_payment_row,
    normalize_period,
    subscription_row,
)

logger = logging.getLogger(__name__)

CONFIRMED_PAYMENT_STATUSES = ("paid", "no_payment_required")


def _trial_days(draft: SubscriptionDraft, plan: Dict[str, Any]) -> int:
    if draft.trial_days is not None:
        return draft.trial_days
    if plan.get("trial_days") is not None:
        return int(plan["trial_days"])
    return config.DEFAULT_TRIAL_DAYS


def _line_item(ctx: CheckoutContext, draft: SubscriptionDraft, plan: Dict[str, Any]) -> Dict[str, Any]:
    """Price Stripe configuré sur le plan, sinon prix récurrent inline."""
    yearly = draft.period == PERIOD_YEARLY
    price_id = plan.get("stripe_price_id_yearly" if yearly else "stripe_price_id_monthly")
    if price_id:
        return {"price": price_id, "quantity": 1}

    amount = to_minor_units(plan.get("price_yearly" if yearly else "price_monthly") or 0)
    if amount <= 0:
        raise InvalidAmount("Preço do plano inválido")
    label = "Anual" if yearly else "Mensal"
    return {
        "quantity": 1,
        "price_data": {
            "currency": ctx.currency,
            "unit_amount": amount,
            "recurring": {"interval": "year" if yearly else "month"},
            "product_data": {"name": f"{plan.get('name') or 'Plano'} - {label}"},
        },
    }


def start_subscription_checkout(ctx: CheckoutContext, draft: SubscriptionDraft) -> Dict[str, Any]:
    """
    Crée une session Stripe en mode subscription pour un plan.
    Retour: {"session_id", "redirect_url"}
    """
    plan = repository.get_plan(draft.plan_id)
    if not plan:
        raise InvalidDraft("Plano não encontrado")

    meta = draft_to_metadata(draft)
    trial_days = _trial_days(draft, plan)
    urls = ctx.return_urls(config.SUBSCRIPTION_SUCCESS_PATH, config.SUBSCRIPTION_CANCEL_PATH)
    subscription_data: Dict[str, Any] = {"metadata": meta}
    if trial_days > 0:
        subscription_data["trial_period_days"] = trial_days

    existing = repository.get_subscription(draft.company_id)
    customer_id = (existing or {}).get("stripe_customer_id")
    params: Dict[str, Any] = dict(
        mode="subscription",
        payment_method_types=["card"],
        line_items=[_line_item(ctx, draft, plan)],
        subscription_data=subscription_data,
        success_url=urls.success_url,
        cancel_url=urls.cancel_url,
        metadata=meta,
        allow_promotion_codes=True,
    )
    if customer_id:
        params["customer"] = customer_id

    session = stripe_client.create_session(**params)
    logger.info(
        "subscriptions.start company_id=%s plan_id=%s period=%s trial_days=%s session_id=%s",
        draft.company_id, draft.plan_id, draft.period, trial_days, session.get("id"),
    )
    return {"session_id": session.get("id"), "redirect_url": session.get("url")}


def _is_confirmed(session: Dict[str, Any]) -> bool:
    return (session.get("payment_status") in CONFIRMED_PAYMENT_STATUSES) or session.get("status") == "complete"


def _ref_id(value: Any) -> Optional[str]:
    """Identifiant d'une référence Stripe (chaîne ou objet expandé)."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _save(ctx: CheckoutContext, row: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert de l'abonnement puis statut (et blocage) de l'entreprise."""
    saved = repository.upsert_subscription(row)
    repository.update_company_status(row["company_id"], company_status_row(row["status"]))
    ctx.publish(SUBSCRIPTIONS_TABLE, "UPDATE", saved)
    return saved


def complete_subscription_checkout(ctx: CheckoutContext, session_id: str) -> Dict[str, Any]:
    """
    Réconcilie une session d'abonnement avec la ligne subscriptions de l'entreprise.
    Retour: {"success": False, "error": "PaymentNotConfirmed"} tant que la session n'est
    pas confirmée, sinon {"success": True, "companyId", "planId", "period", "status"}.
    """
    session = stripe_client.get_session(session_id)
    if not _is_confirmed(session):
        logger.info(
            "subscriptions.complete pending session_id=%s status=%s payment_status=%s",
            session_id, session.get("status"), session.get("payment_status"),
        )
        return {"success": False, "error": PaymentNotConfirmed.code}

    meta = dict(session.get("metadata") or {})
    if str(meta.get("schema_version") or "") != str(SCHEMA_VERSION):
        raise InvalidDraft("Version de schéma non supportée")
    company_id = meta.get("company_id")
    if not company_id:
        raise InvalidDraft("company_id manquant dans les metadata")
    try:
        period = normalize_period(meta.get("period"))
    except ValueError:
        raise InvalidDraft("period invalide dans les metadata")

    subscription_id = _ref_id(session.get("subscription"))
    if not subscription_id:
        logger.warning("subscriptions.complete no subscription yet session_id=%s", session_id)
        return {"success": False, "error": PaymentNotConfirmed.code}
    subscription = stripe_client.retrieve_subscription(subscription_id)

    row = subscription_row(company_id, meta.get("plan_id"), period, _ref_id(session.get("customer")), subscription)
    _save(ctx, row)

    logger.info(
        "subscriptions.complete company_id=%s subscription_id=%s status=%s",
        company_id, subscription_id, row["status"],
    )
    return {
        "success": True,
        "companyId": company_id,
        "planId": meta.get("plan_id"),
        "period": period,
        "status": row["status"],
        "subscriptionId": subscription_id,
    }


# --- cycle de vie (webhook Stripe) ---
def _price_interval(subscription: Dict[str, Any]) -> Optional[Tuple[Optional[str], Optional[str]]]:
    items = ((subscription.get("items") or {}).get("data")) or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return (price.get("recurring") or {}).get("interval"), price.get("id")


def sync_subscription(ctx: CheckoutContext, subscription: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    customer.subscription.created / updated: recopie le statut Stripe.
    L'entreprise vient des metadata de l'abonnement, sinon de la ligne existante
    (stripe_subscription_id). Retour: la ligne enregistrée, ou None si inconnue.
    """
    meta = dict(subscription.get("metadata") or {})
    existing = repository.find_subscription_by_stripe_id(subscription.get("id") or "") or {}
    company_id = meta.get("company_id") or existing.get("company_id")
    if not company_id:
        logger.info("subscriptions.sync unknown subscription_id=%s", subscription.get("id"))
        return None

    interval, price_id = _price_interval(subscription) or (None, None)
    plan_id = meta.get("plan_id")
    if not plan_id and price_id:
        plan_id = (repository.find_plan_by_price(price_id) or {}).get("id")
    try:
        period = normalize_period(meta.get("period") or existing.get("period") or interval)
    except ValueError:
        period = PERIOD_MONTHLY
    customer_id = _ref_id(subscription.get("customer")) or existing.get("stripe_customer_id")

    saved = _save(ctx, subscription_row(company_id, plan_id, period, customer_id, subscription))
    logger.info(
        "subscriptions.sync company_id=%s subscription_id=%s status=%s",
        company_id, subscription.get("id"), saved.get("status"),
    )
    return saved


def cancel_subscription(ctx: CheckoutContext, subscription: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """customer.subscription.deleted: abonnement annulé, entreprise bloquée."""
    existing = repository.find_subscription_by_stripe_id(subscription.get("id") or "")
    if not existing:
        logger.info("subscriptions.cancel unknown subscription_id=%s", subscription.get("id"))
        return None
    company_id = existing["company_id"]
    values = canceled_row()
    saved = repository.update_subscription(company_id, values) or {**existing, **values}
    repository.update_company_status(company_id, company_status_row("canceled"))
    ctx.publish(SUBSCRIPTIONS_TABLE, "UPDATE", saved)
    logger.info("subscriptions.cancel company_id=%s subscription_id=%s", company_id, subscription.get("id"))
    return saved


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = _ref_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # API Stripe récente: invoice.parent.subscription_details.subscription
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return _ref_id(details.get("subscription"))


def _record_invoice(ctx: CheckoutContext, invoice: Dict[str, Any], paid: bool) -> Optional[Dict[str, Any]]:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    existing = repository.find_subscription_by_stripe_id(subscription_id)
    if not existing:
        logger.info("subscriptions.invoice unknown subscription_id=%s invoice_id=%s", subscription_id, invoice.get("id"))
        return None

    try:
        payment = repository.insert_subscription_payment(invoice_payment_row(existing, invoice, paid))
    except DuplicateRecord:
        logger.info("subscriptions.invoice already recorded invoice_id=%s", invoice.get("id"))
        payment = None

    if not paid:
        company_id = existing["company_id"]
        values = {"status": "past_due", "updated_at": datetime.now(timezone.utc).isoformat()}
        saved = repository.update_subscription(company_id, values) or {**existing, **values}
        repository.update_company_status(company_id, company_status_row("past_due"))
        ctx.publish(SUBSCRIPTIONS_TABLE, "UPDATE", saved)

    logger.info(
        "subscriptions.invoice subscription_id=%s invoice_id=%s paid=%s",
        subscription_id, invoice.get("id"), paid,
    )
    return payment or {"stripe_invoice_id": invoice.get("id"), "status": "succeeded" if paid else "failed"}


def record_invoice_paid(ctx: CheckoutContext, invoice: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """invoice.paid: enregistre le paiement de la période."""
    return _record_invoice(ctx, invoice, paid=True)


def record_invoice_failed(ctx: CheckoutContext, invoice: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """invoice.payment_failed: paiement en échec, abonnement past_due et entreprise bloquée."""
    return _record_invoice(ctx, invoice, paid=False)
