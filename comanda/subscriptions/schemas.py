"""
Contrat de schéma des abonnements (plans, subscriptions, companies).
Même version de contrat que le checkout delivery: SCHEMA_VERSION voyage dans
les metadata de la session Stripe et est vérifié au retour.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from comanda.payments.schemas import SCHEMA_VERSION

PLANS_TABLE = "plans"
SUBSCRIPTIONS_TABLE = "subscriptions"
COMPANIES_TABLE = "companies"
SUBSCRIPTION_PAYMENTS_TABLE = "subscription_payments"

PERIOD_MONTHLY = "monthly"
PERIOD_YEARLY = "yearly"

# Statut Stripe -> statut local
STATUS_MAP = {
    "trialing": "trialing",
    "active": "active",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "unpaid",
    "incomplete": "unpaid",
    "incomplete_expired": "canceled",
    "paused": "paused",
}
BLOCKING_STATUSES = ("canceled", "unpaid", "past_due")
BLOCK_REASONS = {
    "canceled": "Assinatura cancelada",
    "past_due": "Pagamento atrasado",
}

_PERIOD_ALIASES = {
    "monthly": PERIOD_MONTHLY,
    "mensal": PERIOD_MONTHLY,
    "month": PERIOD_MONTHLY,
    "yearly": PERIOD_YEARLY,
    "anual": PERIOD_YEARLY,
    "year": PERIOD_YEARLY,
}


def normalize_period(value: Any) -> str:
    period = _PERIOD_ALIASES.get(str(value or PERIOD_MONTHLY).strip().lower())
    if not period:
        raise ValueError("period doit valoir monthly ou yearly")
    return period


class SubscriptionDraft(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    company_id: str
    plan_id: str
    period: str = PERIOD_MONTHLY
    trial_days: Optional[int] = Field(default=None, ge=0)

    @field_validator("company_id", "plan_id", mode="before")
    @classmethod
    def _required_str(cls, v: Any) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("identifiant requis")
        return v

    @field_validator("period", mode="before")
    @classmethod
    def _period(cls, v: Any) -> str:
        return normalize_period(v)


def map_status(stripe_status: Optional[str]) -> str:
    """Statut local d'un abonnement Stripe (inconnu => unpaid)."""
    return STATUS_MAP.get(str(stripe_status or ""), "unpaid")


def _ts(epoch: Any) -> Optional[str]:
    if not epoch:
        return None
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat()


def draft_to_metadata(draft: SubscriptionDraft) -> Dict[str, str]:
    return {
        "schema_version": str(SCHEMA_VERSION),
        "kind": "subscription",
        "company_id": draft.company_id,
        "plan_id": draft.plan_id,
        "period": draft.period,
    }


def subscription_row(company_id: str, plan_id: Optional[str], period: str, customer_id: Optional[str], subscription: Dict[str, Any]) -> Dict[str, Any]:
    row = {
        "company_id": company_id,
        "status": map_status(subscription.get("status")),
        "stripe_customer_id": customer_id,
        "stripe_subscription_id": subscription.get("id"),
        "period": period,
        "trial_start": _ts(subscription.get("trial_start")),
        "trial_end": _ts(subscription.get("trial_end")),
        "current_period_start": _ts(subscription.get("current_period_start")),
        "current_period_end": _ts(subscription.get("current_period_end")),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end") or False),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if plan_id:
        row["plan_id"] = plan_id
    return row


def company_status_row(status: str) -> Dict[str, Any]:
    blocked = status in BLOCKING_STATUSES
    return {
        "subscription_status": status,
        "blocked_at": datetime.now(timezone.utc).isoformat() if blocked else None,
        "block_reason": BLOCK_REASONS.get(status) if blocked else None,
    }


def canceled_row() -> Dict[str, Any]:
    now = datetime.now(timezone.utc).isoformat()
    return {"status": "canceled", "canceled_at": now, "ended_at": now, "updated_at": now}


def invoice_payment_row(subscription: Dict[str, Any], invoice: Dict[str, Any], paid: bool) -> Dict[str, Any]:
    """Ligne subscription_payments d'une facture Stripe (montants en unités mineures)."""
    minor = invoice.get("amount_paid") if paid else invoice.get("amount_due")
    return {
        "subscription_id": subscription.get("id"),
        "company_id": subscription.get("company_id"),
        "stripe_invoice_id": invoice.get("id"),
        "stripe_payment_intent_id": invoice.get("payment_intent") if paid else None,
        "amount": float(Decimal(int(minor or 0)) / 100),
        "status": "succeeded" if paid else "failed",
        "payment_method": "card",
        "description": invoice.get("description") or (
            f"Pagamento {invoice.get('billing_reason') or ''}".strip() if paid else "Falha no pagamento"
        ),
    }
