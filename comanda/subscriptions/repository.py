"""Accès aux tables plans, subscriptions, subscription_payments et companies (client service-role)."""
from typing import Any, Dict, Optional

from comanda.infra.storage import first, run_query
from .schemas import COMPANIES_TABLE, PLANS_TABLE, SUBSCRIPTION_PAYMENTS_TABLE, SUBSCRIPTIONS_TABLE


# module comanda.subscriptions.repository
def get_plan(plan_id: str) -> Optional[Dict[str, Any]]:
    rows = run_query("get_plan", lambda c: c.table(PLANS_TABLE).select("*").eq("id", plan_id).limit(1))
    return first(rows)


def get_subscription(company_id: str) -> Optional[Dict[str, Any]]:
    rows = run_query(
        "get_subscription",
        lambda c: c.table(SUBSCRIPTIONS_TABLE).select("*").eq("company_id", company_id).limit(1),
    )
    return first(rows)


def upsert_subscription(row: Dict[str, Any]) -> Dict[str, Any]:
    """Une ligne par entreprise: un second appel met à jour la même ligne."""
    rows = run_query(
        "upsert_subscription",
        lambda c: c.table(SUBSCRIPTIONS_TABLE).upsert(row, on_conflict="company_id"),
    )
    return first(rows) or dict(row)


def update_company_status(company_id: str, values: Dict[str, Any]) -> None:
    run_query(
        "update_company_status",
        lambda c: c.table(COMPANIES_TABLE).update(values).eq("id", company_id),
    )


def find_subscription_by_stripe_id(stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
    rows = run_query(
        "find_subscription_by_stripe_id",
        lambda c: c.table(SUBSCRIPTIONS_TABLE).select("*").eq("stripe_subscription_id", stripe_subscription_id).limit(1),
    )
    return first(rows)


def find_plan_by_price(price_id: str) -> Optional[Dict[str, Any]]:
    rows = run_query(
        "find_plan_by_price",
        lambda c: c.table(PLANS_TABLE)
        .select("id")
        .or_(f"stripe_price_id_monthly.eq.{price_id},stripe_price_id_yearly.eq.{price_id}")
        .limit(1),
    )
    return first(rows)


def update_subscription(company_id: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    rows = run_query(
        "update_subscription",
        lambda c: c.table(SUBSCRIPTIONS_TABLE).update(values).eq("company_id", company_id),
    )
    return first(rows)


def insert_subscription_payment(row: Dict[str, Any]) -> Dict[str, Any]:
    rows = run_query("insert_subscription_payment", lambda c: c.table(SUBSCRIPTION_PAYMENTS_TABLE).insert(row))
    return first(rows) or dict(row)
