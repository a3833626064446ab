"""
Accès aux données pour la feature 'payments' (tables orders, order_line_items,
coupon_redemptions, coupons, loyalty_*, refunds), via le client Supabase service-role.

Contrairement aux lectures « best-effort » d'un listing, une erreur de stockage
est levée en PersistenceFailure et une violation d'unicité en DuplicateRecord
(voir comanda.infra.storage).
"""
from typing import Any, Dict, List, Optional

from comanda.errors import PersistenceFailure
from comanda.infra.storage import DuplicateRecord, first as _first, run_query as _run
from .schemas import (
    COUPON_REDEMPTIONS_TABLE,
    COUPONS_TABLE,
    LINE_ITEMS_TABLE,
    ORDERS_TABLE,
    REFUNDS_TABLE,
)

LOYALTY_CONFIG_TABLE = "loyalty_config"
LOYALTY_ACCOUNTS_TABLE = "loyalty_accounts"
LOYALTY_TRANSACTIONS_TABLE = "loyalty_transactions"


# module comanda.payments.repository
# --- orders / order_line_items ---
def find_order_by_session(payment_session_id: str) -> Optional[Dict[str, Any]]:
    rows = _run(
        "find_order_by_session",
        lambda c: c.table(ORDERS_TABLE).select("*").eq("payment_session_id", payment_session_id).limit(1),
    )
    return _first(rows)


def insert_order(row: Dict[str, Any]) -> Dict[str, Any]:
    """Insère la commande; DuplicateRecord si payment_session_id existe déjà."""
    rows = _run("insert_order", lambda c: c.table(ORDERS_TABLE).insert(row))
    created = _first(rows)
    if not created or not created.get("id"):
        raise PersistenceFailure("Insertion de la commande sans retour de ligne")
    return created


def insert_line_items(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not rows:
        return []
    return _run("insert_line_items", lambda c: c.table(LINE_ITEMS_TABLE).insert(rows))


def delete_order(order_id: str) -> None:
    """Suppression compensatoire (les line items suivent par cascade)."""
    _run("delete_order", lambda c: c.table(ORDERS_TABLE).delete().eq("id", order_id))


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    rows = _run("get_order", lambda c: c.table(ORDERS_TABLE).select("*").eq("id", order_id).limit(1))
    return _first(rows)


def list_line_items(order_id: str) -> List[Dict[str, Any]]:
    return _run("list_line_items", lambda c: c.table(LINE_ITEMS_TABLE).select("*").eq("order_id", order_id))


# --- coupons / coupon_redemptions ---
def get_coupon(coupon_id: str) -> Optional[Dict[str, Any]]:
    rows = _run("get_coupon", lambda c: c.table(COUPONS_TABLE).select("*").eq("id", coupon_id).limit(1))
    return _first(rows)


def find_coupon_redemption(coupon_id: str, order_id: str) -> Optional[Dict[str, Any]]:
    rows = _run(
        "find_coupon_redemption",
        lambda c: c.table(COUPON_REDEMPTIONS_TABLE).select("*").eq("coupon_id", coupon_id).eq("order_id", order_id).limit(1),
    )
    return _first(rows)


def insert_coupon_redemption(row: Dict[str, Any]) -> Dict[str, Any]:
    """DuplicateRecord si (coupon_id, order_id) existe déjà."""
    rows = _run("insert_coupon_redemption", lambda c: c.table(COUPON_REDEMPTIONS_TABLE).insert(row))
    return _first(rows) or dict(row)


def update_coupon_usage(coupon_id: str, current_uses: int) -> None:
    _run(
        "update_coupon_usage",
        lambda c: c.table(COUPONS_TABLE).update({"current_uses": current_uses}).eq("id", coupon_id),
    )


# --- loyalty ---
def get_loyalty_config(company_id: str) -> Optional[Dict[str, Any]]:
    rows = _run(
        "get_loyalty_config",
        lambda c: c.table(LOYALTY_CONFIG_TABLE).select("*").eq("company_id", company_id).eq("active", True).limit(1),
    )
    return _first(rows)


def get_loyalty_account(account_id: str) -> Optional[Dict[str, Any]]:
    rows = _run("get_loyalty_account", lambda c: c.table(LOYALTY_ACCOUNTS_TABLE).select("*").eq("id", account_id).limit(1))
    return _first(rows)


def find_loyalty_account(user_id: str, company_id: str) -> Optional[Dict[str, Any]]:
    rows = _run(
        "find_loyalty_account",
        lambda c: c.table(LOYALTY_ACCOUNTS_TABLE).select("*").eq("user_id", user_id).eq("company_id", company_id).limit(1),
    )
    return _first(rows)


def insert_loyalty_account(row: Dict[str, Any]) -> Dict[str, Any]:
    rows = _run("insert_loyalty_account", lambda c: c.table(LOYALTY_ACCOUNTS_TABLE).insert(row))
    created = _first(rows)
    if not created:
        raise PersistenceFailure("Insertion du compte fidélité sans retour de ligne")
    return created


def update_loyalty_balance(account_id: str, balance: int) -> None:
    _run(
        "update_loyalty_balance",
        lambda c: c.table(LOYALTY_ACCOUNTS_TABLE).update({"balance": balance}).eq("id", account_id),
    )


def insert_loyalty_transaction(row: Dict[str, Any]) -> Dict[str, Any]:
    rows = _run("insert_loyalty_transaction", lambda c: c.table(LOYALTY_TRANSACTIONS_TABLE).insert(row))
    return _first(rows) or dict(row)


# --- refunds ---
def mark_refund_succeeded(column: str, value: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Clôture les remboursements 'processing' liés à une commande ou un abonnement."""
    return _run(
        "mark_refund_succeeded",
        lambda c: c.table(REFUNDS_TABLE).update(values).eq(column, value).eq("status", "processing"),
    )
