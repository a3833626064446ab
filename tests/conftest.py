import os

# Avant tout import de l'app: pas de Redis pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import threading
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from comanda.app import app as fastapi_app
from comanda.errors import SessionNotFound
from comanda.infra.realtime import ChangeFeed
from comanda.infra.storage import DuplicateRecord
from comanda.payments.context import CheckoutContext


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


# Aucun test ne doit atteindre un vrai projet Supabase
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("comanda.infra.supabase_client.get_service_supabase", lambda: MagicMock())


@pytest.fixture()
def ctx() -> CheckoutContext:
    return CheckoutContext(
        base_url="https://app.test",
        currency="brl",
        flags=frozenset({"coupons", "loyalty", "realtime"}),
        feed=ChangeFeed(),
    )


class InMemoryStore:
    """
    Remplace les tables Supabase avec les mêmes contraintes d'unicité:
    orders.payment_session_id, coupon_redemptions(coupon_id, order_id),
    subscriptions.company_id, subscription_payments(stripe_invoice_id, status).
    Les line items suivent la commande en cascade.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.orders: List[Dict[str, Any]] = []
        self.line_items: List[Dict[str, Any]] = []
        self.redemptions: List[Dict[str, Any]] = []
        self.coupons: Dict[str, Dict[str, Any]] = {}
        self.loyalty_configs: Dict[str, Dict[str, Any]] = {}
        self.loyalty_accounts: List[Dict[str, Any]] = []
        self.loyalty_transactions: List[Dict[str, Any]] = []
        self.plans: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.companies: Dict[str, Dict[str, Any]] = {}
        self.subscription_payments: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []

    # --- orders ---
    def find_order_by_session(self, payment_session_id):
        with self._lock:
            return next((dict(o) for o in self.orders if o["payment_session_id"] == payment_session_id), None)

    def insert_order(self, row):
        with self._lock:
            if any(o["payment_session_id"] == row["payment_session_id"] for o in self.orders):
                raise DuplicateRecord("insert_order")
            created = {**row, "id": str(uuid4())}
            self.orders.append(created)
            return dict(created)

    def insert_line_items(self, rows):
        with self._lock:
            created = [{**r, "id": str(uuid4())} for r in rows]
            self.line_items.extend(created)
            return [dict(r) for r in created]

    def delete_order(self, order_id):
        with self._lock:
            self.orders = [o for o in self.orders if o["id"] != order_id]
            self.line_items = [li for li in self.line_items if li["order_id"] != order_id]

    def get_order(self, order_id):
        with self._lock:
            return next((dict(o) for o in self.orders if o["id"] == order_id), None)

    def list_line_items(self, order_id):
        with self._lock:
            return [dict(li) for li in self.line_items if li["order_id"] == order_id]

    # --- coupons ---
    def get_coupon(self, coupon_id):
        with self._lock:
            coupon = self.coupons.get(coupon_id)
            return dict(coupon) if coupon else None

    def find_coupon_redemption(self, coupon_id, order_id):
        with self._lock:
            return next(
                (dict(r) for r in self.redemptions if r["coupon_id"] == coupon_id and r["order_id"] == order_id),
                None,
            )

    def insert_coupon_redemption(self, row):
        with self._lock:
            if any(r["coupon_id"] == row["coupon_id"] and r["order_id"] == row["order_id"] for r in self.redemptions):
                raise DuplicateRecord("insert_coupon_redemption")
            created = {**row, "id": str(uuid4())}
            self.redemptions.append(created)
            return dict(created)

    def update_coupon_usage(self, coupon_id, current_uses):
        with self._lock:
            self.coupons[coupon_id]["current_uses"] = current_uses

    # --- loyalty ---
    def get_loyalty_config(self, company_id):
        return self.loyalty_configs.get(company_id)

    def get_loyalty_account(self, account_id):
        return next((a for a in self.loyalty_accounts if a["id"] == account_id), None)

    def find_loyalty_account(self, user_id, company_id):
        return next(
            (a for a in self.loyalty_accounts if a["user_id"] == user_id and a["company_id"] == company_id),
            None,
        )

    def insert_loyalty_account(self, row):
        created = {**row, "id": str(uuid4())}
        self.loyalty_accounts.append(created)
        return created

    def update_loyalty_balance(self, account_id, balance):
        self.get_loyalty_account(account_id)["balance"] = balance

    def insert_loyalty_transaction(self, row):
        self.loyalty_transactions.append(dict(row))
        return dict(row)

    # --- subscriptions ---
    def get_plan(self, plan_id):
        return self.plans.get(plan_id)

    def get_subscription(self, company_id):
        return self.subscriptions.get(company_id)

    def upsert_subscription(self, row):
        with self._lock:
            current = self.subscriptions.get(row["company_id"], {"id": str(uuid4())})
            self.subscriptions[row["company_id"]] = {**current, **row}
            return dict(self.subscriptions[row["company_id"]])

    def update_company_status(self, company_id, values):
        self.companies.setdefault(company_id, {"id": company_id}).update(values)

    def find_subscription_by_stripe_id(self, stripe_subscription_id):
        return next(
            (dict(s) for s in self.subscriptions.values() if s.get("stripe_subscription_id") == stripe_subscription_id),
            None,
        )

    def find_plan_by_price(self, price_id):
        return next(
            (p for p in self.plans.values() if price_id in (p.get("stripe_price_id_monthly"), p.get("stripe_price_id_yearly"))),
            None,
        )

    def update_subscription(self, company_id, values):
        with self._lock:
            if company_id not in self.subscriptions:
                return None
            self.subscriptions[company_id].update(values)
            return dict(self.subscriptions[company_id])

    def insert_subscription_payment(self, row):
        with self._lock:
            if any(p["stripe_invoice_id"] == row["stripe_invoice_id"] and p["status"] == row["status"] for p in self.subscription_payments):
                raise DuplicateRecord("insert_subscription_payment")
            created = {**row, "id": str(uuid4())}
            self.subscription_payments.append(created)
            return dict(created)

    # --- refunds ---
    def mark_refund_succeeded(self, column, value, values):
        updated = []
        for r in self.refunds:
            if r.get(column) == value and r.get("status") == "processing":
                r.update(values)
                updated.append(dict(r))
        return updated


_PAYMENTS_REPO_FUNCS = (
    "find_order_by_session",
    "insert_order",
    "insert_line_items",
    "delete_order",
    "get_order",
    "list_line_items",
    "get_coupon",
    "find_coupon_redemption",
    "insert_coupon_redemption",
    "update_coupon_usage",
    "get_loyalty_config",
    "get_loyalty_account",
    "find_loyalty_account",
    "insert_loyalty_account",
    "update_loyalty_balance",
    "insert_loyalty_transaction",
    "mark_refund_succeeded",
)
_SUBSCRIPTIONS_REPO_FUNCS = (
    "get_plan",
    "get_subscription",
    "upsert_subscription",
    "update_company_status",
    "find_subscription_by_stripe_id",
    "find_plan_by_price",
    "update_subscription",
    "insert_subscription_payment",
)


@pytest.fixture()
def store(monkeypatch) -> InMemoryStore:
    s = InMemoryStore()
    s.coupons["c1"] = {"id": "c1", "code": "BEMVINDO", "active": True, "current_uses": 0, "max_uses": 100}
    for name in _PAYMENTS_REPO_FUNCS:
        monkeypatch.setattr(f"comanda.payments.repository.{name}", getattr(s, name))
    for name in _SUBSCRIPTIONS_REPO_FUNCS:
        monkeypatch.setattr(f"comanda.subscriptions.repository.{name}", getattr(s, name))
    return s


class FakeStripe:
    """Sessions Checkout en mémoire, au niveau des dicts renvoyés par le SDK."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []

    def create_session(self, **params):
        sid = f"cs_test_{len(self.sessions) + 1}"
        amount = sum(
            int((li.get("price_data") or {}).get("unit_amount") or 0) * int(li.get("quantity") or 1)
            for li in params.get("line_items") or []
        )
        session = {
            "id": sid,
            "url": f"https://checkout.stripe.test/pay/{sid}",
            "status": "open",
            "payment_status": "unpaid",
            "amount_total": amount,
            "mode": params.get("mode", "payment"),
            "metadata": dict(params.get("metadata") or {}),
            "customer": params.get("customer"),
            "subscription": None,
        }
        self.sessions[sid] = session
        self.created.append(params)
        return dict(session)

    def get_session(self, session_id):
        if session_id not in self.sessions:
            raise SessionNotFound(f"Ressource Stripe introuvable ({session_id})")
        return dict(self.sessions[session_id])

    def retrieve_subscription(self, subscription_id):
        return dict(self.subscriptions[subscription_id])

    def pay(self, session_id: str, **extra) -> None:
        self.sessions[session_id].update({"status": "complete", "payment_status": "paid", **extra})

    def expire(self, session_id: str) -> None:
        self.sessions[session_id]["status"] = "expired"

    def last_session_id(self) -> Optional[str]:
        return list(self.sessions)[-1] if self.sessions else None


@pytest.fixture()
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    monkeypatch.setattr("comanda.payments.stripe_client.create_session", fake.create_session)
    monkeypatch.setattr("comanda.payments.stripe_client.get_session", fake.get_session)
    monkeypatch.setattr("comanda.payments.stripe_client.retrieve_subscription", fake.retrieve_subscription)
    return fake


@pytest.fixture()
def draft_payload() -> Dict[str, Any]:
    """Brouillon du front: 2×20.00 + 1×10.00 + frete 10.00 − desconto 5.00 = 55.00"""
    return {
        "companyId": "co-1",
        "companyName": "Pizzaria Bella",
        "addressId": "addr-1",
        "userId": "user-1",
        "lineItems": [
            {"productId": "p-1", "name": "Pizza Margherita", "quantity": 2, "unitPrice": 20.00},
            {"productId": "p-2", "name": "Refrigerante", "quantity": 1, "unitPrice": 10.00},
        ],
        "deliveryFee": 10.00,
        "discount": 5.00,
        "total": 55.00,
        "couponId": "c1",
        "notes": "Sem cebola",
    }
