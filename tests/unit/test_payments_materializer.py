import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from comanda.errors import InvalidAmount, PaymentNotConfirmed, PersistenceFailure
from comanda.payments import materializer
from comanda.payments.schemas import OrderDraft, PaymentSession


def _draft(**overrides):
    data = {
        "company_id": "co-1",
        "user_id": "user-1",
        "line_items": [
            {"product_id": "p-1", "name": "Pizza", "quantity": 2, "unit_price": 20.0},
            {"product_id": "p-2", "name": "Suco", "quantity": 1, "unit_price": 10.0},
        ],
        "delivery_fee": 10.0,
        "discount": 5.0,
        "total": 55.0,
        "coupon_id": "c1",
    }
    data.update(overrides)
    return OrderDraft.model_validate(data)


def _paid(session_id="cs_1"):
    return PaymentSession(session_id=session_id, status="paid", amount_minor_units=5500)


def _now():
    return datetime.now(timezone.utc).isoformat()


def test_materialize_creates_order_items_and_redemption(ctx, store):
    result = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert result.created is True
    assert len(store.orders) == 1
    order = store.orders[0]
    assert order["payment_session_id"] == "cs_1"
    assert order["status"] == "paid"
    assert order["payment_method"] == "credit_card"
    assert order["subtotal"] == 50.0
    assert order["total"] == 55.0
    assert len(store.line_items) == 2
    assert {li["subtotal"] for li in store.line_items} == {40.0, 10.0}
    assert len(store.redemptions) == 1
    assert store.redemptions[0]["order_id"] == result.order_id


def test_materialize_twice_returns_same_order_without_new_rows(ctx, store):
    first = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
    second = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert second.created is False
    assert second.order_id == first.order_id
    assert len(store.orders) == 1
    assert len(store.line_items) == 2
    assert len(store.redemptions) == 1
    assert store.coupons["c1"]["current_uses"] == 1


def test_materialize_requires_paid_session(ctx, store, fake_stripe):
    fake_stripe.sessions["cs_1"] = {"id": "cs_1", "status": "open", "payment_status": "unpaid", "metadata": {}}
    with pytest.raises(PaymentNotConfirmed):
        materializer.materialize(ctx, "cs_1", _draft(), 55.0)
    assert store.orders == []


def test_materialize_rejects_inconsistent_total(ctx, store):
    with pytest.raises(InvalidAmount):
        materializer.materialize(ctx, "cs_1", _draft(), 60.0, session=_paid())
    assert store.orders == []


def test_line_item_failure_compensates_order(ctx, store, monkeypatch):
    def boom(rows):
        raise PersistenceFailure("insert_line_items")

    monkeypatch.setattr("comanda.payments.repository.insert_line_items", boom)
    with pytest.raises(PersistenceFailure):
        materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert store.orders == []
    assert store.line_items == []
    assert store.redemptions == []


def test_partial_line_items_compensates_order(ctx, store, monkeypatch):
    real_insert = store.insert_line_items
    monkeypatch.setattr("comanda.payments.repository.insert_line_items", lambda rows: real_insert(rows[:1]))
    with pytest.raises(PersistenceFailure):
        materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
    assert store.orders == []
    assert store.line_items == []


def test_lost_insert_race_returns_winner(ctx, store, monkeypatch):
    winner = store.insert_order({"payment_session_id": "cs_1", "total": 55.0, "created_at": _now()})
    store.insert_line_items([{"order_id": winner["id"], "product_id": "p-1", "quantity": 2}])
    # Le perdant n'a pas vu la commande lors de sa première lecture
    calls = {"n": 0}
    real_find = store.find_order_by_session

    def find_after_first(session_id):
        calls["n"] += 1
        return None if calls["n"] == 1 else real_find(session_id)

    monkeypatch.setattr("comanda.payments.repository.find_order_by_session", find_after_first)
    result = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert result.created is False
    assert result.order_id == winner["id"]
    assert len(store.orders) == 1


def test_concurrent_materialize_creates_exactly_one_order(ctx, store):
    def run(_):
        # Un perdant qui voit la commande avant ses items réessaie, comme le ferait le client
        for _attempt in range(200):
            try:
                return materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid()).order_id
            except PersistenceFailure as e:
                assert e.retryable is True
                time.sleep(0.005)
        pytest.fail("materialize n'a jamais abouti")

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(run, range(16)))

    assert len(set(ids)) == 1
    assert len(store.orders) == 1
    assert len(store.line_items) == 2
    assert len(store.redemptions) == 1


def test_coupons_flag_off_skips_redemption(ctx, store):
    no_coupons = ctx.__class__(base_url=ctx.base_url, currency=ctx.currency, flags=frozenset({"realtime"}), feed=ctx.feed)
    materializer.materialize(no_coupons, "cs_1", _draft(), 55.0, session=_paid())
    assert store.redemptions == []


def test_created_order_is_published(ctx, store):
    events = []
    ctx.feed.subscribe("orders", {"company_id": "co-1"}, events.append)

    materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
    materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert len(events) == 1
    assert events[0].type == "INSERT"
    assert events[0].record["payment_session_id"] == "cs_1"


def test_retry_after_failed_compensation_restores_line_items(ctx, store, monkeypatch):
    def no_items(rows):
        raise PersistenceFailure("insert_line_items")

    def no_delete(order_id):
        raise PersistenceFailure("delete_order")

    with monkeypatch.context() as m:
        m.setattr("comanda.payments.repository.insert_line_items", no_items)
        m.setattr("comanda.payments.repository.delete_order", no_delete)
        with pytest.raises(PersistenceFailure):
            materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    # Commande orpheline, sans line items
    assert len(store.orders) == 1
    assert store.line_items == []
    orphan_id = store.orders[0]["id"]
    store.orders[0]["created_at"] = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()

    retry = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert retry.created is False
    assert retry.order_id == orphan_id
    assert len(retry.items) == 2
    assert len(store.list_line_items(orphan_id)) == 2
    assert len(store.redemptions) == 1


def test_recent_order_without_items_is_retryable(ctx, store):
    store.insert_order({"payment_session_id": "cs_1", "total": 55.0, "created_at": _now()})

    with pytest.raises(PersistenceFailure) as exc:
        materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())

    assert exc.value.retryable is True
    assert store.line_items == []
    assert store.redemptions == []


def test_loser_never_returns_order_rolled_back_by_winner(ctx, store, monkeypatch):
    inside_insert = threading.Event()
    release = threading.Event()

    def blocked_then_failing(rows):
        inside_insert.set()
        release.wait(timeout=5)
        raise PersistenceFailure("insert_line_items")

    monkeypatch.setattr("comanda.payments.repository.insert_line_items", blocked_then_failing)
    outcome = {}

    def winner():
        try:
            materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
        except PersistenceFailure as e:
            outcome["winner"] = e

    t = threading.Thread(target=winner)
    t.start()
    assert inside_insert.wait(timeout=5)

    # Le perdant voit la commande du gagnant sans ses items
    with pytest.raises(PersistenceFailure) as exc:
        materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
    assert exc.value.retryable is True

    release.set()
    t.join(timeout=5)
    assert isinstance(outcome.get("winner"), PersistenceFailure)
    assert store.orders == []

    # Une nouvelle tentative crée la commande complète
    monkeypatch.setattr("comanda.payments.repository.insert_line_items", store.insert_line_items)
    retry = materializer.materialize(ctx, "cs_1", _draft(), 55.0, session=_paid())
    assert retry.created is True
    assert store.get_order(retry.order_id) is not None
    assert len(store.line_items) == 2
