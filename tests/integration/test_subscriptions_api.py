def test_subscription_start_and_complete(client, store, fake_stripe):
    store.plans["plan-1"] = {"id": "plan-1", "name": "Pro", "price_monthly": 99.9, "price_yearly": 999.0}

    r = client.post("/subscriptions/checkout/start", json={"companyId": "co-1", "planId": "plan-1", "period": "mensal", "trialDays": 0})
    assert r.status_code == 200
    sid = r.json()["sessionId"]
    assert "trial_period_days" not in fake_stripe.created[0]["subscription_data"]

    pending = client.post("/subscriptions/checkout/complete", json={"sessionId": sid})
    assert pending.json() == {"success": False, "error": "PaymentNotConfirmed"}

    fake_stripe.sessions[sid].update({"status": "complete", "payment_status": "paid", "subscription": "sub_9", "customer": "cus_9"})
    fake_stripe.subscriptions["sub_9"] = {"id": "sub_9", "status": "active"}
    done = client.post("/subscriptions/checkout/complete", json={"sessionId": sid}).json()

    assert done["success"] is True
    assert done["status"] == "active"
    assert done["period"] == "monthly"


def test_subscription_start_invalid_body(client, store, fake_stripe):
    r = client.post("/subscriptions/checkout/start", json={"companyId": "co-1"})
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidDraft"


def test_subscription_complete_unknown_session(client, store, fake_stripe):
    r = client.post("/subscriptions/checkout/complete", json={"sessionId": "cs_missing"})
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "SessionNotFound"}
