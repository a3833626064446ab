from unittest.mock import MagicMock


def test_health_root(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["rate_limit"]["enabled"] is False


def test_health_supabase_probes_tables(client, monkeypatch):
    monkeypatch.setattr("comanda.config.SUPABASE_URL", "")
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    monkeypatch.setattr("comanda.infra.supabase_client.get_service_supabase", lambda: mock_client)

    r = client.get("/health/supabase")

    assert r.status_code == 200
    body = r.json()
    assert body["connect_ok"] is True
    assert set(body["tables"]) == {"orders", "order_line_items", "coupon_redemptions", "subscriptions"}


def test_health_supabase_reports_failure(client, monkeypatch):
    monkeypatch.setattr("comanda.config.SUPABASE_URL", "")

    def missing_key():
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY manquant pour get_service_supabase()")

    monkeypatch.setattr("comanda.infra.supabase_client.get_service_supabase", missing_key)
    r = client.get("/health/supabase")
    assert r.status_code == 503
    assert "SUPABASE_SERVICE_ROLE_KEY" in r.json()["error"]
