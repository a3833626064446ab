from urllib.parse import urlparse
import socket

import comanda.infra.supabase_client as supabase_client
from comanda import config
from comanda.payments.schemas import COUPON_REDEMPTIONS_TABLE, LINE_ITEMS_TABLE, ORDERS_TABLE
from comanda.subscriptions.schemas import SUBSCRIPTIONS_TABLE

PROBED_TABLES = (ORDERS_TABLE, LINE_ITEMS_TABLE, COUPON_REDEMPTIONS_TABLE, SUBSCRIPTIONS_TABLE)


def _check_table(client, name: str):
    try:
        res = client.table(name).select("id").limit(1).execute()
        return {"ok": True, "rows": len(res.data or [])}
    except Exception as e:
        return {"ok": False, "error": str(e)}


def health_supabase_info():
    """Diagnostic Supabase: résolution DNS, connexion service-role, sonde des tables du checkout."""
    parsed = urlparse(config.SUPABASE_URL) if config.SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info = {
        "supabase_url": config.SUPABASE_URL,
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = supabase_client.get_service_supabase()
    except Exception as e:
        info["error"] = str(e)
        return info
    for t in PROBED_TABLES:
        info["tables"][t] = _check_table(client, t)
    info["connect_ok"] = all(t["ok"] for t in info["tables"].values())
    return info
