from typing import Optional
from supabase import create_client, Client, ClientOptions
from comanda.config import SUPABASE_URL, SUPABASE_SERVICE_KEY, STORAGE_TIMEOUT_SECONDS

_service_supabase: Optional[Client] = None

def _options() -> ClientOptions:
    # Un appel PostgREST bloqué ne doit jamais faire pendre la requête
    return ClientOptions(postgrest_client_timeout=STORAGE_TIMEOUT_SECONDS)

def get_service_supabase() -> Client:
    """
    Client service-role (bypass RLS): utilisé pour toutes les écritures du checkout,
    qui se font côté serveur après confirmation Stripe.
    """
    global _service_supabase
    if not SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY manquant pour get_service_supabase()")
    if _service_supabase is None:
        _service_supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY, options=_options())
    return _service_supabase
