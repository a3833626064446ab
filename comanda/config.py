# comanda.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service de checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe), CORS/hosts
- Expose les paramètres du checkout (devise, tolérance, timeouts, URLs de retour)
- Les feature flags sont lus ici mais ne sont consommés qu'au travers du
  CheckoutContext construit à chaque requête (comanda.payments.context)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_float(name: str, default: float) -> float:
    try:
        return float(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

def _env_int(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

# Supabase: URL et clé service-role
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Timeout des appels PostgREST (secondes)
STORAGE_TIMEOUT_SECONDS = _env_int("STORAGE_TIMEOUT_SECONDS", 10)

# Stripe: clé secrète, secret webhook, timeouts
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_TIMEOUT_SECONDS = _env_int("STRIPE_TIMEOUT_SECONDS", 10)
# 2 retries réseau => 3 tentatives au maximum
STRIPE_MAX_NETWORK_RETRIES = _env_int("STRIPE_MAX_NETWORK_RETRIES", 2)

# Checkout
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "brl").lower()
CHECKOUT_TOLERANCE = _env_float("CHECKOUT_TOLERANCE", 0.01)
DEFAULT_TRIAL_DAYS = _env_int("DEFAULT_TRIAL_DAYS", 3)
# Au-delà de ce délai, une commande sans line items est orpheline (et non en cours d'écriture)
ORPHAN_ORDER_GRACE_SECONDS = _env_int("ORPHAN_ORDER_GRACE_SECONDS", 60)

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# URL publique du front (redirections Stripe)
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Pages de succès/annulation (Stripe remplace {CHECKOUT_SESSION_ID})
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/delivery/success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/delivery?canceled=true")
SUBSCRIPTION_SUCCESS_PATH = os.getenv("SUBSCRIPTION_SUCCESS_PATH", "/admin?subscription=success&session_id={CHECKOUT_SESSION_ID}")
SUBSCRIPTION_CANCEL_PATH = os.getenv("SUBSCRIPTION_CANCEL_PATH", "/planos?canceled=true")

# Feature flags (ex: "coupons,loyalty,realtime"); tous actifs par défaut
FEATURE_FLAGS = [f.strip().lower() for f in os.getenv("FEATURE_FLAGS", "coupons,loyalty,realtime").split(",") if f.strip()]
