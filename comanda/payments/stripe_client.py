"""
Adaptateur Stripe (Payment Session Gateway): centralise les appels et la configuration Stripe.

- Timeout HTTP explicite (STRIPE_TIMEOUT_SECONDS) et retries réseau bornés du SDK.
- Les erreurs Stripe sont traduites dans la taxonomie du checkout:
  resource_missing -> SessionNotFound, réseau/timeout/429/5xx -> ProviderUnavailable,
  tout autre refus Stripe -> ProviderRejected.
- Aucune persistance locale ici, et aucun cache de l'état des sessions.
"""
import logging
from typing import Any, Callable, Dict, NamedTuple, Optional

import stripe
from fastapi import Request

from comanda import config
from comanda.errors import CheckoutError, InvalidAmount, PaymentNotConfigured, ProviderUnavailable, SessionNotFound
from .metadata import draft_to_metadata
from .schemas import OrderDraft, PaymentSession
from .totals import to_minor_units

logger = logging.getLogger(__name__)

_http_client: Optional[Any] = None


class ReturnUrls(NamedTuple):
    success_url: str
    cancel_url: str


# module comanda.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - Installe un client HTTP avec timeout (une seule instance par process).
    """
    global _http_client
    if config.STRIPE_SECRET_KEY:
        stripe.api_key = config.STRIPE_SECRET_KEY
    stripe.max_network_retries = config.STRIPE_MAX_NETWORK_RETRIES
    if _http_client is None:
        _http_client = stripe.RequestsClient(timeout=config.STRIPE_TIMEOUT_SECONDS)
        stripe.default_http_client = _http_client
    return stripe


def _call(action: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Exécute un appel SDK et traduit les erreurs Stripe."""
    require_stripe()
    try:
        return fn(*args, **kwargs)
    except stripe.InvalidRequestError as e:
        if getattr(e, "code", None) == "resource_missing":
            raise SessionNotFound(f"Ressource Stripe introuvable ({action})")
        logger.error("stripe.%s rejected error=%s", action, e)
        raise CheckoutError(f"Requête refusée par Stripe ({action})", code="ProviderRejected")
    except stripe.AuthenticationError:
        logger.error("stripe.%s authentication failed (STRIPE_SECRET_KEY)", action)
        raise PaymentNotConfigured("Sistema de pagamento não configurado")
    except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
        logger.warning("stripe.%s unavailable error=%s", action, e)
        raise ProviderUnavailable(f"Stripe indisponible ({action})")
    except stripe.StripeError as e:
        # PermissionError, IdempotencyError, ... : refus non transitoire
        logger.error("stripe.%s rejected error=%s", action, e)
        raise CheckoutError(f"Requête refusée par Stripe ({action})", code="ProviderRejected")


def session_status(session: Dict[str, Any]) -> str:
    """Statut normalisé: created | paid | expired | canceled."""
    if (session.get("payment_status") or "") == "paid":
        return "paid"
    if (session.get("status") or "") == "expired":
        return "expired"
    return "created"


def _to_payment_session(session: Dict[str, Any]) -> PaymentSession:
    return PaymentSession(
        session_id=str(session.get("id") or ""),
        status=session_status(session),
        amount_minor_units=session.get("amount_total"),
        metadata={str(k): str(v) for k, v in dict(session.get("metadata") or {}).items()},
        mode=session.get("mode") or "payment",
        redirect_url=session.get("url"),
        payment_status=session.get("payment_status"),
    )


def create_session(**params: Any) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout brute (mode payment ou subscription).
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    session = _call("create_session", stripe.checkout.Session.create, **params)
    return dict(session)


def get_session(session_id: str) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant.
    Retour: dict session incluant "id", "payment_status", "status", "metadata", etc.
    """
    if not session_id:
        raise SessionNotFound("session_id manquant")
    session = _call("get_session", stripe.checkout.Session.retrieve, session_id)
    return dict(session)


def create_checkout_session(draft: OrderDraft, total_minor_units: int, return_urls: ReturnUrls, currency: Optional[str] = None) -> Dict[str, str]:
    """
    Crée la session de paiement d'un brouillon de commande.
    - total_minor_units doit valoir round(draft.total * 100), sinon InvalidAmount.
    - Une seule ligne Stripe (le total validé), le brouillon voyage en metadata.
    Retour: {"session_id", "redirect_url"}
    """
    expected = to_minor_units(draft.total)
    if total_minor_units != expected:
        raise InvalidAmount(f"Montant incohérent ({total_minor_units} != {expected})")
    if total_minor_units <= 0:
        raise InvalidAmount("Montant nul ou négatif")

    title = f"Pedido Delivery - {draft.company_name or 'Restaurante'}"
    session = create_session(
        mode="payment",
        payment_method_types=["card"],
        line_items=[
            {
                "quantity": 1,
                "price_data": {
                    "currency": currency or config.CHECKOUT_CURRENCY,
                    "unit_amount": total_minor_units,
                    "product_data": {"name": title},
                },
            }
        ],
        success_url=return_urls.success_url,
        cancel_url=return_urls.cancel_url,
        metadata=draft_to_metadata(draft),
    )
    return {"session_id": session.get("id"), "redirect_url": session.get("url")}


def fetch_session_status(session_id: str) -> PaymentSession:
    """Lit l'état autoritaire de la session chez Stripe (jamais mis en cache)."""
    return _to_payment_session(get_session(session_id))


def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    subscription = _call("retrieve_subscription", stripe.Subscription.retrieve, subscription_id)
    return dict(subscription)


async def parse_event(request: Request):
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: l'objet event si la signature est valide.
    """
    require_stripe()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    return stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET or "")
