"""
Taxonomie des erreurs du checkout (partagée par payments, subscriptions et infra).
Chaque erreur porte un `code` stable (renvoyé tel quel au client JSON),
un statut HTTP et un indicateur `retryable` pour l'appelant.
"""
from typing import Optional


class CheckoutError(Exception):
    code = "CheckoutError"
    status_code = 400
    retryable = False

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code


class InvalidAmount(CheckoutError):
    """Total client différent du total recalculé (au-delà de la tolérance)."""
    code = "InvalidAmount"


class InvalidDraft(CheckoutError):
    """Brouillon de commande mal formé (payload client ou metadata Stripe)."""
    code = "InvalidDraft"


class InvalidCoupon(CheckoutError):
    code = "InvalidCoupon"


class ProviderUnavailable(CheckoutError):
    """Erreur transitoire réseau/Stripe: l'appelant peut réessayer (backoff, 3 essais max)."""
    code = "ProviderUnavailable"
    status_code = 503
    retryable = True


class PaymentNotConfigured(CheckoutError):
    code = "PaymentNotConfigured"
    status_code = 503


class SessionNotFound(CheckoutError):
    code = "SessionNotFound"
    status_code = 404


class PaymentNotConfirmed(CheckoutError):
    """Paiement pas encore réglé: non fatal, le client peut patienter puis relancer."""
    code = "PaymentNotConfirmed"
    status_code = 409
    retryable = True


class PaymentFailed(CheckoutError):
    """Session expirée ou annulée: état terminal."""
    code = "PaymentFailed"
    status_code = 410


class AlreadyRedeemed(CheckoutError):
    code = "AlreadyRedeemed"
    status_code = 409


class PersistenceFailure(CheckoutError):
    """Erreur de stockage; sûre à réessayer car la matérialisation est idempotente."""
    code = "PersistenceFailure"
    status_code = 500
    retryable = True
