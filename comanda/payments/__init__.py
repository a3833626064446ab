"""
Module 'payments' (feature-first): point d'entrée public du checkout delivery.
Réunit validation des totaux, metadata Stripe, client Stripe, repository BD,
matérialisation idempotente, registre des coupons et services.
"""

from comanda.errors import (
    CheckoutError,
    InvalidAmount,
    InvalidDraft,
    InvalidCoupon,
    ProviderUnavailable,
    PaymentNotConfigured,
    SessionNotFound,
    PaymentNotConfirmed,
    PaymentFailed,
    AlreadyRedeemed,
    PersistenceFailure,
)
from .schemas import SCHEMA_VERSION, LineItem, OrderDraft, PaymentSession, CheckoutResult
from .totals import validate, to_minor_units
from .metadata import draft_to_metadata, draft_from_metadata
from .stripe_client import require_stripe, create_checkout_session, fetch_session_status, parse_event
from .context import CheckoutContext, get_checkout_context
from .materializer import materialize
from .coupons import redeem, check_coupon
from .service import start_checkout, complete_checkout, get_order

__all__ = [
    # errors
    "CheckoutError",
    "InvalidAmount",
    "InvalidDraft",
    "InvalidCoupon",
    "ProviderUnavailable",
    "PaymentNotConfigured",
    "SessionNotFound",
    "PaymentNotConfirmed",
    "PaymentFailed",
    "AlreadyRedeemed",
    "PersistenceFailure",
    # schema contract
    "SCHEMA_VERSION",
    "LineItem",
    "OrderDraft",
    "PaymentSession",
    "CheckoutResult",
    # totals / metadata
    "validate",
    "to_minor_units",
    "draft_to_metadata",
    "draft_from_metadata",
    # stripe
    "require_stripe",
    "create_checkout_session",
    "fetch_session_status",
    "parse_event",
    # context
    "CheckoutContext",
    "get_checkout_context",
    # materialisation / ledger / services
    "materialize",
    "redeem",
    "check_coupon",
    "start_checkout",
    "complete_checkout",
    "get_order",
]
