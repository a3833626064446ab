"""
Contexte explicite transmis aux cas d'usage du checkout.

Les feature flags, URLs de retour et le flux de changements sont figés par
requête dans un CheckoutContext au lieu d'être lus depuis un état global mutable.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Request

from comanda import config
from comanda.infra.realtime import ChangeEvent, ChangeFeed
from .stripe_client import ReturnUrls


@dataclass(frozen=True)
class CheckoutContext:
    base_url: str = config.BASE_URL
    currency: str = config.CHECKOUT_CURRENCY
    flags: FrozenSet[str] = field(default_factory=lambda: frozenset(config.FEATURE_FLAGS))
    feed: Optional[ChangeFeed] = None

    def enabled(self, flag: str) -> bool:
        return flag.lower() in self.flags

    def return_urls(self, success_path: str = config.CHECKOUT_SUCCESS_PATH, cancel_path: str = config.CHECKOUT_CANCEL_PATH) -> ReturnUrls:
        base = self.base_url.rstrip("/")
        return ReturnUrls(success_url=f"{base}{success_path}", cancel_url=f"{base}{cancel_path}")

    def publish(self, table: str, type: str, record: dict) -> int:
        if self.feed is None or not self.enabled("realtime"):
            return 0
        return self.feed.publish(ChangeEvent(table=table, type=type, record=dict(record)))


def get_checkout_context(request: Request) -> CheckoutContext:
    """
    Dépendance FastAPI: construit le contexte de la requête.
    - base_url: en-tête Origin du front s'il fait partie des CORS_ORIGINS, sinon BASE_URL.
    - feed: instance créée par le lifespan (app.state.change_feed).
    """
    origin = (request.headers.get("origin") or "").rstrip("/")
    if origin and "*" not in config.CORS_ORIGINS and origin not in config.CORS_ORIGINS:
        origin = ""
    return CheckoutContext(
        base_url=origin or config.BASE_URL,
        currency=config.CHECKOUT_CURRENCY,
        flags=frozenset(config.FEATURE_FLAGS),
        feed=getattr(request.app.state, "change_feed", None),
    )
