"""
Middlewares transverses de l'application.
- register_basic_middlewares: CORS, TrustedHost et confiance en X-Forwarded-*.
- register_security_middleware: en-têtes de sécurité (API JSON, pas de pages HTML).
- register_force_https_middleware: redirection HTTPS derrière un proxy.
Notes:
- L'ordre d'ajout est important: le middleware HTTPS est ajouté en dernier pour s'exécuter en premier.
"""
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware
try:
    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
except ImportError:
    ProxyHeadersMiddleware = None

from comanda.config import ALLOWED_HOSTS, COOKIE_SECURE, CORS_ORIGINS


def register_basic_middlewares(app: FastAPI) -> None:
    """
    Ajoute les middlewares « de base »:
    - CORSMiddleware: autorise les origines du front (dev/prod).
    - TrustedHostMiddleware: limite les hôtes acceptés (défense host header).
    - ProxyHeadersMiddleware (si dispo): fait confiance aux en-têtes du proxy (x-forwarded-*).
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials="*" not in CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=ALLOWED_HOSTS + ["*"] if "*" in CORS_ORIGINS else ALLOWED_HOSTS,
    )
    if ProxyHeadersMiddleware:
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


def register_security_middleware(app: FastAPI) -> None:
    """
    En-têtes: X-Frame-Options, X-Content-Type-Options, Referrer-Policy, HSTS (si secure).
    Les réponses du checkout ne sont jamais mises en cache (état de paiement).
    """
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if COOKIE_SECURE:
            response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
        path = request.url.path
        if path.startswith("/checkout") or path.startswith("/subscriptions"):
            response.headers["Cache-Control"] = "no-store"
        return response


def register_force_https_middleware(app: FastAPI) -> None:
    """
    Force la redirection HTTP -> HTTPS lorsqu'un proxy place x-forwarded-proto=http.
    Actif seulement si FORCE_HTTPS=1.
    """
    if os.getenv("FORCE_HTTPS") != "1":
        return

    @app.middleware("http")
    async def force_https(request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "http":
            url = str(request.url).replace("http://", "https://", 1)
            return RedirectResponse(url, status_code=301)
        return await call_next(request)
