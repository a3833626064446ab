"""
Gestionnaires d'exceptions.
- CheckoutError: JSON structuré {error, detail} avec le statut porté par l'erreur.
- HTTPException: JSON FastAPI standard {detail}.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from comanda.errors import CheckoutError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Aucune erreur du checkout ne doit traverser la frontière HTTP en 500 opaque."""
    @app.exception_handler(CheckoutError)
    async def checkout_error(request: Request, exc: CheckoutError):
        if exc.status_code >= 500:
            logger.error("%s %s failed code=%s detail=%s", request.method, request.url.path, exc.code, exc.message)
        else:
            logger.info("%s %s rejected code=%s detail=%s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message, "retryable": exc.retryable},
        )

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
