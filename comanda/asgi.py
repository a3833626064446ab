"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, uvicorn (ou gunicorn -k uvicorn.workers.UvicornWorker) importe `comanda.asgi:app`.
- Toute la configuration FastAPI est centralisée dans comanda.app_setup, ce fichier
  ne fait qu'exposer l'instance `app`.
"""

from comanda.app import app

__all__ = ["app"]
