"""
Factory d'application utilisée par les entrypoints (comanda.asgi, python -m comanda).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from fastapi import FastAPI

from .exceptions import register_exception_handlers
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_force_https_middleware, register_security_middleware
from .routers import register_routers


def create_app() -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - middlewares de base et de sécurité (HTTPS en dernier)
      - gestionnaires d'exceptions
      - tous les routers (checkout, abonnements, health)
    """
    app = FastAPI(title="Comanda Checkout", lifespan=lifespan)
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_force_https_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
