"""
Registre central des routers (checkout delivery, abonnements, health).
"""
from fastapi import FastAPI

from comanda.health.router import router as health_router
from comanda.payments import views as payments_views
from comanda.subscriptions import views as subscriptions_views


def register_routers(app: FastAPI) -> None:
    app.include_router(payments_views.router)
    app.include_router(subscriptions_views.router)
    # Health & monitoring
    app.include_router(health_router)
