"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Crée le flux de changements de l'application (app.state.change_feed).
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import os
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from comanda.infra.realtime import ChangeFeed


async def _init_rate_limit(app: FastAPI, logger: logging.Logger) -> None:
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
        else:
            app.state.rate_limit_enabled = False
            logger.warning("Rate limiting disabled due to init error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Un seul ChangeFeed par application, transmis aux cas d'usage via le CheckoutContext.
    En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    """
    logger = logging.getLogger("uvicorn.error")
    app.state.change_feed = ChangeFeed()
    await _init_rate_limit(app, logger)
    try:
        yield
    finally:
        if app.state.rate_limit_enabled and getattr(FastAPILimiter, "redis", None) is not None:
            await FastAPILimiter.close()
        logger.info("Change feed closed with %s subscription(s)", len(app.state.change_feed))
