"""
Rate limiting optionnel des endpoints de checkout.
- fastapi-limiter (Redis) quand le lifespan l'a initialisé.
- LOCAL_RATE_LIMIT_FALLBACK=1: compteur mémoire par process (dev).
- app.state.rate_limit_enabled == False: aucune limite (tests, Redis absent).
"""
from typing import Any, Dict
from urllib.parse import urlparse
import hashlib
import os
import time

from fastapi import HTTPException, Request
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter


def client_key(request: Request) -> str:
    """Clé de limitation: jeton Authorization (hashé) puis IP, par chemin."""
    path = request.url.path
    token = request.headers.get("authorization")
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = request.client.host if request.client else "local"
    return f"ip:{ip}:{path}"


def _local_hit(request: Request, times: int, seconds: int) -> None:
    now = time.time()
    key = client_key(request)
    store = getattr(request.app.state, "_rl_store", {})
    hits = [t for t in store.get(key, []) if now - t < seconds]
    if len(hits) >= times:
        raise HTTPException(status_code=429, detail="Too Many Requests")
    hits.append(now)
    store[key] = hits
    request.app.state._rl_store = store


def optional_rate_limit(times: int, seconds: int):
    async def _dep(request: Request):
        # Forcer le fallback mémoire en DEV si demandé
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            _local_hit(request, times, seconds)
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return
        if getattr(FastAPILimiter, "redis", None) is None:
            return

        async def _identifier(req: Request) -> str:
            return client_key(req)

        return await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request)
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    ready = getattr(FastAPILimiter, "redis", None) is not None
    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": ready,
        "backend": "redis" if ready else None,
        "local_fallback": os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1",
    }
    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if ready and redis_url:
        p = urlparse(redis_url)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}
    return info
