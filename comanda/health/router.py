from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from comanda.health.service import health_supabase_info
from comanda.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_root(request: Request):
    return {"ok": True, "rate_limit": rate_limit_health_info(request)}


@router.get("/supabase")
async def health_supabase():
    info = await run_in_threadpool(health_supabase_info)
    return JSONResponse(info, status_code=200 if info["connect_ok"] else 503)
