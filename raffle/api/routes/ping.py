import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping(request: Request) -> dict[str, str]:
    store = getattr(request.app.state, "state_store", None)
    return {"status": "ok", "backend": store.backend_name if store is not None else "unconfigured"}


@router.get("/storage", summary="Storage connectivity check")
async def ping_storage(request: Request):
    postgres_pool = getattr(request.app.state, "postgres_pool", None)
    if postgres_pool is None:
        return {"status": "ok", "backend": "file"}
    try:
        await postgres_pool.test_connection()
    except Exception:
        logger.exception("Postgres connectivity check failed")
        return JSONResponse({"status": "error", "backend": "postgres"}, status_code=503)
    return {"status": "ok", "backend": "postgres"}
