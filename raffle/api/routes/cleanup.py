from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from raffle.dependencies.state import StateStoreDep, enforce_rate_limit
from raffle.state.errors import is_user_input_error

from .state import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/state", tags=["state"])

DEFAULT_RETENTION_DAYS = 30


class CleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    retention_days: StrictInt = Field(default=DEFAULT_RETENTION_DAYS, ge=1, le=365, alias="retentionDays")


@router.post("/cleanup", summary="Delete snapshots past the retention window", dependencies=[Depends(enforce_rate_limit)])
async def cleanup_snapshots(request: Request, store: StateStoreDep) -> Any:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    try:
        payload = CleanupRequest.model_validate(body if body is not None else {})
    except ValidationError:
        return error_response("Invalid retention days", 400)

    if not store.supports_cleanup:
        return JSONResponse(
            {"success": False, "message": f"Cleanup not available in {store.backend_name} storage mode"},
            status_code=400,
        )

    try:
        deleted = await store.cleanup_old_snapshots(payload.retention_days)
    except Exception as exc:
        if is_user_input_error(exc):
            return error_response(str(exc), 400)
        logger.exception("Snapshot cleanup failed")
        return error_response("Cleanup failed. Please try again.", 500)

    return {
        "success": True,
        "deletedCount": deleted,
        "retentionDays": payload.retention_days,
        "message": f"Deleted {deleted} snapshots older than {payload.retention_days} days",
    }
