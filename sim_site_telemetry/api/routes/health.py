from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ...persistence import PersistenceService
from .. import dependencies
from ..schemas.telemetry import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
def health(
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
):
    """
    Database reachability and scheduler configuration.

    Returns 200 when both are fine, 503 otherwise.
    """
    checks = {"cron_secret_configured": bool(os.getenv("CRON_SECRET", "").strip())}
    try:
        persistence.ping()
        checks["database"] = {"status": "connected"}
    except SQLAlchemyError as exc:
        logger.error("Health check database error: %s", exc)
        checks["database"] = {"status": "error", "message": str(exc)}

    healthy = checks["database"]["status"] == "connected" and checks["cron_secret_configured"]
    body = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump(mode="json"))
