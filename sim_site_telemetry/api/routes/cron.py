"""
Scheduler trigger for telemetry generation.

An external scheduler calls ``GET /api/cron/telemetry`` every tick with
``Authorization: Bearer <CRON_SECRET>``. Each call runs one batch over all
active sites with a weather provider created for that call only.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, status

from ...orchestrator import TelemetryOrchestrator
from ...persistence import PersistenceService
from ...simulation.load_profiles import LoadProfileProvider
from ...simulation.weather import WeatherProvider
from .. import dependencies
from ..schemas.telemetry import CronRunResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])

# Hosts typically kill the invocation at 60 s; stop starting sites before that.
CRON_DEADLINE_SECONDS = 50.0


@router.get(
    "/telemetry",
    response_model=CronRunResponse,
    dependencies=[Depends(dependencies.require_cron_auth)],
)
def generate_telemetry(
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
    weather_provider: WeatherProvider = Depends(dependencies.get_weather_provider),
    load_provider: LoadProfileProvider = Depends(dependencies.get_load_provider),
    tick_minutes: int = Depends(dependencies.get_tick_minutes),
    local_timezone: ZoneInfo = Depends(dependencies.get_local_timezone),
) -> CronRunResponse:
    """
    Generate one reading for every active site.

    Args:
        persistence: Database persistence service (dependency injected).
        weather_provider: Weather source scoped to this request.
        load_provider: Load profile source.
        tick_minutes: Configured cadence (``TELEMETRY_TICK_MINUTES``).
        local_timezone: Zone of the sites, drives the load profile hours.

    Returns:
        CronRunResponse with processed, failed and skipped site counts.

    Raises:
        HTTPException 500: CRON_SECRET unset, bad configuration, or a
            failure outside per-site processing (for example the site query).
        HTTPException 401: Missing or wrong bearer token.

    Notes:
        - Per-site failures never fail the request; they are counted in ``errors``
        - A weather outage falls back to a zero-irradiance sample and sets
          ``weather_fallback``
    """
    orchestrator = TelemetryOrchestrator(
        persistence,
        weather_provider,
        load_provider,
        tick_minutes=tick_minutes,
        deadline_seconds=CRON_DEADLINE_SECONDS,
        local_timezone=local_timezone,
        generated_by="cron",
    )
    try:
        summary = orchestrator.run_batch()
    except Exception as exc:
        logger.exception("Cron telemetry batch failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Telemetry generation failed", "message": str(exc)},
        ) from exc
    return CronRunResponse(success=True, **summary.as_dict())
