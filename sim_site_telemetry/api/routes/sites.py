"""
Site, equipment and reading endpoints.

Read access for the persisted telemetry plus the provisioning calls the
engine relies on. Site creation follows upsert semantics by name.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...analytics import site_connectivity
from ...persistence import PersistenceService
from ...simulation.records import Site, SiteStatus
from .. import dependencies
from ..schemas import sites as site_schemas
from ..schemas import telemetry as telemetry_schemas

router = APIRouter(prefix="/api", tags=["sites"])


def _require_site(persistence: PersistenceService, site_id: int) -> Site:
    site = persistence.get_site(site_id)
    if site is None:
        raise HTTPException(status_code=404, detail=f"Site {site_id} not found")
    return site


@router.get("/sites", response_model=list[site_schemas.SiteResponse])
def list_sites(
    status: Optional[SiteStatus] = Query(None, description="Filter by operating status"),
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> list[site_schemas.SiteResponse]:
    """
    List sites ordered by id, optionally filtered by status.

    Equipment is not expanded here; use ``GET /api/sites/{id}`` for that.
    """
    return persistence.list_sites(status)


@router.post("/sites", response_model=site_schemas.SiteResponse)
def upsert_site(
    payload: site_schemas.SiteCreate,
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> site_schemas.SiteResponse:
    """Create a site, or update the existing site with the same name."""
    return persistence.upsert_site(payload)


@router.get("/sites/{site_id}", response_model=site_schemas.SiteResponse)
def get_site(
    site_id: int,
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> site_schemas.SiteResponse:
    return _require_site(persistence, site_id)


@router.post("/sites/{site_id}/equipment", response_model=site_schemas.EquipmentResponse)
def add_equipment(
    site_id: int,
    payload: site_schemas.EquipmentCreate,
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> site_schemas.EquipmentResponse:
    _require_site(persistence, site_id)
    return persistence.add_equipment(site_id, payload)


@router.get("/sites/{site_id}/readings", response_model=list[telemetry_schemas.TelemetryReadingResponse])
def list_readings(
    site_id: int,
    limit: int = Query(100, ge=1, le=2000),
    since: Optional[datetime] = Query(None, description="Only readings at or after this instant"),
    until: Optional[datetime] = Query(None, description="Only readings at or before this instant"),
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> list[telemetry_schemas.TelemetryReadingResponse]:
    """
    Latest readings of a site, newest first.

    Raises:
        HTTPException 404: If the site does not exist.
    """
    _require_site(persistence, site_id)
    return persistence.list_readings(site_id, limit=limit, since=since, until=until)


@router.post(
    "/sites/{site_id}/readings",
    response_model=telemetry_schemas.TelemetryIngestResponse,
    status_code=201,
)
def ingest_readings(
    site_id: int,
    payload: telemetry_schemas.TelemetryIngestRequest,
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> telemetry_schemas.TelemetryIngestResponse:
    """
    Store readings reported by the site's own hardware.

    A reading replaces any stored reading of the same instant; the site
    heartbeat moves to the receipt time.

    Raises:
        HTTPException 404: If the site does not exist.
    """
    _require_site(persistence, site_id)
    return persistence.ingest_readings(site_id, payload.readings)


@router.get("/sites/{site_id}/status",response_model=site_schemas.SiteStatusResponse)
def site_status(
    site_id: int,
    persistence: PersistenceService = Depends(dependencies.get_persistence_service),
) -> site_schemas.SiteStatusResponse:
    """
    Connectivity of a site from its heartbeat, plus the latest SOC.

    Raises:
        HTTPException 404: If the site does not exist.
    """
    site = _require_site(persistence, site_id)
    connectivity = site_connectivity(site.last_seen_at)
    latest = persistence.read_latest_reading(site_id)
    return site_schemas.SiteStatusResponse(
        site_id=site.id,
        status=connectivity.status,
        label=connectivity.label,
        last_seen_at=site.last_seen_at,
        minutes_since_last_seen=connectivity.minutes_since_last_seen,
        battery_charge_level=latest.battery_charge_level if latest else None,
    )
