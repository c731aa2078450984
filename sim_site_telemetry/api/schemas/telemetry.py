"""
Telemetry, ingestion and scheduler schemas for API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...persistence import MAX_INGEST_BATCH


class InverterReadingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    inverter_id: int
    power_kw: float
    efficiency: Optional[float] = None
    temperature: Optional[float] = None


class TelemetryReadingResponse(BaseModel):
    """
    One stored reading.

    ``battery_power_kw`` is the battery model's signed power (negative while
    charging); ``battery_power_derived_kw`` is the balance cross-check
    ``load + export - solar - import``. ``inverters`` lists every active
    inverter of the tick in allocation order. Measurements a site did not
    report are null on readings ingested from hardware.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    site_id: int
    timestamp: datetime

    battery_voltage: Optional[float] = None
    battery_current: Optional[float] = None
    battery_charge_level: Optional[float] = None
    battery_temperature: Optional[float] = None
    battery_state_of_health: Optional[float] = None
    battery_cycle_count: Optional[float] = None
    battery_power_kw: Optional[float] = None
    battery_power_derived_kw: Optional[float] = None

    solar_power_kw: Optional[float] = None
    solar_energy_kwh: Optional[float] = None
    solar_efficiency: Optional[float] = None

    grid_voltage: Optional[float] = None
    grid_frequency: Optional[float] = None
    grid_power_kw: Optional[float] = None
    grid_energy_kwh: Optional[float] = None
    grid_import_kw: Optional[float] = None
    grid_export_kw: Optional[float] = None

    load_power_kw: Optional[float] = None
    load_energy_kwh: Optional[float] = None

    inverters: List[InverterReadingResponse] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class InverterMeasurement(BaseModel):
    inverter_id: int
    power_kw: float = Field(..., ge=0, le=500)
    efficiency: Optional[float] = Field(None, ge=0, le=100)
    temperature: Optional[float] = Field(None, ge=-40, le=100)


class IngestReading(BaseModel):
    """
    Measurements one site reports for one instant.

    Only ``timestamp`` is required; grid power and battery power are
    derived server side from import/export and voltage/current.
    """
    timestamp: datetime

    battery_voltage: Optional[float] = Field(None, ge=0, le=1000)
    battery_current: Optional[float] = Field(None, ge=-500, le=500)
    battery_charge_level: Optional[float] = Field(None, ge=0, le=100)
    battery_temperature: Optional[float] = Field(None, ge=-40, le=100)
    battery_state_of_health: Optional[float] = Field(None, ge=0, le=100)
    battery_cycle_count: Optional[float] = Field(None, ge=0)

    solar_power_kw: Optional[float] = Field(None, ge=0, le=1000)
    solar_efficiency: Optional[float] = Field(None, ge=0, le=100)

    grid_voltage: Optional[float] = Field(None, ge=0, le=1000)
    grid_frequency: Optional[float] = Field(None, ge=0, le=100)
    grid_import_kw: Optional[float] = Field(None, ge=0, le=1000)
    grid_export_kw: Optional[float] = Field(None, ge=0, le=1000)

    load_power_kw: Optional[float] = Field(None, ge=0, le=1000)

    inverters: List[InverterMeasurement] = Field(default_factory=list)


class TelemetryIngestRequest(BaseModel):
    """
    Batch of hardware readings for ``POST /api/sites/{id}/readings``.

    Example:
        ```python
        {
            "readings": [
                {
                    "timestamp": "2026-10-19T08:05:00Z",
                    "battery_charge_level": 72.5,
                    "grid_import_kw": 1.2,
                    "inverters": [{"inverter_id": 3, "power_kw": 4.1}]
                }
            ]
        }
        ```
    """
    readings: List[IngestReading] = Field(..., min_length=1, max_length=MAX_INGEST_BATCH)


class TelemetryIngestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool = True
    site_id: int
    inserted: int
    updated: int


class CronRunResponse(BaseModel):
    """
    Summary returned to the scheduler after a batch.

    Example:
        ```python
        {
            "success": true,
            "sites_processed": 12,
            "errors": 0,
            "total_sites": 12,
            "skipped": 0,
            "duration_ms": 842,
            "timestamp": "2026-10-19T08:05:00+00:00",
            "weather_fallback": false
        }
        ```
    """
    success: bool = True
    sites_processed: int
    errors: int
    total_sites: int
    skipped: int = 0
    duration_ms: int
    timestamp: Optional[datetime] = None
    weather_fallback: bool = False


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    checks: Dict[str, Any]
