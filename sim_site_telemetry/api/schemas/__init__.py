"""
Pydantic schemas for API request/response validation.

Organized by domain:
- sites: Site, equipment and connectivity schemas
- telemetry: Reading, ingestion, scheduler summary and health schemas

Example:
    ```python
    from sim_site_telemetry.api.schemas import SiteResponse
    from sim_site_telemetry.api.schemas.telemetry import CronRunResponse
    ```
"""

from __future__ import annotations

from .sites import (
    EquipmentCreate,
    EquipmentResponse,
    SiteCreate,
    SiteResponse,
    SiteStatusResponse,
)
from .telemetry import (
    CronRunResponse,
    HealthResponse,
    IngestReading,
    InverterMeasurement,
    InverterReadingResponse,
    TelemetryIngestRequest,
    TelemetryIngestResponse,
    TelemetryReadingResponse,
)

__all__ = [
    # Site schemas
    "EquipmentCreate",
    "EquipmentResponse",
    "SiteCreate",
    "SiteResponse",
    "SiteStatusResponse",
    # Telemetry schemas
    "CronRunResponse",
    "HealthResponse",
    "IngestReading",
    "InverterMeasurement",
    "InverterReadingResponse",
    "TelemetryIngestRequest",
    "TelemetryIngestResponse",
    "TelemetryReadingResponse",
]
