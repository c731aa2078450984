"""
Site and equipment schemas for API validation.

Sites and their equipment are provisioned through these schemas (CLI and
API share the same persistence calls); the telemetry engine only reads them.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...analytics import Connectivity
from ...simulation.records import EquipmentStatus, EquipmentType, SiteStatus


class EquipmentResponse(BaseModel):
    """
    One unit installed at a site.

    Attributes:
        id: Equipment identifier, also used as inverter id in readings.
        type: battery, inverter, solar_panel, charge_controller or grid_meter.
        capacity: kWh for batteries, kW otherwise; None when unknown.
        status: Failed and offline units are ignored by the simulation.
        name: Display label.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: EquipmentType
    capacity: Optional[float] = None
    status: EquipmentStatus
    name: str


class EquipmentCreate(BaseModel):
    type: EquipmentType
    name: Optional[str] = Field(None, description="Display label, defaults to the type")
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    capacity: Optional[float] = Field(None, ge=0, description="kWh for batteries, kW otherwise")
    status: EquipmentStatus = EquipmentStatus.OPERATIONAL


class SiteResponse(BaseModel):
    """
    Site as returned by ``GET /api/sites``.

    Example:
        ```python
        {
            "id": 1,
            "name": "Ixopo Clinic",
            "battery_capacity_kwh": 50.0,
            "solar_capacity_kw": 20.0,
            "nominal_voltage": 500.0,
            "daily_consumption_kwh": 65.0,
            "status": "active",
            "last_seen_at": "2026-10-19T08:05:00Z",
            "equipment": []
        }
        ```
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    battery_capacity_kwh: Optional[float] = None
    solar_capacity_kw: Optional[float] = None
    nominal_voltage: float
    daily_consumption_kwh: Optional[float] = None
    status: SiteStatus
    last_seen_at: Optional[datetime] = None
    equipment: List[EquipmentResponse] = Field(default_factory=list)


class SiteCreate(BaseModel):
    """
    Payload for creating a site or updating the one with the same name.
    """
    name: str = Field(..., min_length=1, description="Unique site name")
    battery_capacity_kwh: Optional[float] = Field(None, gt=0, description="Nameplate battery capacity (kWh)")
    solar_capacity_kw: Optional[float] = Field(None, ge=0, description="Nameplate PV capacity (kW)")
    nominal_voltage: float = Field(500.0, gt=0, description="Battery bus nominal voltage (V)")
    daily_consumption_kwh: Optional[float] = Field(65.0, gt=0, description="Expected daily consumption (kWh)")
    status: SiteStatus = SiteStatus.ACTIVE


class SiteStatusResponse(BaseModel):
    """
    Connectivity of a site derived from its heartbeat.

    Attributes:
        site_id: Site identifier.
        status: online (<= 10 min), warning (<= 30 min), offline or unknown.
        label: Human readable status.
        last_seen_at: Heartbeat, None if the site never reported.
        minutes_since_last_seen: Age of the heartbeat in minutes.
        battery_charge_level: SOC (%) of the latest reading, if any.
    """
    site_id: int
    status: Connectivity
    label: str
    last_seen_at: Optional[datetime] = None
    minutes_since_last_seen: Optional[float] = None
    battery_charge_level: Optional[float] = None
