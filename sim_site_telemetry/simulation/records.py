"""
Plain record types shared by the simulation models and the orchestrator.

These dataclasses are deliberately free of any database or HTTP concern:
the persistence layer maps ORM rows onto them and the models only ever see
these values. :class:`TelemetryReading` is frozen because a reading is never
mutated once produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EquipmentType(str, Enum):
    BATTERY = "battery"
    INVERTER = "inverter"
    SOLAR_PANEL = "solar_panel"
    CHARGE_CONTROLLER = "charge_controller"
    GRID_METER = "grid_meter"


class EquipmentStatus(str, Enum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    FAILED = "failed"


class SiteStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class WeatherCondition(str, Enum):
    CLEAR = "clear"
    PARTLY_CLOUDY = "partly_cloudy"
    CLOUDY = "cloudy"
    RAINY = "rainy"
    STORMY = "stormy"


# Units in these states neither add capacity nor receive power.
EXCLUDED_EQUIPMENT_STATUSES = frozenset({EquipmentStatus.FAILED, EquipmentStatus.OFFLINE})


@dataclass
class Equipment:
    """
    One physical unit installed at a site.

    Attributes:
        id: Unique equipment identifier.
        type: Equipment family (battery, inverter, solar panel, ...).
        capacity: Rated capacity (kWh for batteries, kW otherwise). None if unknown.
        status: Operating status. Only offline/failed units are excluded
            from aggregation and distribution.
        name: Human readable label.
    """
    id: int
    type: EquipmentType
    capacity: Optional[float] = None
    status: EquipmentStatus = EquipmentStatus.OPERATIONAL
    name: str = ""

    @property
    def is_active(self) -> bool:
        return self.status not in EXCLUDED_EQUIPMENT_STATUSES


@dataclass
class Site:
    """
    A battery/solar installation as seen by the simulation.

    Attributes:
        id: Site identifier.
        name: Display name.
        battery_capacity_kwh: Nameplate battery capacity, used when no
            battery equipment rows exist.
        solar_capacity_kw: Nameplate PV capacity, used when no panel rows exist.
        nominal_voltage: Battery bus nominal voltage (V).
        daily_consumption_kwh: Expected daily consumption, drives the load profile.
        status: Operating status; only active sites are simulated.
        last_seen_at: Heartbeat of the last produced reading.
        equipment: Units installed at the site.
    """
    id: int
    name: str = ""
    battery_capacity_kwh: Optional[float] = None
    solar_capacity_kw: Optional[float] = None
    nominal_voltage: float = 500.0
    daily_consumption_kwh: Optional[float] = 65.0
    status: SiteStatus = SiteStatus.ACTIVE
    last_seen_at: Optional[datetime] = None
    equipment: Tuple[Equipment, ...] = ()


@dataclass(frozen=True)
class WeatherSample:
    """
    Weather conditions at one instant.

    Attributes:
        timestamp: Instant the sample refers to.
        temperature: Ambient temperature (°C).
        cloud_cover: Cloud cover percentage (0-100).
        solar_irradiance: Global horizontal irradiance (W/m², >= 0).
        sunrise: Sunrise of the sample's day.
        sunset: Sunset of the sample's day.
        condition: Classified weather condition.
        humidity: Relative humidity (%).
        wind_speed: Wind speed (m/s).
        precipitation: Precipitation (mm).
        uv_index: UV index.
    """
    timestamp: datetime
    temperature: float
    cloud_cover: float
    solar_irradiance: float
    sunrise: datetime
    sunset: datetime
    condition: WeatherCondition = WeatherCondition.CLEAR
    humidity: float = 0.0
    wind_speed: float = 0.0
    precipitation: float = 0.0
    uv_index: float = 0.0


@dataclass(frozen=True)
class InverterReading:
    inverter_id: int
    power_kw: float
    efficiency: Optional[float]
    temperature: Optional[float]


@dataclass(frozen=True)
class TelemetryReading:
    """
    Complete output vector of one site for one tick.

    Battery power convention: ``battery_power_kw`` is the state machine's
    own signed power (negative while charging, positive while discharging);
    ``battery_power_derived_kw`` is the algebraic cross-check
    ``load + export - solar - import`` and is stored alongside it.
    Grid power is positive while importing and negative while exporting.

    Simulated readings fill every field. Readings ingested from site
    hardware may leave measurements as None.
    """
    site_id: int
    timestamp: datetime

    battery_voltage: Optional[float]
    battery_current: Optional[float]
    battery_charge_level: Optional[float]
    battery_temperature: Optional[float]
    battery_state_of_health: Optional[float]
    battery_cycle_count: Optional[float]
    battery_power_kw: Optional[float]
    battery_power_derived_kw: Optional[float]

    solar_power_kw: Optional[float]
    solar_energy_kwh: Optional[float]
    solar_efficiency: Optional[float]

    grid_voltage: Optional[float]
    grid_frequency: Optional[float]
    grid_power_kw: Optional[float]
    grid_energy_kwh: Optional[float]
    grid_import_kw: Optional[float]
    grid_export_kw: Optional[float]

    load_power_kw: Optional[float]
    load_energy_kwh: Optional[float]

    inverters: Tuple[InverterReading, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
