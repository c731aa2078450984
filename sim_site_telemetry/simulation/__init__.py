"""
Core telemetry simulation models.

This package collects the components that turn weather, load and site
configuration into one telemetry reading per tick:

* PV production (`solar`), driven by a weather sample and sun position.
* Battery bank state and its pure per-tick `advance` step (`battery`).
* Capacity-proportional inverter allocation (`inverter`).
* Residential, commercial and industrial load shapes (`load_profiles`).
* Weather sources with a conservative fallback sample (`weather`).
* Plain record types shared by all of them (`records`).

Nothing in this package touches the database; the orchestrator feeds it
records loaded through the persistence layer.
"""

from __future__ import annotations

from .battery import (
    AdvanceResult,
    BatteryConfig,
    BatteryState,
    BatteryStateMachine,
    advance,
    voltage_for_soc,
)
from .inverter import active_inverters, distribute, inverter_readings
from .load_profiles import LoadProfile, LoadProfileProvider, SiteType, infer_site_type
from .records import (
    Equipment,
    EquipmentStatus,
    EquipmentType,
    InverterReading,
    Site,
    SiteStatus,
    TelemetryReading,
    WeatherCondition,
    WeatherSample,
)
from .solar import SolarConfig, efficiency, produce
from .weather import (
    OpenMeteoWeatherProvider,
    StaticWeatherProvider,
    WeatherProvider,
    fallback_weather_sample,
)

__all__ = [
    # Records
    "Equipment",
    "EquipmentStatus",
    "EquipmentType",
    "InverterReading",
    "Site",
    "SiteStatus",
    "TelemetryReading",
    "WeatherCondition",
    "WeatherSample",
    # Battery
    "AdvanceResult",
    "BatteryConfig",
    "BatteryState",
    "BatteryStateMachine",
    "advance",
    "voltage_for_soc",
    # Solar + inverters
    "SolarConfig",
    "efficiency",
    "produce",
    "active_inverters",
    "distribute",
    "inverter_readings",
    # Load
    "LoadProfile",
    "LoadProfileProvider",
    "SiteType",
    "infer_site_type",
    # Weather
    "WeatherProvider",
    "OpenMeteoWeatherProvider",
    "StaticWeatherProvider",
    "fallback_weather_sample",
]
