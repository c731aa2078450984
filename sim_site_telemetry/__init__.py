from .analytics import hourly_rollups, site_connectivity
from .exceptions import ConfigurationError, PerSiteError, ProviderError, TelemetryError
from .orchestrator import BatchSummary, TelemetryOrchestrator
from .persistence import PersistenceService
from .simulation.battery import BatteryConfig, BatteryState, BatteryStateMachine, advance
from .simulation.inverter import distribute
from .simulation.load_profiles import LoadProfileProvider
from .simulation.records import Equipment, Site, TelemetryReading, WeatherSample
from .simulation.solar import SolarConfig, produce
from .simulation.weather import OpenMeteoWeatherProvider, StaticWeatherProvider, WeatherProvider

__all__ = [
    "BatchSummary",
    "TelemetryOrchestrator",
    "PersistenceService",
    "BatteryConfig",
    "BatteryState",
    "BatteryStateMachine",
    "advance",
    "SolarConfig",
    "produce",
    "distribute",
    "LoadProfileProvider",
    "WeatherProvider",
    "OpenMeteoWeatherProvider",
    "StaticWeatherProvider",
    "Equipment",
    "Site",
    "TelemetryReading",
    "WeatherSample",
    "TelemetryError",
    "ConfigurationError",
    "ProviderError",
    "PerSiteError",
    "hourly_rollups",
    "site_connectivity",
]
