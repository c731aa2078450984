from __future__ import annotations

import pytest
from datetime import datetime, timezone
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sim_site_telemetry.db.session import Base, build_engine, build_session_factory  # noqa: E402
from sim_site_telemetry.persistence import PersistenceService  # noqa: E402
from sim_site_telemetry.simulation.records import WeatherCondition, WeatherSample  # noqa: E402

# Thursday, mid-summer in the southern hemisphere.
NOON = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_weather(
    instant: datetime = NOON,
    *,
    temperature: float = 25.0,
    cloud_cover: float = 0.0,
    solar_irradiance: float = 800.0,
) -> WeatherSample:
    """Weather sample with sunrise 06:00 and sunset 18:00 UTC on the instant's day."""
    midnight = instant.replace(hour=0, minute=0, second=0, microsecond=0)
    return WeatherSample(
        timestamp=instant,
        temperature=temperature,
        cloud_cover=cloud_cover,
        solar_irradiance=solar_irradiance,
        sunrise=midnight.replace(hour=6),
        sunset=midnight.replace(hour=18),
        condition=WeatherCondition.CLEAR,
        humidity=40.0,
        wind_speed=3.0,
    )


@pytest.fixture()
def sqlite_session_factory():
    """Provide a session factory bound to an in-memory SQLite database."""
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = build_session_factory(engine)
    yield Session
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def persistence(sqlite_session_factory):
    """Provide a PersistenceService bound to the temporary SQLite DB."""
    return PersistenceService(session_factory=sqlite_session_factory)


@pytest.fixture()
def weather() -> WeatherSample:
    """Clear midday weather at 800 W/m² and 25 °C."""
    return make_weather()


@pytest.fixture()
def seeded_site(persistence: PersistenceService):
    """An active 50 kWh / 20 kW site with two inverters, one battery and one panel string."""
    site = persistence.upsert_site(
        {
            "name": "Ixopo Clinic",
            "battery_capacity_kwh": 50.0,
            "solar_capacity_kw": 20.0,
            "nominal_voltage": 500.0,
            "daily_consumption_kwh": 65.0,
        }
    )
    persistence.add_equipment(site.id, {"type": "battery", "name": "BAT-1", "capacity": 50.0})
    persistence.add_equipment(site.id, {"type": "solar_panel", "name": "PV-1", "capacity": 20.0})
    persistence.add_equipment(site.id, {"type": "inverter", "name": "INV-1", "capacity": 10.0})
    persistence.add_equipment(site.id, {"type": "inverter", "name": "INV-2", "capacity": 5.0})
    return persistence.get_site(site.id)
