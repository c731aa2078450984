from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from conftest import NOON, make_weather
from sim_site_telemetry.exceptions import ProviderError
from sim_site_telemetry.orchestrator import (
    TelemetryOrchestrator,
    aggregate_capacity,
    align_to_tick,
    restore_battery_state,
)
from sim_site_telemetry.simulation import solar
from sim_site_telemetry.simulation.battery import BatteryConfig
from sim_site_telemetry.simulation.load_profiles import LoadProfileProvider
from sim_site_telemetry.simulation.records import (
    Equipment,
    EquipmentStatus,
    EquipmentType,
    Site,
)
from sim_site_telemetry.simulation.weather import StaticWeatherProvider, WeatherProvider


class FixedLoadProvider(LoadProfileProvider):
    """Returns queued load values, one per call."""

    def __init__(self, values):
        super().__init__(noise=False)
        self.values = list(values)

    def power_at(self, instant, weather, profile):
        return self.values.pop(0)


class FailingWeatherProvider(WeatherProvider):
    def sample_at(self, instant):
        raise ProviderError("archive unreachable")


def _orchestrator(persistence, provider=None, **kwargs) -> TelemetryOrchestrator:
    provider = provider or StaticWeatherProvider(make_weather())
    kwargs.setdefault("rng", np.random.default_rng(42))
    return TelemetryOrchestrator(persistence, provider, **kwargs)


def _queue_solar(monkeypatch, values):
    queued = list(values)
    monkeypatch.setattr(solar, "produce", lambda *args, **kwargs: queued.pop(0))


def test_align_to_tick_floors_to_boundary():
    instant = datetime(2026, 1, 15, 12, 7, 42, 123, tzinfo=timezone.utc)
    assert align_to_tick(instant, 5) == datetime(2026, 1, 15, 12, 5, tzinfo=timezone.utc)
    assert align_to_tick(instant, 1) == datetime(2026, 1, 15, 12, 7, tzinfo=timezone.utc)
    assert align_to_tick(datetime(2026, 1, 15, 12, 7), 5).tzinfo is timezone.utc


def test_aggregate_capacity_ignores_failed_units_and_falls_back_to_nameplate():
    site = Site(id=1, battery_capacity_kwh=40.0, solar_capacity_kw=12.0)
    equipment = [
        Equipment(id=5, type=EquipmentType.INVERTER, capacity=5.0),
        Equipment(id=2, type=EquipmentType.INVERTER, capacity=5.0, status=EquipmentStatus.MAINTENANCE),
        Equipment(id=3, type=EquipmentType.BATTERY, capacity=30.0, status=EquipmentStatus.FAILED),
        Equipment(id=4, type=EquipmentType.SOLAR_PANEL, capacity=8.0),
        Equipment(id=6, type=EquipmentType.SOLAR_PANEL, capacity=8.0, status=EquipmentStatus.OFFLINE),
    ]
    capacity = aggregate_capacity(site, equipment)
    assert capacity.battery_kwh == pytest.approx(40.0)
    assert capacity.solar_kw == pytest.approx(8.0)
    assert capacity.inverter_kw == pytest.approx(10.0)
    assert [unit.id for unit in capacity.inverters] == [2, 5]

    bare = aggregate_capacity(site, [])
    assert bare.inverters == ()
    assert bare.inverter_kw is None
    assert bare.solar_kw == pytest.approx(12.0)


def test_restore_battery_state_uses_latest_reading_and_defaults():
    config = BatteryConfig(nominal_voltage=500.0, capacity_kwh=50.0)
    fresh = restore_battery_state(None, config)
    assert fresh.soc == pytest.approx(0.5)
    assert fresh.cycle_count == 0.0


def test_state_continuity_across_ticks(persistence, seeded_site, monkeypatch):
    """A surplus tick charges without exporting; the next deficit tick discharges without importing."""
    _queue_solar(monkeypatch, [10.0, 0.0])
    orchestrator = _orchestrator(persistence, load_provider=FixedLoadProvider([4.0, 6.0]))

    first = orchestrator.run_batch(NOON)
    assert first.sites_processed == 1
    tick_one = persistence.read_latest_reading(seeded_site.id)
    assert tick_one.battery_power_kw == pytest.approx(-6.0)
    assert tick_one.battery_charge_level == pytest.approx(50.9475, abs=1e-6)
    assert tick_one.grid_export_kw == pytest.approx(0.0)
    assert tick_one.grid_import_kw == pytest.approx(0.0)
    assert tick_one.battery_current < 0

    second = orchestrator.run_batch(NOON + timedelta(minutes=5))
    assert second.sites_processed == 1
    tick_two = persistence.read_latest_reading(seeded_site.id)
    assert tick_two.timestamp == NOON + timedelta(minutes=5)
    assert tick_two.battery_power_kw == pytest.approx(6.0)
    assert tick_two.battery_charge_level < tick_one.battery_charge_level
    assert tick_two.grid_import_kw == pytest.approx(0.0)
    assert tick_two.battery_cycle_count > tick_one.battery_cycle_count
    assert tick_two.battery_state_of_health <= tick_one.battery_state_of_health


def test_reading_fields_and_inverter_split(persistence, seeded_site):
    orchestrator = _orchestrator(persistence)
    orchestrator.run_batch(NOON)
    reading = persistence.read_latest_reading(seeded_site.id)

    assert reading.solar_power_kw > 0
    assert reading.solar_energy_kwh == pytest.approx(reading.solar_power_kw * 5 / 60)
    assert reading.load_energy_kwh == pytest.approx(reading.load_power_kw * 5 / 60)
    assert 225.0 <= reading.grid_voltage <= 235.0
    assert 49.9 <= reading.grid_frequency <= 50.1
    assert reading.grid_power_kw == pytest.approx(reading.grid_import_kw - reading.grid_export_kw)
    assert reading.battery_power_derived_kw == pytest.approx(reading.battery_power_kw, abs=0.011)
    assert 0.0 <= reading.solar_efficiency <= 100.0

    assert len(reading.inverters) == 2
    assert sum(inv.power_kw for inv in reading.inverters) == pytest.approx(reading.solar_power_kw, abs=1e-6)
    assert reading.inverters[0].power_kw == pytest.approx(reading.solar_power_kw * 10.0 / 15.0)
    assert reading.metadata == {"dataQuality": "good", "weatherCondition": "clear", "generatedBy": "cron"}

    site = persistence.get_site(seeded_site.id)
    assert site.last_seen_at == NOON


def test_site_without_inverters_still_produces(persistence):
    site = persistence.upsert_site({"name": "Bare Site", "battery_capacity_kwh": 20.0, "solar_capacity_kw": 6.0})
    _orchestrator(persistence).run_batch(NOON)
    reading = persistence.read_latest_reading(site.id)
    assert reading.inverters == ()
    assert reading.solar_power_kw > 0


def test_weather_failure_falls_back_to_night_sample(persistence, seeded_site):
    summary = _orchestrator(persistence, FailingWeatherProvider()).run_batch(NOON)
    assert summary.weather_fallback is True
    assert summary.sites_processed == summary.total_sites == 1
    assert summary.errors == 0

    reading = persistence.read_latest_reading(seeded_site.id)
    assert reading.solar_power_kw == 0.0
    assert reading.metadata["dataQuality"] == "degraded"
    assert all(inv.power_kw == 0.0 for inv in reading.inverters)


def test_duplicate_instant_is_counted_as_error(persistence, seeded_site):
    orchestrator = _orchestrator(persistence)
    persistence.upsert_site({"name": "Second Site", "battery_capacity_kwh": 10.0})
    assert orchestrator.run_batch(NOON).sites_processed == 2

    repeated = orchestrator.run_batch(NOON)
    assert repeated.sites_processed == 0
    assert repeated.errors == 2
    assert len(persistence.list_readings(seeded_site.id)) == 1


def test_only_active_sites_are_processed(persistence, seeded_site):
    paused = persistence.upsert_site({"name": "Paused", "status": "inactive"})
    summary = _orchestrator(persistence).run_batch(NOON)
    assert summary.total_sites == 1
    assert persistence.read_latest_reading(paused.id) is None


def test_deadline_skips_remaining_sites(persistence, seeded_site):
    persistence.upsert_site({"name": "Second Site"})
    summary = _orchestrator(persistence, deadline_seconds=0).run_batch(NOON)
    assert summary.sites_processed == 0
    assert summary.skipped == 2
    assert persistence.read_latest_reading(seeded_site.id) is None


def test_empty_batch_reports_zero_sites(persistence):
    summary = _orchestrator(persistence).run_batch(NOON)
    assert summary.total_sites == 0
    assert summary.as_dict()["timestamp"] == NOON.isoformat()


def test_backfill_runs_every_tick_in_window(persistence, seeded_site):
    orchestrator = _orchestrator(persistence)
    start = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
    summaries = orchestrator.backfill(start, start + timedelta(minutes=30))
    assert len(summaries) == 7
    assert all(summary.sites_processed == 1 for summary in summaries)

    readings = persistence.list_readings(seeded_site.id)
    assert len(readings) == 7
    assert readings[0].timestamp == start + timedelta(minutes=30)

    with pytest.raises(ValueError):
        orchestrator.backfill(start, start - timedelta(minutes=5))


def test_backfill_starts_on_next_boundary(persistence, seeded_site):
    start = datetime(2026, 1, 15, 10, 2, tzinfo=timezone.utc)
    summaries = _orchestrator(persistence).backfill(start, start + timedelta(minutes=10))
    assert [s.timestamp.minute for s in summaries] == [5, 10]


def test_grid_outage_never_imports(persistence, seeded_site, monkeypatch):
    _queue_solar(monkeypatch, [0.0])
    orchestrator = _orchestrator(
        persistence,
        load_provider=FixedLoadProvider([80.0]),
        grid_available=False,
    )
    orchestrator.run_batch(NOON)
    reading = persistence.read_latest_reading(seeded_site.id)
    assert reading.grid_import_kw == 0.0
    assert reading.battery_power_kw == pytest.approx(50.0)


def test_invalid_tick_length_is_rejected(persistence):
    with pytest.raises(ValueError):
        _orchestrator(persistence, tick_minutes=0)


def test_tick_continues_from_ingested_hardware_reading(persistence, seeded_site, monkeypatch):
    """Battery state is restored from a reading a site reported itself."""
    persistence.ingest_readings(
        seeded_site.id,
        [
            {
                "timestamp": NOON - timedelta(minutes=5),
                "battery_charge_level": 80.0,
                "battery_temperature": 30.0,
                "battery_state_of_health": 95.0,
                "battery_cycle_count": 12.0,
            }
        ],
    )
    _queue_solar(monkeypatch, [0.0])
    orchestrator = _orchestrator(persistence, load_provider=FixedLoadProvider([6.0]))
    assert orchestrator.run_batch(NOON).sites_processed == 1

    reading = persistence.read_latest_reading(seeded_site.id)
    assert reading.timestamp == NOON
    assert 78.0 < reading.battery_charge_level < 80.0
    assert reading.battery_state_of_health <= 95.0
    assert reading.battery_cycle_count >= 12.0
    assert reading.battery_power_kw == pytest.approx(6.0)


def test_rejected_tick_keeps_previous_heartbeat(persistence, seeded_site):
    orchestrator = _orchestrator(persistence)
    orchestrator.run_batch(NOON)
    persistence.update_heartbeat(seeded_site.id, NOON - timedelta(hours=1))

    assert orchestrator.run_batch(NOON).errors == 1
    assert persistence.get_site(seeded_site.id).last_seen_at == NOON - timedelta(hours=1)


def test_site_filter_limits_batch(persistence, seeded_site):
    other = persistence.upsert_site({"name": "Second Site", "battery_capacity_kwh": 10.0})
    summary = _orchestrator(persistence, site_ids=[other.id, 9999]).run_batch(NOON)
    assert summary.total_sites == 1
    assert summary.sites_processed == 1
    assert persistence.read_latest_reading(other.id) is not None
    assert persistence.read_latest_reading(seeded_site.id) is None
