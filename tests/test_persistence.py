from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from sim_site_telemetry.persistence import MAX_INGEST_BATCH, PersistenceService
from sim_site_telemetry.simulation.records import (
    EquipmentStatus,
    EquipmentType,
    InverterReading,
    SiteStatus,
    TelemetryReading,
)

T0 = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


def _reading(site_id: int, timestamp: datetime, soc: float = 55.0, **overrides) -> TelemetryReading:
    values = dict(
        site_id=site_id,
        timestamp=timestamp,
        battery_voltage=508.0,
        battery_current=-11.8,
        battery_charge_level=soc,
        battery_temperature=26.0,
        battery_state_of_health=97.9,
        battery_cycle_count=0.01,
        battery_power_kw=-6.0,
        battery_power_derived_kw=-6.0,
        solar_power_kw=10.0,
        solar_energy_kwh=10.0 / 12,
        solar_efficiency=80.0,
        grid_voltage=231.0,
        grid_frequency=50.02,
        grid_power_kw=0.0,
        grid_energy_kwh=0.0,
        grid_import_kw=0.0,
        grid_export_kw=0.0,
        load_power_kw=4.0,
        load_energy_kwh=4.0 / 12,
        inverters=(
            InverterReading(inverter_id=9, power_kw=6.0, efficiency=97.0, temperature=40.0),
            InverterReading(inverter_id=4, power_kw=4.0, efficiency=97.0, temperature=40.5),
        ),
        metadata={"dataQuality": "good", "weatherCondition": "clear", "generatedBy": "test"},
    )
    values.update(overrides)
    return TelemetryReading(**values)


def test_upsert_site_creates_then_updates(persistence: PersistenceService):
    """Sites are matched by name; unspecified fields keep their value."""
    created = persistence.upsert_site({"name": "Site A", "battery_capacity_kwh": 40.0})
    assert created.id is not None
    assert created.nominal_voltage == pytest.approx(500.0)
    assert created.status == SiteStatus.ACTIVE

    updated = persistence.upsert_site({"name": "Site A", "solar_capacity_kw": 12.0, "status": "maintenance"})
    assert updated.id == created.id
    assert updated.battery_capacity_kwh == pytest.approx(40.0)
    assert updated.solar_capacity_kw == pytest.approx(12.0)
    assert updated.status == SiteStatus.MAINTENANCE

    with pytest.raises(ValueError):
        persistence.upsert_site({"battery_capacity_kwh": 1.0})


def test_list_active_sites_filters_status(persistence: PersistenceService):
    """Only active sites are returned to the scheduler."""
    persistence.upsert_site({"name": "Active"})
    persistence.upsert_site({"name": "Paused", "status": "inactive"})
    assert [site.name for site in persistence.list_active_sites()] == ["Active"]
    assert len(persistence.list_sites()) == 2


def test_equipment_registration_and_active_filter(persistence: PersistenceService):
    """Failed and offline units are not returned as active equipment."""
    site = persistence.upsert_site({"name": "Site B"})
    persistence.add_equipment(site.id, {"type": "inverter", "name": "INV-1", "capacity": 5.0})
    persistence.add_equipment(site.id, {"type": "inverter", "name": "INV-2", "status": "failed"})
    persistence.add_equipment(site.id, {"type": "battery", "capacity": 20.0, "status": "offline"})
    persistence.add_equipment(site.id, {"type": "solar_panel", "capacity": 8.0, "status": "degraded"})

    active = persistence.read_active_equipment(site.id)
    assert [unit.name for unit in active] == ["INV-1", "solar_panel"]
    assert active[1].status == EquipmentStatus.DEGRADED
    assert active[0].type == EquipmentType.INVERTER

    site = persistence.get_site(site.id)
    assert len(site.equipment) == 4

    with pytest.raises(LookupError):
        persistence.add_equipment(9999, {"type": "battery"})
    with pytest.raises(ValueError):
        persistence.add_equipment(site.id, {"type": "wind_turbine"})


def test_reading_roundtrip_keeps_inverter_order_and_metadata(persistence: PersistenceService):
    """A stored reading comes back with the same values, inverter order and UTC timestamp."""
    site = persistence.upsert_site({"name": "Site C"})
    assert persistence.read_latest_reading(site.id) is None

    stored = persistence.write_reading(_reading(site.id, T0))
    assert stored.id is not None

    latest = persistence.read_latest_reading(site.id)
    assert latest.timestamp == T0
    assert latest.timestamp.tzinfo is not None
    assert latest.battery_state_of_health == pytest.approx(97.9)
    assert latest.battery_cycle_count == pytest.approx(0.01)
    assert [inv.inverter_id for inv in latest.inverters] == [9, 4]
    assert latest.metadata["generatedBy"] == "test"


def test_latest_reading_is_the_newest(persistence: PersistenceService):
    """Readings are ordered by timestamp, not by insertion."""
    site = persistence.upsert_site({"name": "Site D"})
    persistence.write_reading(_reading(site.id, T0 + timedelta(minutes=5), soc=60.0))
    persistence.write_reading(_reading(site.id, T0, soc=50.0))

    assert persistence.read_latest_reading(site.id).battery_charge_level == pytest.approx(60.0)

    readings = persistence.list_readings(site.id)
    assert [r.battery_charge_level for r in readings] == [60.0, 50.0]
    recent = persistence.list_readings(site.id, since=T0 + timedelta(minutes=1))
    assert len(recent) == 1


def test_duplicate_site_timestamp_is_rejected(persistence: PersistenceService):
    """One reading per site per instant."""
    site = persistence.upsert_site({"name": "Site E"})
    persistence.write_reading(_reading(site.id, T0))
    with pytest.raises(IntegrityError):
        persistence.write_reading(_reading(site.id, T0, inverters=()))
    assert len(persistence.list_readings(site.id)) == 1


def test_update_heartbeat(persistence: PersistenceService):
    """The heartbeat is stored and read back as an aware datetime."""
    site = persistence.upsert_site({"name": "Site F"})
    assert site.last_seen_at is None
    persistence.update_heartbeat(site.id, T0)
    assert persistence.get_site(site.id).last_seen_at == T0
    with pytest.raises(LookupError):
        persistence.update_heartbeat(9999, T0)


def test_ping(persistence: PersistenceService):
    """The health probe succeeds on a reachable database."""
    persistence.ping()


def test_record_tick_stores_reading_and_heartbeat(persistence: PersistenceService):
    """A simulated tick moves the heartbeat to the reading's timestamp."""
    site = persistence.upsert_site({"name": "Site G"})
    stored = persistence.record_tick(_reading(site.id, T0))
    assert stored.id is not None
    assert persistence.get_site(site.id).last_seen_at == T0

    with pytest.raises(LookupError):
        persistence.record_tick(_reading(9999, T0))
    assert persistence.list_readings(9999) == []


def test_record_tick_is_atomic(persistence: PersistenceService):
    """A rejected reading leaves the heartbeat untouched."""
    site = persistence.upsert_site({"name": "Site H"})
    persistence.write_reading(_reading(site.id, T0))
    with pytest.raises(IntegrityError):
        persistence.record_tick(_reading(site.id, T0))
    assert persistence.get_site(site.id).last_seen_at is None
    assert len(persistence.list_readings(site.id)) == 1


def test_ingest_readings_upserts_by_timestamp(persistence: PersistenceService):
    """Hardware readings replace the stored reading of the same instant and add new ones."""
    site = persistence.upsert_site({"name": "Site I"})
    persistence.write_reading(_reading(site.id, T0))
    received = T0 + timedelta(minutes=11)

    result = persistence.ingest_readings(
        site.id,
        [
            {
                "timestamp": T0,
                "battery_charge_level": 80.0,
                "battery_voltage": 510.0,
                "battery_current": 10.0,
                "grid_import_kw": 3.0,
                "grid_export_kw": 1.0,
                "inverters": [{"inverter_id": 4, "power_kw": 2.5}],
            },
            {"timestamp": T0 + timedelta(minutes=5), "load_power_kw": 6.0},
            {"timestamp": T0 + timedelta(minutes=5), "load_power_kw": 7.0},
        ],
        received_at=received,
    )
    assert (result.inserted, result.updated) == (1, 2)

    readings = persistence.list_readings(site.id)
    assert len(readings) == 2
    newest, replaced = readings
    assert newest.load_power_kw == pytest.approx(7.0)
    assert newest.battery_charge_level is None

    assert replaced.battery_charge_level == pytest.approx(80.0)
    assert replaced.battery_power_kw == pytest.approx(5.1)
    assert replaced.grid_power_kw == pytest.approx(2.0)
    assert replaced.solar_power_kw is None
    assert [(inv.inverter_id, inv.power_kw, inv.efficiency) for inv in replaced.inverters] == [(4, 2.5, None)]
    assert replaced.metadata == {
        "dataQuality": "good",
        "receivedAt": received.isoformat(),
        "generatedBy": "hardware",
    }
    assert persistence.get_site(site.id).last_seen_at == received


def test_ingest_readings_validates_batch(persistence: PersistenceService):
    """Empty, oversized and timestamp-less batches are refused without writing."""
    site = persistence.upsert_site({"name": "Site J"})
    too_many = [{"timestamp": T0 + timedelta(minutes=i)} for i in range(MAX_INGEST_BATCH + 1)]

    with pytest.raises(ValueError):
        persistence.ingest_readings(site.id, too_many)
    with pytest.raises(ValueError):
        persistence.ingest_readings(site.id, [])
    with pytest.raises(ValueError):
        persistence.ingest_readings(site.id, [{"load_power_kw": 1.0}])
    with pytest.raises(LookupError):
        persistence.ingest_readings(9999, [{"timestamp": T0}])

    assert persistence.list_readings(site.id) == []
    assert persistence.get_site(site.id).last_seen_at is None

    result = persistence.ingest_readings(site.id, too_many[:MAX_INGEST_BATCH])
    assert result.inserted == MAX_INGEST_BATCH
