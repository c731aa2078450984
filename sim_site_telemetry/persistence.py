"""
Database persistence layer for sites, equipment and telemetry readings.

Maps ORM rows onto the plain records of :mod:`sim_site_telemetry.simulation.records`
so that the simulation code never touches SQLAlchemy objects. This is the
gateway the orchestrator reads from and writes to on every tick.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import desc, select, text
from sqlalchemy.orm import Session, sessionmaker

from .db.models import EquipmentModel, InverterReadingModel, SiteModel, TelemetryReadingModel
from .db.session import SessionLocal
from .simulation.records import (
    Equipment,
    EquipmentStatus,
    EquipmentType,
    InverterReading,
    Site,
    SiteStatus,
    TelemetryReading,
)

logger = logging.getLogger(__name__)

SITE_FIELDS = (
    "name",
    "nominal_voltage",
    "daily_consumption_kwh",
    "battery_capacity_kwh",
    "solar_capacity_kw",
    "status",
)
READING_COLUMNS = {
    "battery_voltage": "battery_voltage",
    "battery_current": "battery_current",
    "battery_charge_level": "battery_charge_level",
    "battery_temperature": "battery_temperature",
    "battery_state_of_health": "battery_soh",
    "battery_cycle_count": "battery_cycle_count",
    "battery_power_kw": "battery_power_kw",
    "battery_power_derived_kw": "battery_power_derived_kw",
    "solar_power_kw": "solar_power_kw",
    "solar_energy_kwh": "solar_energy_kwh",
    "solar_efficiency": "solar_efficiency",
    "grid_voltage": "grid_voltage",
    "grid_frequency": "grid_frequency",
    "grid_power_kw": "grid_power_kw",
    "grid_energy_kwh": "grid_energy_kwh",
    "grid_import_kw": "grid_import_kw",
    "grid_export_kw": "grid_export_kw",
    "load_power_kw": "load_power_kw",
    "load_energy_kwh": "load_energy_kwh",
}
# Measurements a site may report; everything else in a reading is derived.
INGESTED_FIELDS = (
    "battery_voltage",
    "battery_current",
    "battery_charge_level",
    "battery_temperature",
    "battery_state_of_health",
    "battery_cycle_count",
    "solar_power_kw",
    "solar_efficiency",
    "grid_voltage",
    "grid_frequency",
    "grid_import_kw",
    "grid_export_kw",
    "load_power_kw",
)
MAX_INGEST_BATCH = 100


def _asdict_safe(obj: Any) -> Dict[str, Any]:
    """
    Convert dataclasses, pydantic models and mappings to plain dictionaries.

    Raises:
        TypeError: If obj type is not supported.
    """
    if obj is None:
        return {}
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, Mapping):
        return dict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    raise TypeError(f"Unsupported object type for serialization: {type(obj)!r}")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops offsets) and normalise aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _equipment_from_row(row: EquipmentModel) -> Equipment:
    return Equipment(
        id=row.id,
        type=EquipmentType(row.type),
        capacity=row.capacity,
        status=EquipmentStatus(row.status),
        name=row.name,
    )


def _site_from_row(row: SiteModel, with_equipment: bool = False) -> Site:
    return Site(
        id=row.id,
        name=row.name,
        battery_capacity_kwh=row.battery_capacity_kwh,
        solar_capacity_kw=row.solar_capacity_kw,
        nominal_voltage=row.nominal_voltage,
        daily_consumption_kwh=row.daily_consumption_kwh,
        status=SiteStatus(row.status),
        last_seen_at=_as_utc(row.last_seen_at),
        equipment=tuple(_equipment_from_row(eq) for eq in row.equipment) if with_equipment else (),
    )


def _reading_from_row(row: TelemetryReadingModel) -> TelemetryReading:
    values = {field: getattr(row, column) for field, column in READING_COLUMNS.items()}
    return TelemetryReading(
        id=row.id,
        site_id=row.site_id,
        timestamp=_as_utc(row.timestamp),
        inverters=tuple(
            InverterReading(
                inverter_id=inv.inverter_id,
                power_kw=inv.power_kw,
                efficiency=inv.efficiency,
                temperature=inv.temperature,
            )
            for inv in row.inverters
        ),
        metadata=dict(row.reading_metadata or {}),
        **values,
    )


def _apply_reading(row: TelemetryReadingModel, reading: TelemetryReading) -> TelemetryReadingModel:
    """Copy measurements, metadata and inverter entries onto ``row``, replacing previous ones."""
    for field, column in READING_COLUMNS.items():
        setattr(row, column, getattr(reading, field))
    row.reading_metadata = dict(reading.metadata)
    row.inverters = [
        InverterReadingModel(
            position=position,
            inverter_id=inv.inverter_id,
            power_kw=inv.power_kw,
            efficiency=inv.efficiency,
            temperature=inv.temperature,
        )
        for position, inv in enumerate(reading.inverters)
    ]
    return row


def _reading_to_row(reading: TelemetryReading) -> TelemetryReadingModel:
    row = TelemetryReadingModel(site_id=reading.site_id, timestamp=_as_utc(reading.timestamp))
    return _apply_reading(row, reading)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def reading_from_measurements(
    site_id: int,
    payload: Mapping[str, Any],
    received_at: datetime,
) -> TelemetryReading:
    """
    Build a reading from measurements reported by site hardware.

    Missing measurements stay None. Grid power is ``import - export`` when
    the import is reported; battery power is ``voltage x current`` when both
    are reported. Energies and the derived battery power are left empty.

    Raises:
        ValueError: If ``timestamp`` is missing or not a datetime.
    """
    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, datetime):
        raise ValueError("Each reading requires a datetime 'timestamp'")

    values = {field: _optional_float(payload.get(field)) for field in INGESTED_FIELDS}
    grid_power_kw = None
    if values["grid_import_kw"] is not None:
        grid_power_kw = values["grid_import_kw"] - (values["grid_export_kw"] or 0.0)
    battery_power_kw = None
    if values["battery_voltage"] is not None and values["battery_current"] is not None:
        battery_power_kw = values["battery_voltage"] * values["battery_current"] / 1000.0

    inverters = tuple(
        InverterReading(
            inverter_id=int(entry["inverter_id"]),
            power_kw=float(entry["power_kw"]),
            efficiency=_optional_float(entry.get("efficiency")),
            temperature=_optional_float(entry.get("temperature")),
        )
        for entry in (_asdict_safe(item) for item in payload.get("inverters") or ())
    )
    return TelemetryReading(
        site_id=site_id,
        timestamp=_as_utc(timestamp),
        battery_power_kw=battery_power_kw,
        battery_power_derived_kw=None,
        solar_energy_kwh=None,
        grid_power_kw=grid_power_kw,
        grid_energy_kwh=None,
        load_energy_kwh=None,
        inverters=inverters,
        metadata={"dataQuality": "good", "receivedAt": received_at.isoformat(), "generatedBy": "hardware"},
        **values,
    )


@dataclass(frozen=True)
class IngestResult:
    site_id: int
    inserted: int
    updated: int


class PersistenceService:
    """
    Database gateway used by the orchestrator, the API and the CLI.

    Every public method opens its own transactional session, so the
    service holds no connection state between calls.

    Example:
        ```python
        service = PersistenceService()
        site = service.upsert_site({"name": "Clinic 7", "battery_capacity_kwh": 50.0})
        service.add_equipment(site.id, {"type": "inverter", "name": "INV-1", "capacity": 5.0})
        latest = service.read_latest_reading(site.id)   # None before the first tick
        ```
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        """
        Args:
            session_factory: SQLAlchemy session factory. Defaults to the
                module-level SessionLocal; tests pass one bound to SQLite.
        """
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Transactional session: commit on success, rollback on error, always close.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        """Round-trip a trivial query; raises the driver error when unreachable."""
        with self.session() as db:
            db.execute(text("SELECT 1"))

    # Sites -----------------------------------------------------------------

    def list_sites(self, status: SiteStatus | str | None = None) -> List[Site]:
        with self.session() as db:
            stmt = select(SiteModel).order_by(SiteModel.id)
            if status is not None:
                stmt = stmt.where(SiteModel.status == SiteStatus(status).value)
            return [_site_from_row(row) for row in db.scalars(stmt)]

    def list_active_sites(self) -> List[Site]:
        return self.list_sites(SiteStatus.ACTIVE)

    def get_site(self, site_id: int) -> Optional[Site]:
        with self.session() as db:
            row = db.get(SiteModel, site_id)
            return _site_from_row(row, with_equipment=True) if row else None

    def upsert_site(self, data: Any) -> Site:
        """
        Create a site or update the one with the same name.

        Args:
            data: Mapping, dataclass or pydantic model with at least ``name``.

        Raises:
            ValueError: If ``name`` is missing or ``status`` is unknown.
        """
        payload = _asdict_safe(data)
        name = payload.get("name")
        if not name:
            raise ValueError("Site payload requires a 'name'")
        if "status" in payload and payload["status"] is not None:
            payload["status"] = SiteStatus(payload["status"]).value

        with self.session() as db:
            row = db.scalar(select(SiteModel).where(SiteModel.name == name))
            if row is None:
                row = SiteModel(name=name)
                db.add(row)
            for field in SITE_FIELDS:
                if field in payload and payload[field] is not None:
                    setattr(row, field, payload[field])
            db.flush()
            db.refresh(row)
            return _site_from_row(row, with_equipment=True)

    def update_heartbeat(self, site_id: int, instant: datetime) -> None:
        with self.session() as db:
            row = db.get(SiteModel, site_id)
            if row is None:
                raise LookupError(f"Site {site_id} not found")
            row.last_seen_at = _as_utc(instant)

    # Equipment -------------------------------------------------------------

    def add_equipment(self, site_id: int, data: Any) -> Equipment:
        """
        Register a unit at a site.

        Raises:
            LookupError: If the site does not exist.
            ValueError: If type or status is not a known value.
        """
        payload = _asdict_safe(data)
        equipment_type = EquipmentType(payload["type"])
        status = EquipmentStatus(payload.get("status") or EquipmentStatus.OPERATIONAL)
        with self.session() as db:
            if db.get(SiteModel, site_id) is None:
                raise LookupError(f"Site {site_id} not found")
            row = EquipmentModel(
                site_id=site_id,
                type=equipment_type.value,
                name=payload.get("name") or equipment_type.value,
                manufacturer=payload.get("manufacturer"),
                model=payload.get("model"),
                capacity=payload.get("capacity"),
                status=status.value,
            )
            db.add(row)
            db.flush()
            return _equipment_from_row(row)

    def read_equipment(self, site_id: int) -> List[Equipment]:
        with self.session() as db:
            stmt = select(EquipmentModel).where(EquipmentModel.site_id == site_id).order_by(EquipmentModel.id)
            return [_equipment_from_row(row) for row in db.scalars(stmt)]

    def read_active_equipment(self, site_id: int) -> List[Equipment]:
        """Units of a site that are neither failed nor offline, in id order."""
        return [unit for unit in self.read_equipment(site_id) if unit.is_active]

    # Readings --------------------------------------------------------------

    def read_latest_reading(self, site_id: int) -> Optional[TelemetryReading]:
        with self.session() as db:
            stmt = (
                select(TelemetryReadingModel)
                .where(TelemetryReadingModel.site_id == site_id)
                .order_by(desc(TelemetryReadingModel.timestamp))
                .limit(1)
            )
            row = db.scalar(stmt)
            return _reading_from_row(row) if row else None

    def write_reading(self, reading: TelemetryReading) -> TelemetryReading:
        """
        Append a reading. Raises IntegrityError on a duplicate (site, timestamp).
        """
        with self.session() as db:
            row = _reading_to_row(reading)
            db.add(row)
            db.flush()
            db.refresh(row)
            stored = _reading_from_row(row)
        logger.debug("Stored reading %s for site %s at %s", stored.id, stored.site_id, stored.timestamp)
        return stored

    def record_tick(self, reading: TelemetryReading) -> TelemetryReading:
        """
        Store a simulated reading and move the site heartbeat to its timestamp.

        Both writes share one transaction: either the reading and the
        heartbeat are committed together or neither is.

        Raises:
            LookupError: If the site does not exist.
            IntegrityError: On a duplicate (site, timestamp).
        """
        with self.session() as db:
            site = db.get(SiteModel, reading.site_id)
            if site is None:
                raise LookupError(f"Site {reading.site_id} not found")
            row = _reading_to_row(reading)
            db.add(row)
            site.last_seen_at = _as_utc(reading.timestamp)
            db.flush()
            db.refresh(row)
            stored = _reading_from_row(row)
        logger.debug("Recorded tick %s for site %s at %s", stored.id, stored.site_id, stored.timestamp)
        return stored

    def ingest_readings(
        self,
        site_id: int,
        readings: Sequence[Any],
        received_at: datetime | None = None,
    ) -> IngestResult:
        """
        Store measurements reported by a site's own hardware.

        Each reading replaces any stored reading of the same site and
        timestamp (including a simulated one). The site heartbeat is set to
        the receipt time. The whole batch is one transaction.

        Args:
            site_id: Reporting site.
            readings: Mappings, dataclasses or pydantic models carrying a
                ``timestamp`` plus any of the measured fields and an optional
                ``inverters`` list.
            received_at: Receipt time; defaults to now (UTC).

        Raises:
            ValueError: If the batch is empty, exceeds :data:`MAX_INGEST_BATCH`
                or a reading has no timestamp.
            LookupError: If the site does not exist.
        """
        if not readings:
            raise ValueError("At least one reading is required")
        if len(readings) > MAX_INGEST_BATCH:
            raise ValueError(f"At most {MAX_INGEST_BATCH} readings per batch, got {len(readings)}")
        received_at = _as_utc(received_at) or datetime.now(timezone.utc)
        records = [reading_from_measurements(site_id, _asdict_safe(item), received_at) for item in readings]

        inserted = updated = 0
        with self.session() as db:
            site = db.get(SiteModel, site_id)
            if site is None:
                raise LookupError(f"Site {site_id} not found")
            for record in records:
                existing = db.scalar(
                    select(TelemetryReadingModel).where(
                        TelemetryReadingModel.site_id == site_id,
                        TelemetryReadingModel.timestamp == record.timestamp,
                    )
                )
                if existing is None:
                    db.add(_reading_to_row(record))
                    inserted += 1
                else:
                    _apply_reading(existing, record)
                    updated += 1
                db.flush()
            site.last_seen_at = received_at
        logger.info("Ingested %d readings for site %s (%d new, %d replaced)", len(records), site_id, inserted, updated)
        return IngestResult(site_id=site_id, inserted=inserted, updated=updated)

    def list_readings(
        self,
        site_id: int,
        *,
        limit: int = 100,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> List[TelemetryReading]:
        """Readings of a site, newest first."""
        with self.session() as db:
            stmt = select(TelemetryReadingModel).where(TelemetryReadingModel.site_id == site_id)
            if since is not None:
                stmt = stmt.where(TelemetryReadingModel.timestamp >= _as_utc(since))
            if until is not None:
                stmt = stmt.where(TelemetryReadingModel.timestamp <= _as_utc(until))
            stmt = stmt.order_by(desc(TelemetryReadingModel.timestamp)).limit(limit)
            return [_reading_from_row(row) for row in db.scalars(stmt)]
