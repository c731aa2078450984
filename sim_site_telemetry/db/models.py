"""
SQLAlchemy database models for sites, equipment and telemetry readings.

Sites and equipment are provisioned outside the engine; the engine only
reads them and bumps ``sites.last_seen_at``. Telemetry readings are
append-only: one row per site per tick, plus one ``inverter_readings`` row
per active inverter of that tick.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .session import Base


class TimestampMixin:
    """
    Mixin adding automatic created_at and updated_at timestamps.

    Notes:
        - Timestamps managed by database (server_default, onupdate)
        - created_at immutable after insert
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SiteModel(Base, TimestampMixin):
    """
    Database model for a battery/solar site.

    Attributes:
        id: Primary key.
        name: Unique site name.
        nominal_voltage: Battery bus nominal voltage (V).
        daily_consumption_kwh: Expected daily consumption (kWh).
        battery_capacity_kwh: Nameplate battery capacity (kWh).
        solar_capacity_kw: Nameplate PV capacity (kW).
        status: active / inactive / maintenance / offline.
        last_seen_at: Timestamp of the last generated reading (heartbeat).
        equipment: Installed units.
    """
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    nominal_voltage = Column(Float, nullable=False, default=500.0)
    daily_consumption_kwh = Column(Float, nullable=True, default=65.0)
    battery_capacity_kwh = Column(Float, nullable=True)
    solar_capacity_kw = Column(Float, nullable=True)
    status = Column(String(32), nullable=False, default="active")
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    equipment = relationship(
        "EquipmentModel",
        back_populates="site",
        cascade="all, delete-orphan",
        order_by="EquipmentModel.id",
    )
    readings = relationship(
        "TelemetryReadingModel",
        back_populates="site",
        cascade="all, delete-orphan",
    )


class EquipmentModel(Base, TimestampMixin):
    """
    Database model for one physical unit installed at a site.

    ``capacity`` is kWh for batteries and kW for every other type.
    """
    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    name = Column(String(255), nullable=False)
    manufacturer = Column(String(255), nullable=True)
    model = Column(String(255), nullable=True)
    capacity = Column(Float, nullable=True)
    status = Column(String(32), nullable=False, default="operational")

    site = relationship("SiteModel", back_populates="equipment")


class TelemetryReadingModel(Base):
    """
    Database model for one site reading at one tick.

    Rows are never updated. The latest row of a site is the only input
    used to restore its battery state on the next tick.
    """
    __tablename__ = "telemetry_readings"
    __table_args__ = (
        UniqueConstraint("site_id", "timestamp", name="telemetry_site_timestamp_unique"),
        Index("telemetry_site_timestamp_idx", "site_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    battery_voltage = Column(Float)
    battery_current = Column(Float)
    battery_charge_level = Column(Float)
    battery_temperature = Column(Float)
    battery_soh = Column(Float)
    battery_cycle_count = Column(Float)
    battery_power_kw = Column(Float)
    battery_power_derived_kw = Column(Float)

    solar_power_kw = Column(Float)
    solar_energy_kwh = Column(Float)
    solar_efficiency = Column(Float)

    grid_voltage = Column(Float)
    grid_frequency = Column(Float)
    grid_power_kw = Column(Float)
    grid_energy_kwh = Column(Float)
    grid_import_kw = Column(Float)
    grid_export_kw = Column(Float)

    load_power_kw = Column(Float)
    load_energy_kwh = Column(Float)

    reading_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    site = relationship("SiteModel", back_populates="readings")
    inverters = relationship(
        "InverterReadingModel",
        back_populates="reading",
        cascade="all, delete-orphan",
        order_by="InverterReadingModel.position",
        lazy="selectin",
    )


class InverterReadingModel(Base):
    """Per-inverter share of one telemetry reading, kept in allocation order."""
    __tablename__ = "inverter_readings"

    id = Column(Integer, primary_key=True)
    reading_id = Column(
        Integer,
        ForeignKey("telemetry_readings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    inverter_id = Column(Integer, nullable=False)
    power_kw = Column(Float, nullable=False)
    efficiency = Column(Float)
    temperature = Column(Float)

    reading = relationship("TelemetryReadingModel", back_populates="inverters")
