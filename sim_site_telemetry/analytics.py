from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

import pandas as pd

from .simulation.records import TelemetryReading

ONLINE_WITHIN_MINUTES = 10.0
WARNING_WITHIN_MINUTES = 30.0

FRAME_COLUMNS = (
    "battery_charge_level",
    "battery_temperature",
    "battery_power_kw",
    "solar_power_kw",
    "solar_energy_kwh",
    "load_power_kw",
    "load_energy_kwh",
    "grid_power_kw",
    "grid_energy_kwh",
    "grid_import_kw",
    "grid_export_kw",
)


class Connectivity(str, Enum):
    ONLINE = "online"
    WARNING = "warning"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SiteConnectivity:
    status: Connectivity
    label: str
    minutes_since_last_seen: Optional[float] = None

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


def site_connectivity(last_seen_at: Optional[datetime], now: Optional[datetime] = None) -> SiteConnectivity:
    """
    Classify a site from its heartbeat.

    Online when seen within 10 minutes, warning within 30 minutes, offline
    beyond that and unknown when it never reported. Naive datetimes are UTC.
    """
    if last_seen_at is None:
        return SiteConnectivity(Connectivity.UNKNOWN, "Never seen")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if last_seen_at.tzinfo is None:
        last_seen_at = last_seen_at.replace(tzinfo=timezone.utc)

    minutes = (now - last_seen_at).total_seconds() / 60.0
    if minutes <= ONLINE_WITHIN_MINUTES:
        return SiteConnectivity(Connectivity.ONLINE, "Online", minutes)
    if minutes <= WARNING_WITHIN_MINUTES:
        return SiteConnectivity(Connectivity.WARNING, "Delayed", minutes)
    return SiteConnectivity(Connectivity.OFFLINE, "Offline", minutes)


def readings_frame(readings: Iterable[TelemetryReading]) -> pd.DataFrame:
    """
    Readings as a frame indexed by UTC timestamp, oldest first.
    """
    rows = [
        {"timestamp": reading.timestamp, **{column: getattr(reading, column) for column in FRAME_COLUMNS}}
        for reading in readings
    ]
    if not rows:
        return pd.DataFrame(columns=list(FRAME_COLUMNS), index=pd.DatetimeIndex([], tz="UTC", name="timestamp"))
    frame = pd.DataFrame(rows)
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    return frame.set_index("timestamp").sort_index()


def hourly_rollups(readings: Iterable[TelemetryReading]) -> pd.DataFrame:
    """
    Aggregate readings into hourly buckets.

    Returns:
        DataFrame indexed by hour with average powers, SOC statistics,
        summed energies and the number of readings per hour. Hours without
        readings are dropped.
    """
    frame = readings_frame(readings)
    if frame.empty:
        return pd.DataFrame(
            columns=[
                "readings",
                "soc_avg",
                "soc_min",
                "soc_max",
                "battery_temperature_avg",
                "solar_power_avg_kw",
                "load_power_avg_kw",
                "grid_power_avg_kw",
                "solar_energy_kwh",
                "load_energy_kwh",
                "grid_import_kwh",
                "grid_export_kwh",
            ]
        )

    frame = frame.astype(float)
    hourly = frame.resample("1h").agg(
        {
            "battery_charge_level": ["count", "mean", "min", "max"],
            "battery_temperature": "mean",
            "solar_power_kw": "mean",
            "load_power_kw": "mean",
            "grid_power_kw": "mean",
            "solar_energy_kwh": "sum",
            "load_energy_kwh": "sum",
        }
    )
    hourly.columns = [
        "readings",
        "soc_avg",
        "soc_min",
        "soc_max",
        "battery_temperature_avg",
        "solar_power_avg_kw",
        "load_power_avg_kw",
        "grid_power_avg_kw",
        "solar_energy_kwh",
        "load_energy_kwh",
    ]
    # Import and export energy from the per-tick grid energy sign.
    grid_energy = frame["grid_energy_kwh"]
    hourly["grid_import_kwh"] = grid_energy.clip(lower=0.0).resample("1h").sum()
    hourly["grid_export_kwh"] = (-grid_energy).clip(lower=0.0).resample("1h").sum()
    # Rows, not SOC values: hardware readings may omit the charge level.
    hourly["readings"] = frame.resample("1h").size()
    hourly = hourly[hourly["readings"] > 0].copy()
    hourly["readings"] = hourly["readings"].astype(int)
    hourly.index.name = "hour"
    return hourly
