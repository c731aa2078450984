from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from .exceptions import ConfigurationError

ALLOWED_TICK_MINUTES = (1, 5)


def load_dotenv(path: str = ".env") -> Dict[str, str]:
    """
    Populate os.environ from a ``KEY=value`` file without overriding
    variables that are already set (CRON_SECRET, POSTGRES_DSN, ...).

    Returns:
        Mapping of the key/value pairs parsed from the file.
    """
    env_path = Path(path)
    if not env_path.exists():
        return {}

    parsed: Dict[str, str] = {}
    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        os.environ.setdefault(key, value)
        parsed[key] = value
    return parsed


load_dotenv(os.getenv("SIM_TELEMETRY_ENV_FILE", ".env"))


@dataclass(frozen=True)
class WeatherLocation:
    """
    Geographic point used to query the weather archive.

    Attributes:
        latitude: Decimal degrees, negative south of the equator.
        longitude: Decimal degrees, negative west of Greenwich.
        timezone: IANA timezone name passed to the archive API.
    """
    latitude: float
    longitude: float
    timezone: str


def get_database_url() -> str:
    """
    Determine the SQLAlchemy database URL, preferring PostgreSQL if configured.

    Returns:
        Database connection string compatible with SQLAlchemy.
    """
    dsn = os.getenv("POSTGRES_DSN")
    if dsn:
        return dsn

    db_path = Path(os.getenv("SIM_TELEMETRY_DB_PATH", "sim_telemetry.db")).expanduser()
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+pysqlite:///{db_path}"


def get_cron_secret() -> str:
    """
    Shared secret expected in the scheduler's ``Authorization`` header.

    Raises:
        ConfigurationError: If ``CRON_SECRET`` is not set or empty.
    """
    secret = os.getenv("CRON_SECRET", "").strip()
    if not secret:
        raise ConfigurationError("CRON_SECRET environment variable not set")
    return secret


def get_tick_minutes() -> int:
    """
    Simulation cadence in minutes (``TELEMETRY_TICK_MINUTES``, default 5).

    Raises:
        ConfigurationError: If the value is not an integer in ALLOWED_TICK_MINUTES.
    """
    raw = os.getenv("TELEMETRY_TICK_MINUTES", "5")
    try:
        minutes = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"TELEMETRY_TICK_MINUTES is not an integer: {raw!r}") from exc
    if minutes not in ALLOWED_TICK_MINUTES:
        raise ConfigurationError(
            f"TELEMETRY_TICK_MINUTES must be one of {ALLOWED_TICK_MINUTES}, got {minutes}"
        )
    return minutes


def get_weather_location() -> WeatherLocation:
    """
    Location for weather lookups, defaulting to the Harry Gwala district (KZN).
    """
    try:
        latitude = float(os.getenv("WEATHER_LATITUDE", "-29.5"))
        longitude = float(os.getenv("WEATHER_LONGITUDE", "29.5"))
    except ValueError as exc:
        raise ConfigurationError("WEATHER_LATITUDE/WEATHER_LONGITUDE must be numeric") from exc
    return WeatherLocation(
        latitude=latitude,
        longitude=longitude,
        timezone=os.getenv("WEATHER_TIMEZONE", "Africa/Johannesburg"),
    )


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str | None = None) -> None:
    """
    Install a root handler with a compact format.

    Safe to call more than once; subsequent calls only adjust the level.
    """
    resolved = level or get_log_level()
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(resolved)
