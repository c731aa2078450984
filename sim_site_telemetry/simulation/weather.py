"""
Weather sources for the telemetry engine.

A :class:`WeatherProvider` answers ``sample_at(instant)`` with a
:class:`~.records.WeatherSample` or raises :class:`ProviderError`. The
orchestrator creates one provider per batch, so any cache a provider keeps
lives exactly as long as one scheduler invocation.

Implementations:

* :class:`OpenMeteoWeatherProvider` downloads hourly history from the
  Open-Meteo API, holds it in a pandas frame and linearly interpolates to
  the requested instant.
* :class:`StaticWeatherProvider` always answers with one fixed sample
  (tests, offline runs).

:func:`fallback_weather_sample` is the conservative night-time sample used
when a provider fails.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx
import numpy as np
import pandas as pd

from ..config import WeatherLocation
from ..exceptions import ProviderError
from .records import WeatherCondition, WeatherSample

logger = logging.getLogger(__name__)

OPEN_METEO_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"

HOURLY_VARIABLES = {
    "temperature_2m": "temperature",
    "relative_humidity_2m": "humidity",
    "cloud_cover": "cloud_cover",
    "wind_speed_10m": "wind_speed",
    "precipitation": "precipitation",
    "shortwave_radiation": "solar_irradiance",
    "uv_index": "uv_index",
}
INTERPOLATED_COLUMNS = (
    "temperature",
    "humidity",
    "cloud_cover",
    "wind_speed",
    "solar_irradiance",
    "uv_index",
)


def classify_condition(cloud_cover: float, precipitation: float) -> WeatherCondition:
    if precipitation > 5:
        return WeatherCondition.STORMY
    if precipitation > 0:
        return WeatherCondition.RAINY
    if cloud_cover < 20:
        return WeatherCondition.CLEAR
    if cloud_cover < 60:
        return WeatherCondition.PARTLY_CLOUDY
    return WeatherCondition.CLOUDY


def _seasonal_offset_hours(day: date) -> float:
    # Southern hemisphere: +0.5 h at the December solstice, -0.5 h in June.
    day_of_year = day.timetuple().tm_yday
    return math.cos((day_of_year - 355) * 2 * math.pi / 365) * 0.5


def _at_fractional_hour(day: date, hours: float, tz: Any) -> datetime:
    whole = int(math.floor(hours))
    minutes = int(round((hours - whole) * 60))
    return datetime.combine(day, time(0, 0), tzinfo=tz) + timedelta(hours=whole, minutes=minutes)


def approximate_sunrise(day: date, tz: Any = timezone.utc) -> datetime:
    """Sunrise around 06:00 local, earlier in summer, up to ±30 minutes."""
    return _at_fractional_hour(day, 6.0 - _seasonal_offset_hours(day), tz)


def approximate_sunset(day: date, tz: Any = timezone.utc) -> datetime:
    """Sunset around 18:00 local, later in summer, up to ±30 minutes."""
    return _at_fractional_hour(day, 18.0 + _seasonal_offset_hours(day), tz)


def fallback_weather_sample(instant: datetime) -> WeatherSample:
    """
    Conservative night-time sample used when no provider can answer.

    Irradiance is zero so solar production is zero for the tick; sunrise and
    sunset are fixed at 06:00 and 18:00 on the instant's own date and zone.
    """
    midnight = instant.replace(hour=0, minute=0, second=0, microsecond=0)
    return WeatherSample(
        timestamp=instant,
        temperature=18.0,
        humidity=70.0,
        cloud_cover=30.0,
        solar_irradiance=0.0,
        wind_speed=5.0,
        precipitation=0.0,
        uv_index=0.0,
        sunrise=midnight.replace(hour=6),
        sunset=midnight.replace(hour=18),
        condition=WeatherCondition.CLEAR,
    )


class WeatherProvider:
    """Generic interface for weather sources."""

    def sample_at(self, instant: datetime) -> WeatherSample:
        """
        Weather at ``instant``.

        Raises:
            ProviderError: When the source cannot deliver a sample.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the provider (default no-op)."""


def _same_time_on_day_of(moment: datetime, instant: datetime) -> datetime:
    """``moment``'s wall-clock time on the date ``instant`` falls on in ``moment``'s zone."""
    if moment.tzinfo is None:
        day = instant.date()
    else:
        day = instant.astimezone(moment.tzinfo).date()
    return datetime.combine(day, moment.timetz())


class StaticWeatherProvider(WeatherProvider):
    """
    Answers every request with the same conditions, re-stamped to the instant.

    Sunrise and sunset keep their time of day but move to the instant's date,
    so one sample serves ticks on any day.
    """

    def __init__(self, sample: WeatherSample) -> None:
        self.sample = sample

    def sample_at(self, instant: datetime) -> WeatherSample:
        return replace(
            self.sample,
            timestamp=instant,
            sunrise=_same_time_on_day_of(self.sample.sunrise, instant),
            sunset=_same_time_on_day_of(self.sample.sunset, instant),
        )


def interpolate_frame(frame: pd.DataFrame, instant: datetime) -> WeatherSample:
    """
    Linearly interpolate an hourly weather frame to ``instant``.

    The frame is indexed by tz-aware timestamps (ascending) and carries the
    columns of :data:`INTERPOLATED_COLUMNS` plus ``precipitation``,
    ``sunrise`` and ``sunset``. Before the first row the first row is
    returned, after the last row the last one. Precipitation, sun times and
    condition are taken from the row preceding the instant.

    Raises:
        ProviderError: If the frame is empty.
    """
    if frame.empty:
        raise ProviderError("Cannot interpolate: no hourly data")

    target = pd.Timestamp(instant)
    if target.tzinfo is None:
        target = target.tz_localize(frame.index.tz)
    else:
        target = target.tz_convert(frame.index.tz)
    position = int(frame.index.searchsorted(target, side="right"))

    if position == 0:
        before = after = frame.iloc[0]
        ratio = 0.0
    elif position >= len(frame):
        before = after = frame.iloc[-1]
        ratio = 0.0
    else:
        before = frame.iloc[position - 1]
        after = frame.iloc[position]
        span = (frame.index[position] - frame.index[position - 1]).total_seconds()
        ratio = (target - frame.index[position - 1]).total_seconds() / span if span > 0 else 0.0

    values = {
        column: float(before[column] + (after[column] - before[column]) * ratio)
        for column in INTERPOLATED_COLUMNS
    }
    precipitation = float(before["precipitation"])
    return WeatherSample(
        timestamp=instant,
        temperature=values["temperature"],
        humidity=values["humidity"],
        cloud_cover=values["cloud_cover"],
        solar_irradiance=max(0.0, values["solar_irradiance"]),
        wind_speed=values["wind_speed"],
        precipitation=precipitation,
        uv_index=values["uv_index"],
        sunrise=before["sunrise"].to_pydatetime(),
        sunset=before["sunset"].to_pydatetime(),
        condition=classify_condition(float(before["cloud_cover"]), precipitation),
    )


class OpenMeteoWeatherProvider(WeatherProvider):
    """
    Hourly weather from the Open-Meteo API, interpolated to any instant.

    The provider fetches the days around the first requested instant in a
    single call and serves later requests from memory while they fall inside
    the downloaded window. It is meant to be created per batch; nothing is
    shared between instances.

    Attributes:
        location: Coordinates and timezone of the query.
        base_url: Endpoint; the forecast API (default) covers recent days,
            the archive API (:data:`OPEN_METEO_ARCHIVE_URL`) older history.
        days_before: Days fetched before the instant's date.
        days_after: Days fetched after the instant's date.

    Example:
        ```python
        provider = OpenMeteoWeatherProvider(get_weather_location())
        try:
            sample = provider.sample_at(datetime.now(timezone.utc))
        finally:
            provider.close()
        ```
    """

    def __init__(
        self,
        location: WeatherLocation,
        client: httpx.Client | None = None,
        base_url: str = OPEN_METEO_FORECAST_URL,
        days_before: int = 1,
        days_after: int = 1,
        timeout: float = 15.0,
    ) -> None:
        self.location = location
        self.base_url = base_url
        self.days_before = days_before
        self.days_after = days_after
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._tz = ZoneInfo(location.timezone)
        self._frame: Optional[pd.DataFrame] = None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _covers(self, instant: datetime) -> bool:
        if self._frame is None or self._frame.empty:
            return False
        target = pd.Timestamp(instant).tz_convert(self._tz)
        return self._frame.index[0] <= target <= self._frame.index[-1]

    def _request(self, start: date, end: date) -> Dict[str, Any]:
        params = {
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "timezone": self.location.timezone,
            "hourly": ",".join(HOURLY_VARIABLES),
        }
        try:
            response = self._client.get(self.base_url, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Open-Meteo request failed: {exc}") from exc

    def _to_frame(self, payload: Dict[str, Any]) -> pd.DataFrame:
        hourly = payload.get("hourly") or {}
        if not hourly.get("time"):
            raise ProviderError("Invalid Open-Meteo response: missing hourly data")

        frame = pd.DataFrame({"time": pd.to_datetime(hourly["time"])})
        for api_name, column in HOURLY_VARIABLES.items():
            series = hourly.get(api_name)
            frame[column] = pd.to_numeric(pd.Series(series), errors="coerce") if series else np.nan

        frame = frame.dropna(subset=["temperature"])
        if frame.empty:
            raise ProviderError("Open-Meteo returned no usable hourly rows")
        times = frame.pop("time")
        frame = frame.fillna(0.0)
        frame.index = pd.DatetimeIndex(times).tz_localize(
            self._tz, ambiguous="NaT", nonexistent="shift_forward"
        )
        frame = frame[frame.index.notna()].sort_index()
        days = frame.index.date
        frame["sunrise"] = [pd.Timestamp(approximate_sunrise(day, self._tz)) for day in days]
        frame["sunset"] = [pd.Timestamp(approximate_sunset(day, self._tz)) for day in days]
        return frame

    def sample_at(self, instant: datetime) -> WeatherSample:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        if not self._covers(instant):
            local_day = instant.astimezone(self._tz).date()
            start = local_day - timedelta(days=self.days_before)
            end = local_day + timedelta(days=self.days_after)
            logger.info("Fetching Open-Meteo weather %s..%s", start, end)
            self._frame = self._to_frame(self._request(start, end))
            logger.debug("Fetched %d hourly weather rows", len(self._frame))
        return interpolate_frame(self._frame, instant)
