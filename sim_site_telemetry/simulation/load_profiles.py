"""
Site consumption profiles.

Each site is mapped to one of three load families (residential, commercial,
industrial) inferred from its expected daily consumption. A profile fixes
the base and peak load, the hour bands and the weekend and temperature
sensitivities; :meth:`LoadProfileProvider.power_at` turns it into an
instantaneous load for any instant and weather sample.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, List, Sequence

import numpy as np

from .records import Site, WeatherSample

DEFAULT_DAILY_CONSUMPTION_KWH = 65.0

PEAK_FACTOR = 1.0
SHOULDER_FACTOR = 0.7
OFF_PEAK_FACTOR = 0.4
LOAD_NOISE_AMPLITUDE = 0.10
COMFORT_TEMPERATURE_C = 25.0


class SiteType(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    INDUSTRIAL = "industrial"


@dataclass(frozen=True)
class LoadProfile:
    """
    Load shape of a site.

    Attributes:
        site_type: Load family the profile was built from.
        base_load_kw: Floor consumption (kW).
        peak_load_kw: Consumption during peak hours (kW).
        peak_hours: Hours of day (0-23) at full peak.
        shoulder_hours: Hours at 70 % of the base-to-peak span.
        weekend_factor: Multiplier applied on Saturday and Sunday.
        temperature_sensitivity: Extra kW per °C above 25 °C (cooling load).
    """
    site_type: SiteType
    base_load_kw: float
    peak_load_kw: float
    peak_hours: FrozenSet[int]
    shoulder_hours: FrozenSet[int]
    weekend_factor: float
    temperature_sensitivity: float


@dataclass(frozen=True)
class _Template:
    base_factor: float
    peak_factor: float
    peak_hours: FrozenSet[int]
    shoulder_hours: FrozenSet[int]
    weekend_factor: float
    temperature_sensitivity: float


_TEMPLATES: Dict[SiteType, _Template] = {
    SiteType.RESIDENTIAL: _Template(
        base_factor=0.3,
        peak_factor=3.0,
        peak_hours=frozenset({7, 8, 18, 19, 20, 21}),
        shoulder_hours=frozenset({6, 9, 17, 22}),
        weekend_factor=1.2,
        temperature_sensitivity=0.15,
    ),
    SiteType.COMMERCIAL: _Template(
        base_factor=0.2,
        peak_factor=2.5,
        peak_hours=frozenset(range(9, 17)),
        shoulder_hours=frozenset({8, 17}),
        weekend_factor=0.3,
        temperature_sensitivity=0.25,
    ),
    SiteType.INDUSTRIAL: _Template(
        base_factor=0.7,
        peak_factor=1.5,
        peak_hours=frozenset(range(8, 17)),
        shoulder_hours=frozenset({7, 17, 18}),
        weekend_factor=0.5,
        temperature_sensitivity=0.05,
    ),
}


def infer_site_type(daily_consumption_kwh: float) -> SiteType:
    if daily_consumption_kwh < 70:
        return SiteType.RESIDENTIAL
    if daily_consumption_kwh < 120:
        return SiteType.COMMERCIAL
    return SiteType.INDUSTRIAL


def time_of_day_factor(hour: int, profile: LoadProfile) -> float:
    if hour in profile.peak_hours:
        return PEAK_FACTOR
    if hour in profile.shoulder_hours:
        return SHOULDER_FACTOR
    return OFF_PEAK_FACTOR


class LoadProfileProvider:
    """
    Builds site load profiles and evaluates them.

    The provider is stateless apart from its random generator, which adds a
    ±10 % jitter to every evaluation. Pass ``noise=False`` for deterministic
    output.

    Example:
        ```python
        provider = LoadProfileProvider(rng=np.random.default_rng(7))
        profile = provider.profile_for(site)
        load_kw = provider.power_at(now, weather, profile)
        ```
    """

    def __init__(self, rng: np.random.Generator | None = None, noise: bool = True) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()
        self.noise = noise

    def profile_for(self, site: Site, site_type: SiteType | None = None) -> LoadProfile:
        """
        Profile of a site, scaled on its average load (daily kWh / 24).

        Args:
            site: Site with its daily consumption estimate (65 kWh if unset).
            site_type: Explicit family; inferred from consumption when omitted.
        """
        daily_kwh = site.daily_consumption_kwh or DEFAULT_DAILY_CONSUMPTION_KWH
        average_kw = daily_kwh / 24.0
        resolved = site_type or infer_site_type(daily_kwh)
        template = _TEMPLATES[resolved]
        return LoadProfile(
            site_type=resolved,
            base_load_kw=average_kw * template.base_factor,
            peak_load_kw=average_kw * template.peak_factor,
            peak_hours=template.peak_hours,
            shoulder_hours=template.shoulder_hours,
            weekend_factor=template.weekend_factor,
            temperature_sensitivity=template.temperature_sensitivity,
        )

    def power_at(self, instant: datetime, weather: WeatherSample, profile: LoadProfile) -> float:
        """
        Site consumption at ``instant`` (kW, >= 0).

        Combines the time-of-day band, the weekend factor and a cooling load
        proportional to the temperature excess over 25 °C.
        """
        tod = time_of_day_factor(instant.hour, profile)
        weekend = profile.weekend_factor if instant.weekday() >= 5 else 1.0
        base_kw = profile.base_load_kw + (profile.peak_load_kw - profile.base_load_kw) * tod
        cooling_kw = profile.temperature_sensitivity * max(0.0, weather.temperature - COMFORT_TEMPERATURE_C)
        total_kw = (base_kw + cooling_kw) * weekend
        if self.noise:
            total_kw *= 1.0 + self.rng.uniform(-LOAD_NOISE_AMPLITUDE, LOAD_NOISE_AMPLITUDE)
        return max(0.0, total_kw)

    def daily_pattern(
        self,
        day: datetime,
        weather: Sequence[WeatherSample],
        profile: LoadProfile,
    ) -> List[float]:
        """
        Hourly load (kW) for the 24 hours of ``day``.

        Each hour uses the weather sample of the same hour when present,
        otherwise the first sample.
        """
        if not weather:
            raise ValueError("daily_pattern needs at least one weather sample")
        by_hour = {sample.timestamp.hour: sample for sample in weather}
        midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)
        return [
            self.power_at(midnight + timedelta(hours=hour), by_hour.get(hour, weather[0]), profile)
            for hour in range(24)
        ]


def daily_consumption_error(site: Site, hourly_loads_kw: Sequence[float]) -> float:
    """
    Relative deviation (%) of an hourly pattern from the site's daily estimate.
    """
    expected = site.daily_consumption_kwh or DEFAULT_DAILY_CONSUMPTION_KWH
    actual = float(np.sum(hourly_loads_kw))
    return abs(actual - expected) / expected * 100.0
