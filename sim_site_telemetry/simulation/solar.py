"""
Weather-driven photovoltaic production model.

Provides :class:`SolarConfig` describing a site's array and a set of pure
functions turning a :class:`~.records.WeatherSample` into instantaneous AC
power. The power is the product of independent factors (irradiance, sun
elevation, panel temperature, cloud attenuation, conversion losses and a
small random jitter), each exposed separately so it can be tested alone.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np

from .records import Site, WeatherSample

STC_IRRADIANCE_W_M2 = 1000.0
STC_TEMPERATURE_C = 25.0
NOISE_AMPLITUDE = 0.05


@dataclass(frozen=True)
class SolarConfig:
    """
    PV array parameters.

    Attributes:
        panel_capacity_kw: Nameplate DC capacity of the active panels (kW).
        panel_area_m2: Total panel surface, derived from capacity and efficiency.
        panel_efficiency: Module conversion efficiency (0.20 = 20 %).
        temperature_coefficient: Relative power change per °C above 25 °C
            (-0.005 = -0.5 %/°C).
        inverter_efficiency: DC to AC conversion efficiency.
        system_losses: Wiring, soiling and shading losses (0.14 = 14 %).
    """
    panel_capacity_kw: float
    panel_area_m2: float = 0.0
    panel_efficiency: float = 0.20
    temperature_coefficient: float = -0.005
    inverter_efficiency: float = 0.97
    system_losses: float = 0.14

    @classmethod
    def for_site(cls, site: Site, capacity_kw: Optional[float] = None) -> "SolarConfig":
        """
        Default array configuration for a site.

        Args:
            site: Site providing the nameplate solar capacity.
            capacity_kw: Aggregated capacity of active panel equipment;
                falls back to the site's nameplate value, then 0.
        """
        capacity = capacity_kw or site.solar_capacity_kw or 0.0
        panel_efficiency = cls.panel_efficiency
        return cls(
            panel_capacity_kw=capacity,
            panel_area_m2=capacity * 1000.0 / (STC_IRRADIANCE_W_M2 * panel_efficiency),
            panel_efficiency=panel_efficiency,
        )


def irradiance_factor(weather: WeatherSample) -> float:
    return weather.solar_irradiance / STC_IRRADIANCE_W_M2


def sun_angle_factor(instant: datetime, sunrise: datetime, sunset: datetime) -> float:
    """
    Sinusoidal elevation proxy: 0 at sunrise and sunset, 1 at solar noon.
    """
    day_length = (sunset - sunrise).total_seconds()
    if day_length <= 0:
        return 0.0
    day_fraction = (instant - sunrise).total_seconds() / day_length
    return max(0.0, min(1.0, math.sin(math.pi * day_fraction)))


def temperature_factor(temperature: float, coefficient: float) -> float:
    """Panel derating relative to 25 °C, bounded to [0.5, 1.2]."""
    factor = 1.0 + coefficient * (temperature - STC_TEMPERATURE_C)
    return max(0.5, min(1.2, factor))


def cloud_factor(cloud_cover: float) -> float:
    """Attenuation on top of irradiance: up to 30 % under full overcast."""
    return 1.0 - (cloud_cover / 100.0) * 0.3


def noise_factor(rng: np.random.Generator) -> float:
    return 1.0 + rng.uniform(-NOISE_AMPLITUDE, NOISE_AMPLITUDE)


def produce(
    weather: WeatherSample,
    config: SolarConfig,
    instant: datetime,
    rng: np.random.Generator | None = None,
    noise: bool = True,
) -> float:
    """
    Instantaneous AC power of the array.

    Formula:
        P = capacity x irradiance/1000 x sun_angle x temperature x cloud
            x inverter_efficiency x (1 - system_losses) x noise

    Args:
        weather: Weather sample covering ``instant``.
        config: Array configuration.
        instant: Time of evaluation.
        rng: Generator for the ±5 % jitter. A fresh unseeded generator is
            used when omitted.
        noise: Set to False to drop the jitter entirely.

    Returns:
        Power in kW, never negative. Exactly 0.0 before sunrise, after
        sunset, or when irradiance is not positive.

    Example:
        ```python
        config = SolarConfig(panel_capacity_kw=10.0)
        produce(sample, config, sample.timestamp, noise=False)
        ```
    """
    if instant < weather.sunrise or instant > weather.sunset:
        return 0.0
    if weather.solar_irradiance <= 0:
        return 0.0

    jitter = 1.0
    if noise:
        jitter = noise_factor(rng if rng is not None else np.random.default_rng())

    power = (
        config.panel_capacity_kw
        * irradiance_factor(weather)
        * sun_angle_factor(instant, weather.sunrise, weather.sunset)
        * temperature_factor(weather.temperature, config.temperature_coefficient)
        * cloud_factor(weather.cloud_cover)
        * config.inverter_efficiency
        * (1.0 - config.system_losses)
        * jitter
    )
    return max(0.0, power)


def efficiency(actual_kw: float, weather: WeatherSample, config: SolarConfig) -> float:
    """
    Actual output as a percentage of the lossless output at current irradiance.

    Returns 0 when irradiance or capacity is not positive, otherwise a value
    clamped to [0, 100].
    """
    if weather.solar_irradiance <= 0:
        return 0.0
    theoretical_max_kw = config.panel_capacity_kw * irradiance_factor(weather)
    if theoretical_max_kw <= 0:
        return 0.0
    return max(0.0, min(100.0, actual_kw / theoretical_max_kw * 100.0))


def dc_voltage(
    power_kw: float,
    temperature: float,
    rng: np.random.Generator | None = None,
) -> float:
    """
    Presentation-only string voltage (V).

    520 V base, -0.3 %/°C above 25 °C, 2 % sag under load, ±1 % jitter.
    Never used by :func:`produce`.
    """
    rng = rng if rng is not None else np.random.default_rng()
    temp_factor = 1.0 - 0.003 * (temperature - STC_TEMPERATURE_C)
    load_factor = 0.98 if power_kw > 0 else 1.0
    return 520.0 * temp_factor * load_factor * (1.0 + rng.uniform(-0.01, 0.01))


def dc_current(power_kw: float, voltage: float) -> float:
    if voltage <= 0:
        return 0.0
    return power_kw * 1000.0 / voltage
