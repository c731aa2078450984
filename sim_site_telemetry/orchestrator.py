"""
Per-tick telemetry generation for every active site.

:class:`TelemetryOrchestrator` ties the models together. For each site it
aggregates equipment capacity, rebuilds the battery state from the site's
latest reading, evaluates load and PV production, advances the battery by
one tick, splits PV power across inverters and appends one
:class:`~.simulation.records.TelemetryReading`.

A batch never aborts because of one site: failures are wrapped in
:class:`~.exceptions.PerSiteError`, logged and counted in the
:class:`BatchSummary`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .exceptions import PerSiteError, ProviderError
from .persistence import PersistenceService
from .simulation import solar
from .simulation.battery import BatteryConfig, BatteryState, advance
from .simulation.inverter import active_inverters, distribute, inverter_readings
from .simulation.load_profiles import LoadProfileProvider
from .simulation.records import (
    Equipment,
    EquipmentType,
    Site,
    TelemetryReading,
    WeatherSample,
)
from .simulation.weather import WeatherProvider, fallback_weather_sample

logger = logging.getLogger(__name__)

GRID_NOMINAL_VOLTAGE = 230.0
GRID_VOLTAGE_SPREAD = 5.0
GRID_NOMINAL_FREQUENCY = 50.0
GRID_FREQUENCY_SPREAD = 0.1


@dataclass(frozen=True)
class SiteCapacity:
    """
    Capacity of a site after aggregating its active equipment.

    Attributes:
        battery_kwh: Sum of active battery capacities, else the site nameplate.
        solar_kw: Sum of active panel capacities, else the site nameplate.
        inverter_kw: Sum of active inverter capacities (None without inverters).
        inverters: Active inverter units in id order.
    """
    battery_kwh: Optional[float]
    solar_kw: Optional[float]
    inverter_kw: Optional[float]
    inverters: tuple[Equipment, ...] = ()


def _sum_capacity(units: Iterable[Equipment], equipment_type: EquipmentType) -> float:
    return sum(unit.capacity or 0.0 for unit in units if unit.type == equipment_type and unit.is_active)


def aggregate_capacity(site: Site, equipment: Sequence[Equipment]) -> SiteCapacity:
    """
    Aggregate active equipment per type.

    Failed and offline units are ignored. A type without any positive active
    capacity falls back to the site's nameplate value.
    """
    battery_kwh = _sum_capacity(equipment, EquipmentType.BATTERY)
    solar_kw = _sum_capacity(equipment, EquipmentType.SOLAR_PANEL)
    inverter_kw = _sum_capacity(equipment, EquipmentType.INVERTER)
    inverters = active_inverters(unit for unit in equipment if unit.type == EquipmentType.INVERTER)
    return SiteCapacity(
        battery_kwh=battery_kwh or site.battery_capacity_kwh,
        solar_kw=solar_kw or site.solar_capacity_kw,
        inverter_kw=inverter_kw or None,
        inverters=tuple(sorted(inverters, key=lambda unit: unit.id)),
    )


def restore_battery_state(reading: Optional[TelemetryReading], config: BatteryConfig) -> BatteryState:
    """
    Battery state at the start of a tick.

    Without a previous reading the default state is used. Otherwise SOC is
    taken from the stored charge level (%) and every value is re-clamped;
    the stored voltage is ignored and recomputed from SOC.
    """
    if reading is None:
        return BatteryState.default(config)

    defaults = BatteryState.default(config)

    def pick(value: Optional[float], fallback: float) -> float:
        return fallback if value is None else float(value)

    soc = defaults.soc
    if reading.battery_charge_level is not None:
        soc = reading.battery_charge_level / 100.0
    return BatteryState.restored(
        config,
        soc=soc,
        current=pick(reading.battery_current, defaults.current),
        temperature=pick(reading.battery_temperature, defaults.temperature),
        health=pick(reading.battery_state_of_health, defaults.health),
        cycle_count=pick(reading.battery_cycle_count, defaults.cycle_count),
    )


def align_to_tick(instant: datetime, tick_minutes: int) -> datetime:
    """Floor an instant to the previous tick boundary (UTC, seconds dropped)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    instant = instant.astimezone(timezone.utc).replace(second=0, microsecond=0)
    return instant - timedelta(minutes=instant.minute % tick_minutes)


@dataclass
class BatchSummary:
    """
    Outcome of one scheduler invocation.

    Attributes:
        sites_processed: Sites for which a reading was stored.
        errors: Sites whose tick failed.
        total_sites: Active sites found at the start of the batch.
        skipped: Sites left unprocessed because the deadline was reached.
        duration_ms: Wall-clock duration of the batch.
        timestamp: Tick instant shared by every reading of the batch.
        weather_fallback: Whether the fallback weather sample was used.
    """
    sites_processed: int = 0
    errors: int = 0
    total_sites: int = 0
    skipped: int = 0
    duration_ms: int = 0
    timestamp: Optional[datetime] = None
    weather_fallback: bool = False

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return payload


class TelemetryOrchestrator:
    """
    Generates one telemetry reading per active site per tick.

    The weather provider is injected per batch: build a fresh orchestrator
    (or at least a fresh provider) for every scheduler invocation so cached
    weather never outlives it. Sites are processed sequentially.

    Example:
        ```python
        provider = OpenMeteoWeatherProvider(get_weather_location())
        orchestrator = TelemetryOrchestrator(PersistenceService(), provider)
        summary = orchestrator.run_batch()
        summary.sites_processed, summary.errors
        ```
    """

    def __init__(
        self,
        persistence: PersistenceService,
        weather_provider: WeatherProvider,
        load_provider: LoadProfileProvider | None = None,
        *,
        tick_minutes: int = 5,
        rng: np.random.Generator | None = None,
        deadline_seconds: float | None = None,
        local_timezone: tzinfo = timezone.utc,
        grid_available: bool = True,
        generated_by: str = "cron",
        site_ids: Collection[int] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            persistence: Gateway to sites, equipment and readings.
            weather_provider: Weather source for this batch.
            load_provider: Load profile source; a default one sharing ``rng``
                is created when omitted.
            tick_minutes: Tick length, also the integration window of energies.
            rng: Generator for every noise term (seed it for reproducible runs).
            deadline_seconds: Stop starting new sites once this much time has
                elapsed; remaining sites are reported as skipped.
            local_timezone: Zone whose wall-clock hour drives the load profile.
            grid_available: Whether sites may import and export.
            generated_by: Tag stored in each reading's metadata.
            site_ids: Restrict batches to these active sites; None processes all.
            clock: Monotonic clock, replaceable in tests.

        Raises:
            ValueError: If ``tick_minutes`` is not positive.
        """
        if tick_minutes <= 0:
            raise ValueError("tick_minutes must be positive")
        self.persistence = persistence
        self.weather_provider = weather_provider
        self.rng = rng if rng is not None else np.random.default_rng()
        self.load_provider = load_provider or LoadProfileProvider(rng=self.rng)
        self.tick_minutes = tick_minutes
        self.deadline_seconds = deadline_seconds
        self.local_timezone = local_timezone
        self.grid_available = grid_available
        self.generated_by = generated_by
        self.site_ids = frozenset(site_ids) if site_ids is not None else None
        self._clock = clock

    def sample_weather(self, instant: datetime) -> tuple[WeatherSample, bool]:
        """
        Weather for the batch and whether the fallback sample was used.
        """
        try:
            return self.weather_provider.sample_at(instant), False
        except ProviderError as exc:
            logger.warning("Weather unavailable at %s, using night-time fallback: %s", instant, exc)
            return fallback_weather_sample(instant), True

    def generate_for_site(
        self,
        site: Site,
        instant: datetime,
        weather: WeatherSample,
        weather_fallback: bool = False,
    ) -> TelemetryReading:
        """
        Produce, store and return the reading of one site for one tick.

        Raises:
            PerSiteError: If anything fails for this site.
        """
        try:
            reading = self._build_reading(site, instant, weather, weather_fallback)
            stored = self.persistence.record_tick(reading)
        except PerSiteError:
            raise
        except Exception as exc:
            raise PerSiteError(site.id, str(exc)) from exc

        logger.info(
            "%s: solar %.1f kW, battery %.0f%%, load %.1f kW, grid %+.1f kW",
            site.name or site.id,
            stored.solar_power_kw,
            stored.battery_charge_level,
            stored.load_power_kw,
            stored.grid_power_kw,
        )
        return stored

    def _build_reading(
        self,
        site: Site,
        instant: datetime,
        weather: WeatherSample,
        weather_fallback: bool,
    ) -> TelemetryReading:
        equipment = self.persistence.read_active_equipment(site.id)
        capacity = aggregate_capacity(site, equipment)

        battery_config = BatteryConfig.for_site(site, capacity.battery_kwh)
        previous = self.persistence.read_latest_reading(site.id)
        state = restore_battery_state(previous, battery_config)

        profile = self.load_provider.profile_for(site)
        load_kw = self.load_provider.power_at(instant.astimezone(self.local_timezone), weather, profile)

        solar_config = solar.SolarConfig.for_site(site, capacity.solar_kw)
        solar_kw = solar.produce(weather, solar_config, instant, rng=self.rng)

        result = advance(
            state,
            battery_config,
            self.tick_minutes,
            solar_kw,
            load_kw,
            weather.temperature,
            grid_available=self.grid_available,
        )
        if result.unserved_kw > 0:
            logger.warning("Site %s: %.2f kW of load unserved (grid unavailable)", site.id, result.unserved_kw)
        if result.curtailed_kw > 0:
            logger.info("Site %s: %.2f kW of PV curtailed (grid unavailable)", site.id, result.curtailed_kw)

        hours = self.tick_minutes / 60.0
        grid_power_kw = result.grid_import_kw - result.grid_export_kw
        derived_battery_kw = load_kw + result.grid_export_kw - solar_kw - result.grid_import_kw

        allocation = distribute(solar_kw, capacity.inverters)
        inverters = inverter_readings(
            allocation,
            capacity.inverters,
            solar_config.inverter_efficiency * 100.0,
            weather.temperature,
            rng=self.rng,
        )

        new_state = result.state
        return TelemetryReading(
            site_id=site.id,
            timestamp=instant,
            battery_voltage=new_state.voltage,
            battery_current=new_state.current,
            battery_charge_level=new_state.soc * 100.0,
            battery_temperature=new_state.temperature,
            battery_state_of_health=new_state.health,
            battery_cycle_count=new_state.cycle_count,
            battery_power_kw=result.battery_power_kw,
            battery_power_derived_kw=derived_battery_kw,
            solar_power_kw=solar_kw,
            solar_energy_kwh=solar_kw * hours,
            solar_efficiency=solar.efficiency(solar_kw, weather, solar_config),
            grid_voltage=GRID_NOMINAL_VOLTAGE + self.rng.uniform(-GRID_VOLTAGE_SPREAD, GRID_VOLTAGE_SPREAD),
            grid_frequency=GRID_NOMINAL_FREQUENCY
            + self.rng.uniform(-GRID_FREQUENCY_SPREAD, GRID_FREQUENCY_SPREAD),
            grid_power_kw=grid_power_kw,
            grid_energy_kwh=grid_power_kw * hours,
            grid_import_kw=result.grid_import_kw,
            grid_export_kw=result.grid_export_kw,
            load_power_kw=load_kw,
            load_energy_kwh=load_kw * hours,
            inverters=inverters,
            metadata={
                "dataQuality": "degraded" if weather_fallback else "good",
                "weatherCondition": weather.condition.value,
                "generatedBy": self.generated_by,
            },
        )

    def select_sites(self) -> List[Site]:
        """Active sites of this batch, narrowed to ``site_ids`` when set."""
        sites = self.persistence.list_active_sites()
        if self.site_ids is None:
            return sites
        selected = [site for site in sites if site.id in self.site_ids]
        missing = sorted(self.site_ids - {site.id for site in selected})
        if missing:
            logger.warning("Requested site(s) not found or not active: %s", missing)
        return selected

    def run_batch(self, instant: datetime | None = None) -> BatchSummary:
        """
        Generate one reading for every active site at ``instant``.

        Args:
            instant: Tick instant; defaults to now floored to the tick boundary.
                Naive values are taken as UTC.

        Returns:
            BatchSummary with processed, failed and skipped counts.
        """
        started = self._clock()
        if instant is None:
            instant = align_to_tick(datetime.now(timezone.utc), self.tick_minutes)
        elif instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)

        sites = self.select_sites()
        summary = BatchSummary(total_sites=len(sites), timestamp=instant)
        if not sites:
            logger.info("No active sites to process at %s", instant.isoformat())
            summary.duration_ms = int((self._clock() - started) * 1000)
            return summary

        logger.info("Generating telemetry for %d site(s) at %s", len(sites), instant.isoformat())
        weather, summary.weather_fallback = self.sample_weather(instant)

        for index, site in enumerate(sites):
            if self.deadline_seconds is not None and self._clock() - started >= self.deadline_seconds:
                summary.skipped = len(sites) - index
                logger.warning("Deadline reached, %d site(s) left for the next tick", summary.skipped)
                break
            try:
                self.generate_for_site(site, instant, weather, summary.weather_fallback)
                summary.sites_processed += 1
            except PerSiteError as exc:
                summary.errors += 1
                logger.error("Telemetry generation failed for %s", exc, exc_info=exc.__cause__ is not None)

        summary.duration_ms = int((self._clock() - started) * 1000)
        logger.info(
            "Completed: %d success, %d errors, %d skipped in %d ms",
            summary.sites_processed,
            summary.errors,
            summary.skipped,
            summary.duration_ms,
        )
        return summary

    def backfill(self, start: datetime, end: datetime) -> List[BatchSummary]:
        """
        Run one batch per tick boundary in ``[start, end]``, oldest first.

        Each batch samples the weather again, so providers covering a wider
        window (the Open-Meteo provider refetches as needed) work unchanged.

        Raises:
            ValueError: If ``end`` precedes ``start``.
        """
        if end < start:
            raise ValueError("backfill end precedes start")
        instant = align_to_tick(start, self.tick_minutes)
        if instant < align_to_tick(start, 1):
            instant += timedelta(minutes=self.tick_minutes)
        end = align_to_tick(end, 1)
        step = timedelta(minutes=self.tick_minutes)

        summaries: List[BatchSummary] = []
        while instant <= end:
            summaries.append(self.run_batch(instant))
            instant += step
        logger.info("Backfilled %d tick(s) up to %s", len(summaries), end.isoformat())
        return summaries
