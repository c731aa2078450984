"""
Battery state machine for per-tick telemetry synthesis.

Contains :class:`BatteryConfig` describing a site's storage bank,
:class:`BatteryState` holding the electrical, thermal and ageing state, and
the pure :func:`advance` function that moves a state forward by one time
step. :class:`BatteryStateMachine` is a thin convenience wrapper binding a
config and a state together.

The state is never kept alive between ticks: the orchestrator rebuilds it
from the last persisted reading, calls :func:`advance` once and stores the
result as a new reading.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional

from .records import Site

DEFAULT_NOMINAL_VOLTAGE = 500.0
DEFAULT_CAPACITY_KWH = 50.0

DEFAULT_SOC = 0.50
DEFAULT_TEMPERATURE = 25.0
DEFAULT_HEALTH = 98.0

HEALTH_FLOOR = 70.0
HEALTH_CEILING = 100.0
TEMPERATURE_MIN = -10.0
TEMPERATURE_MAX = 60.0

# Deficits at or below this are considered served (avoids 1 W grid imports).
UNMET_DEFICIT_TOLERANCE_KW = 0.01


@dataclass(frozen=True)
class BatteryConfig:
    """
    Static parameters of a site's battery bank.

    Attributes:
        nominal_voltage: Nominal DC bus voltage (V). The voltage curve spans
            96 % to 104 % of this value.
        capacity_kwh: Aggregated usable capacity of all active battery units (kWh).
        min_soc: Lower SOC bound; the bank never discharges below it.
        max_soc: Upper SOC bound; the bank never charges above it.
        max_charge_rate_c: Charge power limit as a C-rate (0.5 = half the
            capacity per hour).
        max_discharge_rate_c: Discharge power limit as a C-rate.
        charging_efficiency: Fraction of charging energy actually stored.
        discharging_efficiency: Fraction of removed energy delivered to the load.
        self_discharge_rate: Fraction of stored energy lost per minute
            (0.00001 is roughly 1.4 % per day).
        temperature_optimal: Cell temperature with no thermal ageing stress (°C).

    Example:
        ```python
        config = BatteryConfig(nominal_voltage=500.0, capacity_kwh=50.0)
        config.max_charge_kw     # 25.0
        config.max_discharge_kw  # 50.0
        ```
    """
    nominal_voltage: float
    capacity_kwh: float
    min_soc: float = 0.20
    max_soc: float = 0.95
    max_charge_rate_c: float = 0.5
    max_discharge_rate_c: float = 1.0
    charging_efficiency: float = 0.95
    discharging_efficiency: float = 0.95
    self_discharge_rate: float = 0.00001
    temperature_optimal: float = 25.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_soc < self.max_soc <= 1.0:
            raise ValueError("SOC bounds must satisfy 0 <= min_soc < max_soc <= 1")
        if self.nominal_voltage <= 0.0:
            raise ValueError("nominal_voltage must be positive")
        if not 0.0 < self.charging_efficiency <= 1.0:
            raise ValueError("charging_efficiency must be within (0, 1]")
        if not 0.0 < self.discharging_efficiency <= 1.0:
            raise ValueError("discharging_efficiency must be within (0, 1]")

    @classmethod
    def for_site(cls, site: Site, capacity_kwh: Optional[float] = None) -> "BatteryConfig":
        """
        Build the configuration of a site, optionally overriding its capacity.

        Args:
            site: Site providing nominal voltage and nameplate capacity.
            capacity_kwh: Aggregated capacity of active battery equipment.
                Falls back to the site's nameplate value, then to 50 kWh.
        """
        capacity = capacity_kwh or site.battery_capacity_kwh or DEFAULT_CAPACITY_KWH
        return cls(
            nominal_voltage=site.nominal_voltage or DEFAULT_NOMINAL_VOLTAGE,
            capacity_kwh=capacity,
        )

    @property
    def max_charge_kw(self) -> float:
        return self.capacity_kwh * self.max_charge_rate_c

    @property
    def max_discharge_kw(self) -> float:
        return self.capacity_kwh * self.max_discharge_rate_c

    @property
    def min_voltage(self) -> float:
        return self.nominal_voltage * 0.96

    @property
    def max_voltage(self) -> float:
        return self.nominal_voltage * 1.04

    def clamp_soc(self, soc: float) -> float:
        return max(self.min_soc, min(self.max_soc, soc))


def voltage_for_soc(soc: float, config: BatteryConfig) -> float:
    """
    Terminal voltage for a state of charge.

    Uses a square-root curve between 96 % and 104 % of nominal voltage,
    a coarse stand-in for the flat-then-steep shape of Li-ion cells.
    The curve is only evaluated forward; SOC is never inferred from voltage.

    Args:
        soc: State of charge (0-1). Values outside [0, 1] are clipped so the
            square root never sees a negative argument.
        config: Battery configuration providing the nominal voltage.

    Returns:
        Voltage in volts, within [0.96, 1.04] x nominal.
    """
    soc = max(0.0, min(1.0, soc))
    return config.min_voltage + (config.max_voltage - config.min_voltage) * math.sqrt(soc)


@dataclass(frozen=True)
class BatteryState:
    """
    Electrical, thermal and ageing state of a battery bank.

    Attributes:
        soc: State of charge (0-1), always within the config's SOC bounds.
        voltage: Terminal voltage (V), derived from ``soc``.
        current: Signed current (A); negative while charging, positive while
            discharging.
        temperature: Pack temperature (°C).
        health: State of health (%), between 70 and 100, never increasing.
        cycle_count: Cumulative equivalent full cycles, never decreasing.
    """
    soc: float
    voltage: float
    current: float
    temperature: float
    health: float
    cycle_count: float

    @classmethod
    def default(cls, config: BatteryConfig) -> "BatteryState":
        """State used when a site has no previous reading."""
        return cls.restored(config)

    @classmethod
    def restored(
        cls,
        config: BatteryConfig,
        *,
        soc: float = DEFAULT_SOC,
        current: float = 0.0,
        temperature: float = DEFAULT_TEMPERATURE,
        health: float = DEFAULT_HEALTH,
        cycle_count: float = 0.0,
    ) -> "BatteryState":
        """
        Rebuild a state from persisted values.

        SOC is clamped into the configured bounds, health into [70, 100],
        temperature into the thermal limits, and voltage is recomputed from
        SOC instead of trusting the stored value.
        """
        soc = config.clamp_soc(soc)
        return cls(
            soc=soc,
            voltage=voltage_for_soc(soc, config),
            current=current,
            temperature=max(TEMPERATURE_MIN, min(TEMPERATURE_MAX, temperature)),
            health=max(HEALTH_FLOOR, min(HEALTH_CEILING, health)),
            cycle_count=max(0.0, cycle_count),
        )

    @property
    def power_kw(self) -> float:
        """Signed power implied by current and voltage (negative while charging)."""
        return self.current * self.voltage / 1000.0


@dataclass(frozen=True)
class AdvanceResult:
    """
    Outcome of one :func:`advance` step.

    Attributes:
        state: Battery state at the end of the step.
        battery_power_kw: Signed battery power (negative = charging).
        grid_import_kw: Power drawn from the grid to cover the remaining deficit.
        grid_export_kw: Surplus pushed to the grid.
        curtailed_kw: Surplus lost because the grid was unavailable.
        unserved_kw: Deficit left uncovered because the grid was unavailable.
        energy_change_kwh: Efficiency-adjusted energy moved in or out of the
            cells (negative = stored).
    """
    state: BatteryState
    battery_power_kw: float
    grid_import_kw: float
    grid_export_kw: float
    curtailed_kw: float = 0.0
    unserved_kw: float = 0.0
    energy_change_kwh: float = 0.0


def _charge_power_kw(
    state: BatteryState,
    config: BatteryConfig,
    available_kw: float,
    duration_minutes: float,
) -> float:
    energy_to_max_kwh = (config.max_soc - state.soc) * config.capacity_kwh
    power_to_max_kw = energy_to_max_kwh / duration_minutes * 60.0
    return max(0.0, min(available_kw, config.max_charge_kw, power_to_max_kw))


def _discharge_power_kw(
    state: BatteryState,
    config: BatteryConfig,
    required_kw: float,
    duration_minutes: float,
) -> float:
    energy_above_min_kwh = (state.soc - config.min_soc) * config.capacity_kwh
    power_to_min_kw = energy_above_min_kwh / duration_minutes * 60.0
    return max(0.0, min(required_kw, config.max_discharge_kw, power_to_min_kw))


def _next_temperature(
    temperature: float,
    battery_power_kw: float,
    ambient_temperature: float,
    duration_minutes: float,
) -> float:
    # 5 % of the throughput becomes heat; half of it warms the pack.
    heating_rate = abs(battery_power_kw) * 0.05 * 0.5
    cooling_rate = (temperature - ambient_temperature) * 0.1
    updated = temperature + (heating_rate - cooling_rate) * (duration_minutes / 60.0)
    return max(TEMPERATURE_MIN, min(TEMPERATURE_MAX, updated))


def _next_health(
    health: float,
    config: BatteryConfig,
    battery_power_kw: float,
    temperature: float,
    soc: float,
    duration_minutes: float,
) -> float:
    cycle_stress = abs(battery_power_kw) / config.capacity_kwh
    temperature_stress = abs(temperature - config.temperature_optimal) / 20.0
    soc_stress = 0.5 if soc < 0.3 or soc > 0.9 else 0.1
    degradation_rate = 0.00001 * (1.0 + cycle_stress + temperature_stress + soc_stress)
    return max(HEALTH_FLOOR, health - degradation_rate * duration_minutes)


def advance(
    state: BatteryState,
    config: BatteryConfig,
    duration_minutes: float,
    solar_kw: float,
    load_kw: float,
    ambient_temperature: float,
    grid_available: bool = True,
) -> AdvanceResult:
    """
    Advance a battery state by one time step.

    Energy balance: solar + grid import + battery discharge = load + battery
    charge + grid export. Surplus PV charges the bank up to the C-rate limit
    and the headroom to ``max_soc``; any remainder is exported (or curtailed
    when the grid is down). A deficit is discharged down to ``min_soc`` within
    the discharge C-rate; any remainder is imported (or left unserved).

    Args:
        state: State at the start of the step.
        config: Battery configuration of the site.
        duration_minutes: Step length in minutes (> 0).
        solar_kw: Available PV power (kW).
        load_kw: Site consumption (kW).
        ambient_temperature: Outdoor temperature used by the thermal model (°C).
        grid_available: Whether the site can exchange power with the grid.

    Returns:
        AdvanceResult with the new state and the grid exchange.

    Raises:
        ValueError: If ``duration_minutes`` or the configured capacity is not positive.

    Example:
        ```python
        config = BatteryConfig(nominal_voltage=500.0, capacity_kwh=50.0)
        start = BatteryState.default(config)
        result = advance(start, config, 5, solar_kw=10.0, load_kw=4.0, ambient_temperature=22.0)
        result.state.soc > start.soc   # True, 6 kW charged for 5 minutes
        result.grid_export_kw          # 0.0
        ```

    Notes:
        - Charging energy is scaled by the charging efficiency, discharged
          energy is divided by the discharging efficiency.
        - Self-discharge always removes energy, proportional to the stored
          energy and the step length.
        - Health loss grows with power intensity, temperature deviation from
          the optimum and operation near the SOC extremes.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if config.capacity_kwh <= 0:
        raise ValueError("capacity_kwh must be positive")

    net_power_kw = solar_kw - load_kw
    grid_import_kw = 0.0
    grid_export_kw = 0.0
    curtailed_kw = 0.0
    unserved_kw = 0.0

    if net_power_kw > 0:
        charge_kw = _charge_power_kw(state, config, net_power_kw, duration_minutes)
        battery_power_kw = -charge_kw
        excess_kw = net_power_kw - charge_kw
        if excess_kw > 0:
            if grid_available:
                grid_export_kw = excess_kw
            else:
                curtailed_kw = excess_kw
    else:
        deficit_kw = -net_power_kw
        discharge_kw = _discharge_power_kw(state, config, deficit_kw, duration_minutes)
        battery_power_kw = discharge_kw
        remaining_kw = deficit_kw - discharge_kw
        if remaining_kw > UNMET_DEFICIT_TOLERANCE_KW:
            if grid_available:
                grid_import_kw = remaining_kw
            else:
                unserved_kw = remaining_kw

    duration_hours = duration_minutes / 60.0
    energy_change_kwh = battery_power_kw * duration_hours
    if battery_power_kw < 0:
        energy_change_kwh *= config.charging_efficiency
    elif battery_power_kw > 0:
        energy_change_kwh /= config.discharging_efficiency

    self_discharge_kwh = (
        state.soc * config.capacity_kwh * config.self_discharge_rate * duration_minutes
    )
    soc = config.clamp_soc(
        state.soc - (energy_change_kwh + self_discharge_kwh) / config.capacity_kwh
    )

    voltage = voltage_for_soc(soc, config)
    current = abs(battery_power_kw) * 1000.0 / voltage
    if battery_power_kw < 0:
        current = -current

    temperature = _next_temperature(
        state.temperature, battery_power_kw, ambient_temperature, duration_minutes
    )
    health = _next_health(
        state.health, config, battery_power_kw, temperature, soc, duration_minutes
    )
    cycle_count = state.cycle_count + abs(energy_change_kwh) / config.capacity_kwh

    new_state = replace(
        state,
        soc=soc,
        voltage=voltage,
        current=current,
        temperature=temperature,
        health=health,
        cycle_count=cycle_count,
    )
    return AdvanceResult(
        state=new_state,
        battery_power_kw=battery_power_kw,
        grid_import_kw=grid_import_kw,
        grid_export_kw=grid_export_kw,
        curtailed_kw=curtailed_kw,
        unserved_kw=unserved_kw,
        energy_change_kwh=energy_change_kwh,
    )


class BatteryStateMachine:
    """
    Binds a :class:`BatteryConfig` to a current :class:`BatteryState`.

    Each call to :meth:`advance` delegates to the pure :func:`advance`
    function and keeps the returned state, which makes multi-step scenarios
    in tests and backfills read naturally:

        ```python
        machine = BatteryStateMachine(BatteryConfig(500.0, 50.0))
        machine.advance(5, solar_kw=10.0, load_kw=4.0, ambient_temperature=20.0)
        machine.advance(5, solar_kw=0.0, load_kw=6.0, ambient_temperature=20.0)
        machine.state.soc
        ```
    """

    def __init__(self, config: BatteryConfig, state: BatteryState | None = None) -> None:
        self.config = config
        self.state = state if state is not None else BatteryState.default(config)

    def advance(
        self,
        duration_minutes: float,
        solar_kw: float,
        load_kw: float,
        ambient_temperature: float,
        grid_available: bool = True,
    ) -> AdvanceResult:
        result = advance(
            self.state,
            self.config,
            duration_minutes,
            solar_kw,
            load_kw,
            ambient_temperature,
            grid_available,
        )
        self.state = result.state
        return result
