from __future__ import annotations

import numpy as np
import pytest

from sim_site_telemetry.simulation.battery import (
    BatteryConfig,
    BatteryState,
    BatteryStateMachine,
    HEALTH_FLOOR,
    advance,
    voltage_for_soc,
)
from sim_site_telemetry.simulation.records import Site


@pytest.fixture()
def config() -> BatteryConfig:
    return BatteryConfig(nominal_voltage=500.0, capacity_kwh=50.0)


def test_voltage_is_monotonic_and_bounded(config: BatteryConfig) -> None:
    socs = np.linspace(config.min_soc, config.max_soc, 200)
    voltages = [voltage_for_soc(soc, config) for soc in socs]
    assert all(b >= a for a, b in zip(voltages, voltages[1:]))
    assert min(voltages) >= 0.96 * 500.0
    assert max(voltages) <= 1.04 * 500.0


def test_voltage_clips_soc_outside_unit_interval(config: BatteryConfig) -> None:
    assert voltage_for_soc(-0.5, config) == pytest.approx(480.0)
    assert voltage_for_soc(1.5, config) == pytest.approx(520.0)


def test_default_state(config: BatteryConfig) -> None:
    state = BatteryState.default(config)
    assert state.soc == pytest.approx(0.5)
    assert state.temperature == pytest.approx(25.0)
    assert state.health == pytest.approx(98.0)
    assert state.cycle_count == 0.0
    assert state.voltage == pytest.approx(480.0 + 40.0 * np.sqrt(0.5))


def test_restored_state_is_clamped(config: BatteryConfig) -> None:
    state = BatteryState.restored(config, soc=1.3, temperature=90.0, health=40.0, cycle_count=-2.0)
    assert state.soc == pytest.approx(config.max_soc)
    assert state.temperature == pytest.approx(60.0)
    assert state.health == pytest.approx(HEALTH_FLOOR)
    assert state.cycle_count == 0.0
    assert state.voltage == pytest.approx(voltage_for_soc(config.max_soc, config))


def test_config_for_site_falls_back_to_defaults() -> None:
    site = Site(id=1, battery_capacity_kwh=None, nominal_voltage=0.0)
    config = BatteryConfig.for_site(site)
    assert config.capacity_kwh == pytest.approx(50.0)
    assert config.nominal_voltage == pytest.approx(500.0)

    sized = BatteryConfig.for_site(Site(id=2, battery_capacity_kwh=30.0), capacity_kwh=80.0)
    assert sized.capacity_kwh == pytest.approx(80.0)


def test_config_rejects_inverted_soc_bounds() -> None:
    with pytest.raises(ValueError):
        BatteryConfig(nominal_voltage=500.0, capacity_kwh=50.0, min_soc=0.9, max_soc=0.2)


def test_state_continuity_charge_then_discharge(config: BatteryConfig) -> None:
    """Surplus charges without exporting; the next deficit discharges without importing."""
    start = BatteryState.default(config)

    first = advance(start, config, 5, solar_kw=10.0, load_kw=4.0, ambient_temperature=25.0)
    assert first.battery_power_kw == pytest.approx(-6.0)
    assert first.state.current < 0
    assert first.state.soc > start.soc
    assert first.state.soc == pytest.approx(0.5 + (6.0 * 5 / 60 * 0.95 - 0.5 * 50 * 1e-5 * 5) / 50)
    assert first.grid_export_kw == pytest.approx(0.0)
    assert first.grid_import_kw == pytest.approx(0.0)

    second = advance(first.state, config, 5, solar_kw=0.0, load_kw=6.0, ambient_temperature=25.0)
    assert second.battery_power_kw == pytest.approx(6.0)
    assert second.state.current > 0
    assert second.state.soc < first.state.soc
    assert second.grid_import_kw == pytest.approx(0.0)
    assert second.grid_export_kw == pytest.approx(0.0)


def test_charge_is_limited_by_headroom_and_surplus_exported(config: BatteryConfig) -> None:
    nearly_full = BatteryState.restored(config, soc=0.949)
    result = advance(nearly_full, config, 5, solar_kw=20.0, load_kw=0.0, ambient_temperature=25.0)
    headroom_kw = (0.95 - 0.949) * 50.0 / 5 * 60
    assert -result.battery_power_kw == pytest.approx(headroom_kw)
    assert result.grid_export_kw == pytest.approx(20.0 - headroom_kw)
    assert result.state.soc <= config.max_soc


def test_charge_is_limited_by_c_rate(config: BatteryConfig) -> None:
    result = advance(BatteryState.default(config), config, 5, solar_kw=40.0, load_kw=0.0, ambient_temperature=25.0)
    assert result.battery_power_kw == pytest.approx(-config.max_charge_kw)
    assert result.grid_export_kw == pytest.approx(40.0 - config.max_charge_kw)


def test_empty_battery_imports_whole_deficit(config: BatteryConfig) -> None:
    empty = BatteryState.restored(config, soc=config.min_soc)
    result = advance(empty, config, 5, solar_kw=0.0, load_kw=3.0, ambient_temperature=25.0)
    assert result.battery_power_kw == pytest.approx(0.0)
    assert result.grid_import_kw == pytest.approx(3.0)
    assert result.state.soc == pytest.approx(config.min_soc)


def test_tiny_residual_deficit_is_not_imported(config: BatteryConfig) -> None:
    empty = BatteryState.restored(config, soc=config.min_soc)
    result = advance(empty, config, 5, solar_kw=0.0, load_kw=0.005, ambient_temperature=25.0)
    assert result.grid_import_kw == 0.0
    assert result.unserved_kw == 0.0


def test_grid_unavailable_reports_curtailment_and_unserved_load(config: BatteryConfig) -> None:
    full = BatteryState.restored(config, soc=config.max_soc)
    surplus = advance(full, config, 5, solar_kw=8.0, load_kw=1.0, ambient_temperature=25.0, grid_available=False)
    assert surplus.grid_export_kw == 0.0
    assert surplus.curtailed_kw == pytest.approx(7.0)

    empty = BatteryState.restored(config, soc=config.min_soc)
    deficit = advance(empty, config, 5, solar_kw=0.0, load_kw=4.0, ambient_temperature=25.0, grid_available=False)
    assert deficit.grid_import_kw == 0.0
    assert deficit.unserved_kw == pytest.approx(4.0)


def test_idle_battery_self_discharges(config: BatteryConfig) -> None:
    start = BatteryState.default(config)
    result = advance(start, config, 5, solar_kw=0.0, load_kw=0.0, ambient_temperature=25.0)
    assert result.battery_power_kw == 0.0
    assert result.state.soc == pytest.approx(0.5 - 0.5 * 50 * 1e-5 * 5 / 50)
    assert result.state.soc < start.soc


def test_temperature_relaxes_towards_ambient(config: BatteryConfig) -> None:
    hot = BatteryState.restored(config, temperature=40.0)
    result = advance(hot, config, 60, solar_kw=0.0, load_kw=0.0, ambient_temperature=20.0)
    assert result.state.temperature == pytest.approx(40.0 - 0.1 * 20.0)


def test_random_sequence_respects_invariants(config: BatteryConfig) -> None:
    rng = np.random.default_rng(42)
    state = BatteryState.default(config)
    for _ in range(500):
        result = advance(
            state,
            config,
            float(rng.choice([1, 5])),
            solar_kw=float(rng.uniform(0, 40)),
            load_kw=float(rng.uniform(0, 40)),
            ambient_temperature=float(rng.uniform(-5, 40)),
            grid_available=bool(rng.random() > 0.2),
        )
        assert config.min_soc <= result.state.soc <= config.max_soc
        assert result.state.health <= state.health
        assert result.state.health >= HEALTH_FLOOR
        assert result.state.cycle_count >= state.cycle_count
        assert -10.0 <= result.state.temperature <= 60.0
        state = result.state


def test_advance_rejects_invalid_inputs(config: BatteryConfig) -> None:
    state = BatteryState.default(config)
    with pytest.raises(ValueError):
        advance(state, config, 0, solar_kw=1.0, load_kw=1.0, ambient_temperature=25.0)
    empty_config = BatteryConfig(nominal_voltage=500.0, capacity_kwh=0.0)
    with pytest.raises(ValueError):
        advance(state, empty_config, 5, solar_kw=1.0, load_kw=1.0, ambient_temperature=25.0)


def test_state_machine_keeps_latest_state(config: BatteryConfig) -> None:
    machine = BatteryStateMachine(config)
    first = machine.advance(5, solar_kw=10.0, load_kw=4.0, ambient_temperature=25.0)
    assert machine.state is first.state
    machine.advance(5, solar_kw=0.0, load_kw=6.0, ambient_temperature=25.0)
    assert machine.state.soc < first.state.soc
    assert machine.state.cycle_count > first.state.cycle_count
