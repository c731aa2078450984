"""
Allocation of a site's PV power across its inverters.

:func:`distribute` splits the aggregate power in proportion to rated
capacity over the units that are neither failed nor offline, and
:func:`inverter_readings` turns that allocation into the ordered
per-inverter entries stored with each telemetry reading. Any number of
inverters is supported; a site without active inverters gets an empty list.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping

import numpy as np

from .records import Equipment, InverterReading

# Inverters run warmer than ambient.
INVERTER_TEMPERATURE_OFFSET_C = 15.0


def active_inverters(inverters: Iterable[Equipment]) -> List[Equipment]:
    """Inverters eligible for power allocation (not failed, not offline)."""
    return [inv for inv in inverters if inv.is_active]


def distribute(total_power_kw: float, inverters: Iterable[Equipment]) -> Dict[int, float]:
    """
    Split an aggregate power figure across inverters by rated capacity.

    Args:
        total_power_kw: Power to allocate (kW).
        inverters: Inverter units; failed and offline units are skipped.

    Returns:
        Mapping inverter id -> allocated kW. Empty when no unit is active.
        Units without a positive rated capacity count as capacity 1.
    """
    active = active_inverters(inverters)
    if not active:
        return {}

    capacities = {inv.id: (inv.capacity if inv.capacity and inv.capacity > 0 else 1.0) for inv in active}
    total_capacity = sum(capacities.values())
    return {
        inverter_id: total_power_kw * capacity / total_capacity
        for inverter_id, capacity in capacities.items()
    }


def inverter_readings(
    allocation: Mapping[int, float],
    inverters: Iterable[Equipment],
    efficiency_pct: float,
    ambient_temperature: float,
    rng: np.random.Generator | None = None,
) -> tuple[InverterReading, ...]:
    """
    Ordered per-inverter readings for the units present in ``allocation``.

    Order follows the ``inverters`` sequence. The first unit sits at
    ambient + 15 °C; every further unit gets an extra ±1 °C of jitter.
    """
    rng = rng if rng is not None else np.random.default_rng()
    base_temperature = ambient_temperature + INVERTER_TEMPERATURE_OFFSET_C
    readings = []
    for inverter in inverters:
        if inverter.id not in allocation:
            continue
        temperature = base_temperature
        if readings:
            temperature += rng.uniform(-1.0, 1.0)
        readings.append(
            InverterReading(
                inverter_id=inverter.id,
                power_kw=allocation[inverter.id],
                efficiency=efficiency_pct,
                temperature=temperature,
            )
        )
    return tuple(readings)
