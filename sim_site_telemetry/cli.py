from __future__ import annotations

import argparse
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence
from zoneinfo import ZoneInfo

import numpy as np

from . import config
from .analytics import hourly_rollups, site_connectivity
from .db.session import init_db
from .exceptions import ConfigurationError
from .orchestrator import TelemetryOrchestrator, align_to_tick
from .persistence import PersistenceService
from .simulation.records import EquipmentStatus, EquipmentType, SiteStatus, WeatherCondition, WeatherSample
from .simulation.weather import (
    OPEN_METEO_ARCHIVE_URL,
    OPEN_METEO_FORECAST_URL,
    OpenMeteoWeatherProvider,
    StaticWeatherProvider,
    WeatherProvider,
)

logger = logging.getLogger(__name__)


def _parse_datetime(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO datetime: {raw!r}") from exc
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def build_argument_parser() -> argparse.ArgumentParser:
    """
    Build the CLI argument parser used by entry points.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(description="Site telemetry simulator CLI")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command")

    def add_simulation_options(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--seed", type=int, default=None, help="Seed for every noise term")
        cmd.add_argument(
            "--tick-minutes",
            type=int,
            choices=config.ALLOWED_TICK_MINUTES,
            default=None,
            help="Tick length (default: TELEMETRY_TICK_MINUTES or 5)",
        )
        cmd.add_argument(
            "--weather-file",
            default=None,
            help="JSON weather sample used for every tick instead of Open-Meteo",
        )
        cmd.add_argument(
            "--site-id",
            type=int,
            action="append",
            dest="site_ids",
            default=None,
            help="Only simulate this active site (repeatable, default: all)",
        )

    tick = sub.add_parser("tick", help="Generate one reading for every active site")
    add_simulation_options(tick)
    tick.add_argument("--at", type=_parse_datetime, default=None, help="Tick instant (ISO, default now)")

    run = sub.add_parser("run", help="Generate readings on every tick boundary until interrupted")
    add_simulation_options(run)
    run.add_argument("--iterations", type=int, default=None, help="Stop after this many ticks")

    backfill = sub.add_parser("backfill", help="Generate readings for every tick of a past window")
    add_simulation_options(backfill)
    window = backfill.add_mutually_exclusive_group(required=True)
    window.add_argument("--hours", type=float, help="Window ending now")
    window.add_argument("--start", type=_parse_datetime, help="Window start (ISO)")
    backfill.add_argument("--end", type=_parse_datetime, default=None, help="Window end (ISO, default now)")
    backfill.add_argument(
        "--archive",
        action="store_true",
        help="Use the Open-Meteo archive API (windows older than a few days)",
    )

    # Site management
    site = sub.add_parser("site", help="Manage sites")
    site_sub = site.add_subparsers(dest="site_command")

    site_list = site_sub.add_parser("list", help="List sites")
    site_list.add_argument("--status", choices=[s.value for s in SiteStatus], default=None)

    site_add = site_sub.add_parser("add", help="Create or update a site (by name)")
    site_add.add_argument("--name", required=True)
    site_add.add_argument("--battery-capacity-kwh", type=float, dest="battery_capacity_kwh")
    site_add.add_argument("--solar-capacity-kw", type=float, dest="solar_capacity_kw")
    site_add.add_argument("--nominal-voltage", type=float, dest="nominal_voltage", default=None)
    site_add.add_argument("--daily-consumption-kwh", type=float, dest="daily_consumption_kwh", default=None)
    site_add.add_argument("--status", choices=[s.value for s in SiteStatus], default=None)

    equipment = sub.add_parser("equipment", help="Manage site equipment")
    equipment_sub = equipment.add_subparsers(dest="equipment_command")

    eq_add = equipment_sub.add_parser("add", help="Register a unit at a site")
    eq_add.add_argument("--site-id", type=int, required=True, dest="site_id")
    eq_add.add_argument("--type", required=True, choices=[t.value for t in EquipmentType])
    eq_add.add_argument("--name")
    eq_add.add_argument("--manufacturer")
    eq_add.add_argument("--model")
    eq_add.add_argument("--capacity", type=float, help="kWh for batteries, kW otherwise")
    eq_add.add_argument(
        "--status",
        choices=[s.value for s in EquipmentStatus],
        default=EquipmentStatus.OPERATIONAL.value,
    )

    readings = sub.add_parser("readings", help="Show the latest readings of a site")
    readings.add_argument("--site-id", type=int, required=True, dest="site_id")
    readings.add_argument("--limit", type=int, default=10)

    status = sub.add_parser("status", help="Show connectivity of every site")
    status.add_argument("--site-id", type=int, dest="site_id", default=None)

    rollup = sub.add_parser("rollup", help="Hourly aggregates of a site's readings")
    rollup.add_argument("--site-id", type=int, required=True, dest="site_id")
    rollup.add_argument("--hours", type=float, default=24.0, help="Window ending now")

    return parser


def _load_json_file(path: str | Path) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        raise SystemExit(f"File not found: {file_path}")
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON file ({file_path}): {exc}") from exc


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _rounded(value: float | None, digits: int) -> float | None:
    return None if value is None else round(value, digits)


def _weather_sample_from_file(path: str) -> WeatherSample:
    """
    Read a fixed weather sample.

    Required keys: temperature, cloud_cover, solar_irradiance, sunrise and
    sunset (ISO datetimes). Optional: humidity, wind_speed, precipitation,
    uv_index, condition.
    """
    data = _load_json_file(path)
    try:
        return WeatherSample(
            timestamp=_parse_datetime(data.get("timestamp") or data["sunrise"]),
            temperature=float(data["temperature"]),
            cloud_cover=float(data["cloud_cover"]),
            solar_irradiance=max(0.0, float(data["solar_irradiance"])),
            sunrise=_parse_datetime(data["sunrise"]),
            sunset=_parse_datetime(data["sunset"]),
            condition=WeatherCondition(data.get("condition", WeatherCondition.CLEAR.value)),
            humidity=float(data.get("humidity", 0.0)),
            wind_speed=float(data.get("wind_speed", 0.0)),
            precipitation=float(data.get("precipitation", 0.0)),
            uv_index=float(data.get("uv_index", 0.0)),
        )
    except (KeyError, ValueError, argparse.ArgumentTypeError) as exc:
        raise SystemExit(f"Invalid weather file ({path}): {exc}") from exc


def _build_weather_provider(args: argparse.Namespace) -> WeatherProvider:
    if getattr(args, "weather_file", None):
        return StaticWeatherProvider(_weather_sample_from_file(args.weather_file))
    base_url = OPEN_METEO_ARCHIVE_URL if getattr(args, "archive", False) else OPEN_METEO_FORECAST_URL
    return OpenMeteoWeatherProvider(config.get_weather_location(), base_url=base_url)


def _simulation_settings(args: argparse.Namespace) -> tuple[int, ZoneInfo]:
    """Tick length and local zone; raises ConfigurationError before anything is opened."""
    tick_minutes = args.tick_minutes or config.get_tick_minutes()
    return tick_minutes, ZoneInfo(config.get_weather_location().timezone)


def _build_orchestrator(
    args: argparse.Namespace,
    persistence: PersistenceService,
    weather_provider: WeatherProvider,
    tick_minutes: int,
    local_timezone: ZoneInfo,
    generated_by: str,
) -> TelemetryOrchestrator:
    return TelemetryOrchestrator(
        persistence,
        weather_provider,
        tick_minutes=tick_minutes,
        rng=np.random.default_rng(args.seed),
        local_timezone=local_timezone,
        generated_by=generated_by,
        site_ids=args.site_ids,
    )


def _run_interval(orchestrator: TelemetryOrchestrator, iterations: int | None) -> list[dict[str, Any]]:
    """
    Tick on every boundary. Ticks never overlap: the next one is scheduled
    only after the previous batch returned.
    """
    step = timedelta(minutes=orchestrator.tick_minutes)
    summaries: list[dict[str, Any]] = []
    try:
        while iterations is None or len(summaries) < iterations:
            instant = align_to_tick(datetime.now(timezone.utc), orchestrator.tick_minutes)
            summaries.append(orchestrator.run_batch(instant).as_dict())
            if iterations is not None and len(summaries) >= iterations:
                break
            wait = (instant + step - datetime.now(timezone.utc)).total_seconds()
            if wait > 0:
                logger.info("Next tick in %.0f s", wait)
                time.sleep(wait)
    except KeyboardInterrupt:
        logger.info("Interval runner stopped after %d tick(s)", len(summaries))
    return summaries


def main(argv: Sequence[str] | None = None, persistence: PersistenceService | None = None) -> None:
    """
    CLI entry point for telemetry generation and site management.

    Args:
        argv: Optional sequence of CLI args (defaults to sys.argv).
        persistence: Optional PersistenceService; the configured database is
            used when omitted.
    """
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    config.configure_logging(args.log_level)
    if persistence is None:
        init_db()
        persistence = PersistenceService()

    if args.command in {"tick", "run", "backfill"}:
        try:
            tick_minutes, local_timezone = _simulation_settings(args)
            weather_provider = _build_weather_provider(args)
        except ConfigurationError as exc:
            raise SystemExit(f"Configuration error: {exc}") from exc
        try:
            orchestrator = _build_orchestrator(
                args,
                persistence,
                weather_provider,
                tick_minutes,
                local_timezone,
                generated_by=f"cli-{args.command}",
            )
            if args.command == "tick":
                instant = args.at or align_to_tick(datetime.now(timezone.utc), orchestrator.tick_minutes)
                _print_json(orchestrator.run_batch(instant).as_dict())
            elif args.command == "run":
                _print_json(_run_interval(orchestrator, args.iterations))
            else:
                end = args.end or datetime.now(timezone.utc)
                start = args.start or end - timedelta(hours=args.hours)
                summaries = orchestrator.backfill(start, end)
                _print_json(
                    {
                        "ticks": len(summaries),
                        "sites_processed": sum(s.sites_processed for s in summaries),
                        "errors": sum(s.errors for s in summaries),
                        "weather_fallbacks": sum(1 for s in summaries if s.weather_fallback),
                    }
                )
        finally:
            weather_provider.close()
        return

    if args.command == "site":
        if not args.site_command:
            parser.error("Specify a site subcommand (list/add).")

        if args.site_command == "list":
            _print_json(
                [
                    {
                        "id": site.id,
                        "name": site.name,
                        "status": site.status.value,
                        "battery_capacity_kwh": site.battery_capacity_kwh,
                        "solar_capacity_kw": site.solar_capacity_kw,
                        "last_seen_at": site.last_seen_at,
                    }
                    for site in persistence.list_sites(args.status)
                ]
            )
            return

        if args.site_command == "add":
            payload = {
                "name": args.name,
                "battery_capacity_kwh": args.battery_capacity_kwh,
                "solar_capacity_kw": args.solar_capacity_kw,
                "nominal_voltage": args.nominal_voltage,
                "daily_consumption_kwh": args.daily_consumption_kwh,
                "status": args.status,
            }
            record = persistence.upsert_site(payload)
            print(f"Site '{record.name}' saved with ID {record.id}.")
            return

        parser.error(f"Unknown site subcommand: {args.site_command}")

    if args.command == "equipment":
        if args.equipment_command != "add":
            parser.error("Specify an equipment subcommand (add).")
        payload = {
            "type": args.type,
            "name": args.name,
            "manufacturer": args.manufacturer,
            "model": args.model,
            "capacity": args.capacity,
            "status": args.status,
        }
        try:
            record = persistence.add_equipment(args.site_id, payload)
        except LookupError as exc:
            raise SystemExit(str(exc)) from exc
        print(f"Equipment '{record.name}' ({record.type.value}) saved with ID {record.id}.")
        return

    if args.command == "readings":
        _print_json(
            [
                {
                    "timestamp": reading.timestamp,
                    "soc_pct": _rounded(reading.battery_charge_level, 2),
                    "solar_kw": _rounded(reading.solar_power_kw, 3),
                    "load_kw": _rounded(reading.load_power_kw, 3),
                    "grid_kw": _rounded(reading.grid_power_kw, 3),
                    "battery_kw": _rounded(reading.battery_power_kw, 3),
                    "inverters": len(reading.inverters),
                    "weather": reading.metadata.get("weatherCondition"),
                }
                for reading in persistence.list_readings(args.site_id, limit=args.limit)
            ]
        )
        return

    if args.command == "status":
        sites = persistence.list_sites()
        if args.site_id is not None:
            sites = [site for site in sites if site.id == args.site_id]
        now = datetime.now(timezone.utc)
        _print_json(
            [
                {"id": site.id, "name": site.name, **site_connectivity(site.last_seen_at, now).as_dict()}
                for site in sites
            ]
        )
        return

    if args.command == "rollup":
        since = datetime.now(timezone.utc) - timedelta(hours=args.hours)
        readings = persistence.list_readings(args.site_id, limit=100_000, since=since)
        rollups = hourly_rollups(readings).round(3)
        _print_json(rollups.reset_index().to_dict(orient="records"))
        return

    parser.error(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
