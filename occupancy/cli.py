"""CLI entry point for the occupancy sampler and forecaster."""

import argparse
import asyncio
import logging
from datetime import time
from pathlib import Path

from occupancy.config.loader import (
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from occupancy.daemon import OccupancyDaemon, daemon_status, stop_daemon
from occupancy.models.common import weekday_name
from occupancy.models.observation import TimeOfDay
from occupancy.pipeline.cycle_pipeline import FATAL_ERRORS, build_pipeline
from occupancy.predict.knn import predict_range
from occupancy.predict.window import load_window, window_summary
from occupancy.store.client import RemoteStoreError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "ops/configs/default.yaml"
DEFAULT_CLOSING = time(23, 59)
DEFAULT_DASHBOARD_PORT = 8777


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="occupancy",
        description="Venue occupancy sampler and forecaster",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG, help="Config YAML path"
    )

    sub = parser.add_subparsers(dest="command")

    # daemon
    daemon_p = sub.add_parser("daemon", help="Run the sampling loop")
    daemon_mode = daemon_p.add_mutually_exclusive_group()
    daemon_mode.add_argument("--stop", action="store_true", help="Stop a running daemon")
    daemon_mode.add_argument("--status", action="store_true", help="Show daemon status")

    # scan
    sub.add_parser("scan", help="Run one cycle without sleeping")

    # predict
    predict_p = sub.add_parser("predict", help="Forecast a weekday from the cached window")
    predict_p.add_argument("--weekday", type=int, required=True, help="0=Monday .. 6=Sunday")
    predict_p.add_argument("--opening", help="HH:MM, defaults to scheduler.default_opening")
    predict_p.add_argument("--closing", help="HH:MM, defaults to 23:59")

    # window
    sub.add_parser("window", help="Summarize the cached historical window")

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    # dashboard
    dash_p = sub.add_parser("dashboard", help="Serve the read-only dashboard")
    dash_p.add_argument("--host", default="0.0.0.0")
    dash_p.add_argument("--port", type=int, default=DEFAULT_DASHBOARD_PORT)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Controlling an existing daemon doesn't need config
    if args.command == "daemon" and args.stop:
        return stop_daemon()
    if args.command == "daemon" and args.status:
        return daemon_status()

    config = load_config(args.config)

    if args.command == "daemon":
        return OccupancyDaemon(config).start()
    elif args.command == "scan":
        return _cmd_scan(config, args)
    elif args.command == "predict":
        return _cmd_predict(config, args)
    elif args.command == "window":
        return _cmd_window(config, args)
    elif args.command == "config":
        return _cmd_config(config, args)
    elif args.command == "dashboard":
        return _cmd_dashboard(config, args)
    else:
        parser.print_help()
        return 1


def _cmd_scan(config, args) -> int:
    try:
        pipeline = build_pipeline(config)
    except (OSError, ValueError, RemoteStoreError) as e:
        print(f"Error: {e}")
        return 1

    async def _run_once():
        try:
            plan = await pipeline.plan()
            return await pipeline.execute(plan, cycle=1)
        finally:
            await pipeline.close()

    try:
        summary = asyncio.run(_run_once())
    except FATAL_ERRORS:
        logger.exception("Scan aborted")
        return 1

    print(
        f"Occupancy: {summary.occupancy} | In hours: {summary.in_hours} | "
        f"Writes: {summary.writes_attempted - summary.writes_failed}/{summary.writes_attempted} | "
        f"Forecast points: {summary.forecast_points}"
    )
    print(f"Next cycle would run in {summary.delay_seconds:.0f}s")
    for err in summary.errors:
        print(f"  ! {err}")
    return 0 if summary.ok else 1


def _cmd_predict(config, args) -> int:
    if not 0 <= args.weekday <= 6:
        print("Error: --weekday must be in 0..6")
        return 1
    try:
        opening = time.fromisoformat(args.opening) if args.opening else config.scheduler.default_opening
        closing = time.fromisoformat(args.closing) if args.closing else DEFAULT_CLOSING
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    window = load_window(config.ops.state_path)
    if window is None:
        print(f"No cached window at {config.ops.state_path}")
        return 1

    curve = predict_range(
        window.series(args.weekday),
        TimeOfDay.from_time(opening),
        TimeOfDay.from_time(closing),
        config.predictor.frequency_minutes,
        config.predictor.k_neighbours,
    )
    print(f"{weekday_name(args.weekday)} forecast (window for week of {window.for_date}):")
    if not curve:
        print("  no usable history")
        return 0
    for key, occupancy in curve.items():
        print(f"  {key[:2]}:{key[2:]}  {occupancy:3d}%")
    return 0


def _cmd_window(config, args) -> int:
    window = load_window(config.ops.state_path)
    if window is None:
        print(f"No cached window at {config.ops.state_path}")
        return 1
    summary = window_summary(window)
    print(f"Window for week of {summary['for_date']} | last predicted: {summary['last_predicted']}")
    for day in summary["weekdays"]:
        print(f"  {day['weekday']:<9} {day['observations']:5d} observations, weeks {day['weeks']}")
    return 0


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = kv.split("=", 1)
        try:
            new_config = set_config_value(config, key.strip(), value.strip())
        except (KeyError, ValueError) as e:
            print(f"Error: {e}")
            return 1
        save_config(new_config, args.config)
        print(f"Set {key} = {get_config_value(new_config, key.strip())}")
        return 0
    else:
        print("Use: config show | config set key=value")
        return 1


def _cmd_dashboard(config, args) -> int:
    import uvicorn

    from occupancy import dashboard

    dashboard.CONFIG_PATH = Path(args.config)
    uvicorn.run(dashboard.app, host=args.host, port=args.port)
    return 0
