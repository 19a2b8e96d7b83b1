from __future__ import annotations

import argparse
import json
import signal
import sys
from datetime import datetime, timezone
from typing import Any

from kubemeter_core.config import Config, get_config
from kubemeter_core.logging import configure_logging, get_logger

SERVICE_NAME = "kubemeter"

logger = get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _parse_time(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _runtime(config: Config):
    # Imported lazily so argument errors do not require cluster credentials.
    from k8s_adapter import MeteringRuntime

    return MeteringRuntime.from_config(config)


def cmd_run(args: argparse.Namespace) -> int:
    config = get_config()
    configure_logging(SERVICE_NAME, env=config.env, log_level=config.log_level)
    runtime = _runtime(config)
    scheduler = runtime.scheduler
    stop = scheduler.stop_event

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("Shutdown requested", extra={"status": signal.Signals(signum).name})
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    logger.info("Metering started")
    stop.wait()
    scheduler.stop()
    logger.info("Metering stopped")
    return 0


def cmd_once(args: argparse.Namespace) -> int:
    config = get_config()
    configure_logging(SERVICE_NAME, env=config.env, log_level=config.log_level)
    runtime = _runtime(config)
    if args.tenant:
        samples = runtime.aggregator.meter(args.tenant)
        _print_json(
            {
                "tenant": args.tenant,
                "samples": [
                    {
                        "entity_type": sample.entity_type,
                        "entity_name": sample.entity_name,
                        "used": dict(sample.used),
                    }
                    for sample in samples
                ],
            }
        )
        return 0
    result = runtime.scheduler.run_minute_tick()
    if result is None:
        return 1
    _print_json(
        {
            "succeeded": len(result.succeeded),
            "failed": result.failed,
            "skipped": result.skipped,
        }
    )
    return 0 if not result.failed else 1


def cmd_traffic(args: argparse.Namespace) -> int:
    if args.end <= args.start:
        raise ValueError("--end must be after --start")
    config = get_config()
    configure_logging(SERVICE_NAME, env=config.env, log_level=config.log_level)
    runtime = _runtime(config)
    if runtime.traffic is None:
        raise ValueError("No traffic backend configured (TRAFFIC_BACKEND)")
    written = runtime.traffic.run(args.start, args.end)
    _print_json({"window_start": args.start, "window_end": args.end, "written": written})
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    config = get_config()
    configure_logging(SERVICE_NAME, env=config.env, log_level=config.log_level)
    from kubemeter_core.retention import RetentionPolicy
    from kubemeter_core.stores import get_store_bundle

    if args.days is not None:
        days = args.days
    else:
        days = RetentionPolicy.from_config(config).delete_after_days
    deleted = get_store_bundle(config).monitor.delete_samples_older_than(days)
    _print_json({"retention_days": days, "deleted": deleted})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kubemeter")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the metering loops")
    run_parser.set_defaults(func=cmd_run)

    once_parser = subparsers.add_parser("once", help="Run a single metering pass")
    once_parser.add_argument("--tenant", help="Only meter this namespace")
    once_parser.set_defaults(func=cmd_once)

    traffic_parser = subparsers.add_parser(
        "traffic", help="Meter traffic for an explicit window"
    )
    traffic_parser.add_argument("--start", type=_parse_time, required=True)
    traffic_parser.add_argument("--end", type=_parse_time, required=True)
    traffic_parser.set_defaults(func=cmd_traffic)

    prune_parser = subparsers.add_parser("prune", help="Delete expired samples")
    prune_parser.add_argument("--days", type=int)
    prune_parser.set_defaults(func=cmd_prune)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
