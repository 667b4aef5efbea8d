import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from quietstats.adapters.clock import FixedClock
from quietstats.app_shell.context import ServiceContext
from quietstats.components.aggregation import coerce_timestamp
from quietstats.core.ports.storage import StorageError
from quietstats.rules.loader import load_rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")

RULES_PATH = os.environ.get("QUIETSTATS_RULES_PATH", "rules.yaml")
DATA_DIR = os.environ.get("QUIETSTATS_DATA_DIR", "./data")


def _timestamp(value: str) -> datetime:
    try:
        return coerce_timestamp(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from e


def get_context(args: argparse.Namespace) -> ServiceContext:
    rules_path = Path(args.rules)
    if not rules_path.exists():
        logger.error("Rules file %s not found.", rules_path)
        sys.exit(1)

    rules = load_rules(rules_path)
    # Each CLI run would start from an empty in-memory store
    if rules.storage.backend == "memory":
        logger.error("Storage backend 'memory' holds no data between runs; use sqlite.")
        sys.exit(1)
    clock = FixedClock(args.now) if args.now else None
    return ServiceContext.create(rules, data_dir=Path(args.data_dir), clock=clock)


def handle_rollup(ctx: ServiceContext, args: argparse.Namespace) -> None:
    buckets = ctx.stats_service.rollup(args.site, args.period, args.start, args.end)
    print(f"Wrote {len(buckets)} {args.period} buckets for site {args.site}.")


def handle_timeseries(ctx: ServiceContext, args: argparse.Namespace) -> None:
    params = {
        "startDate": args.start.isoformat() if args.start else None,
        "endDate": args.end.isoformat() if args.end else None,
    }
    result = ctx.stats_service.timeseries(args.site, params, period=args.period)
    print(json.dumps(result.as_dict(), indent=2))


def handle_serve(args: argparse.Namespace) -> None:
    import uvicorn

    os.environ["QUIETSTATS_RULES_PATH"] = str(Path(args.rules).resolve())
    os.environ["QUIETSTATS_DATA_DIR"] = args.data_dir
    uvicorn.run("quietstats.api.main:app", host=args.host, port=args.port)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="quietstats CLI")
    parser.add_argument("--rules", default=RULES_PATH, help="Path to rules.yaml")
    parser.add_argument("--data-dir", default=DATA_DIR, help="Directory for the SQLite database")
    parser.add_argument("--now", type=_timestamp, help="Pin the clock (ISO-8601)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    periods = ("minute", "hour", "day", "month")

    # rollup
    rollup_parser = subparsers.add_parser("rollup", help="Recompute stats buckets")
    rollup_parser.add_argument("--site", required=True, help="Site id")
    rollup_parser.add_argument("--period", choices=periods, default="day")
    rollup_parser.add_argument("--start", type=_timestamp, required=True)
    rollup_parser.add_argument("--end", type=_timestamp, required=True)

    # timeseries
    ts_parser = subparsers.add_parser("timeseries", help="Print a gap-filled time series")
    ts_parser.add_argument("--site", required=True, help="Site id")
    ts_parser.add_argument("--period", choices=periods)
    ts_parser.add_argument("--start", type=_timestamp)
    ts_parser.add_argument("--end", type=_timestamp)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    if args.command == "serve":
        handle_serve(args)
        return

    ctx = get_context(args)
    try:
        if args.command == "rollup":
            handle_rollup(ctx, args)
        elif args.command == "timeseries":
            handle_timeseries(ctx, args)
    except StorageError as e:
        logger.error("Storage error: %s", e)
        sys.exit(2)


if __name__ == "__main__":
    main()
