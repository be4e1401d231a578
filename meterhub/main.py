import argparse
import asyncio
import json
import logging
from typing import List, Optional

from meterhub.app import MeterHubApp, configure_logging
from meterhub.config import HubConfig
from meterhub.config_manager import ConfigurationManager, resolve_config_path


def load_config(cli_path: Optional[str]) -> HubConfig:
    cfg = ConfigurationManager(str(resolve_config_path(cli_path))).load_config()
    configure_logging(cfg.logging)
    return cfg


async def amain(args: argparse.Namespace) -> int:
    log = logging.getLogger(__name__)
    cfg = load_config(args.config)
    app = MeterHubApp(cfg)

    if args.command == "collect-once":
        stats = await app.run_once()
        print(json.dumps(stats, indent=2, default=str))
        return 0

    if args.command == "aggregate":
        request = {
            "meter_element_id": args.meter_element_id,
            "tenant_id": args.tenant_id,
            "selected_columns": [c.strip() for c in args.columns.split(",") if c.strip()],
            "start_date": args.start,
            "end_date": args.end,
            "grouping": args.grouping,
        }
        result = await app.aggregate(request)
        print(json.dumps(result, indent=2, default=str))
        return 0

    try:
        log.info("Starting automated meter collection...")
        await app.run()
    except asyncio.CancelledError:
        log.info("Meter collection interrupted")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meterhub", description="Automated meter collection and aggregation")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides METERHUB_CONFIG and default).",
        required=False,
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the collection schedule until interrupted (default)")
    sub.add_parser("collect-once", help="Run a single collection tick and print statistics")

    agg = sub.add_parser("aggregate", help="Print aggregated reading data as JSON")
    agg.add_argument("--meter-element-id", type=int, required=True)
    agg.add_argument("--tenant-id", type=int, required=True)
    agg.add_argument("--columns", required=True, help="Comma separated column names")
    agg.add_argument("--start", required=True, help="ISO-8601 start date")
    agg.add_argument("--end", required=True, help="ISO-8601 end date")
    agg.add_argument("--grouping", default="none",
                     choices=["none", "total", "hourly", "daily", "weekly", "monthly"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command is None:
        args.command = "run"
    try:
        return asyncio.run(amain(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
