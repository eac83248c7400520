"""
Data Acquisition - CLI.

============================================================
USAGE
============================================================
python -m data_acquisition fetch BTC --kind price
python -m data_acquisition fetch BTC:1h:50 --kind ohlcv --timeout 20
python -m data_acquisition health --probe
python -m data_acquisition serve --host 127.0.0.1 --port 8090
python -m data_acquisition --config acquisition.yaml --log-level DEBUG fetch global --kind sentiment

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from aiohttp import web

from data_acquisition.api import DiagnosticsEncoder, create_app
from data_acquisition.config import AcquisitionConfig
from data_acquisition.exceptions import DataAcquisitionError
from data_acquisition.models import DataKind
from data_acquisition.orchestrator import create_orchestrator


logger = logging.getLogger(__name__)


# Keys used by `health --probe`
PROBE_KEYS = {
    DataKind.PRICE: "BTC",
    DataKind.OHLCV: "BTC:1h:24",
    DataKind.SENTIMENT: "global",
}


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="data-acquisition",
        description="Multi-provider market data acquisition with fallback and caching",
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="YAML configuration file (default: environment variables)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch", help="Fetch one record and print it as JSON")
    fetch.add_argument("key", help='Query key, e.g. "BTC", "BTC:1h:100", "eth:0xabc..."')
    fetch.add_argument(
        "--kind", "-k",
        choices=[k.value for k in DataKind],
        default=DataKind.PRICE.value,
        help="Data kind (default: price)",
    )
    fetch.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Overall deadline for the fetch",
    )

    health = commands.add_parser("health", help="Print provider diagnostics")
    health.add_argument(
        "--probe",
        action="store_true",
        help="Fetch a sample key per kind first so diagnostics have data",
    )

    serve = commands.add_parser("serve", help="Run the read-only diagnostics API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8090, help="Port (default: 8090)")

    return parser


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_config(path: Optional[str]) -> AcquisitionConfig:
    if path:
        return AcquisitionConfig.from_yaml(path)
    return AcquisitionConfig.from_env()


def _print_json(data) -> None:
    print(json.dumps(data, cls=DiagnosticsEncoder, indent=2))


# ============================================================
# COMMANDS
# ============================================================

async def run_fetch(args: argparse.Namespace, config: AcquisitionConfig) -> int:
    async with create_orchestrator(config) as orchestrator:
        try:
            record = await orchestrator.fetch(args.key, args.kind, timeout=args.timeout)
        except DataAcquisitionError as e:
            _print_json({"status": "error", "error": e.to_dict()})
            return 1
        _print_json({"status": "ok", "data": record.to_dict()})
        return 0


async def run_health(args: argparse.Namespace, config: AcquisitionConfig) -> int:
    async with create_orchestrator(config) as orchestrator:
        if args.probe:
            for kind, key in PROBE_KEYS.items():
                try:
                    await orchestrator.fetch(key, kind)
                except DataAcquisitionError as e:
                    logger.warning(f"Probe {kind.value}:{key} failed: {e.message}")

        _print_json({
            "providers": {
                name: diagnostics.to_dict()
                for name, diagnostics in orchestrator.get_all_health().items()
            },
            "stats": orchestrator.get_stats(),
        })
        summary = orchestrator.health.summary(orchestrator.adapters)
        return 0 if summary["unhealthy"] == 0 else 2


async def run_serve(args: argparse.Namespace, config: AcquisitionConfig) -> int:
    orchestrator = create_orchestrator(config)
    runner = web.AppRunner(create_app(orchestrator))
    await runner.setup()
    site = web.TCPSite(runner, args.host, args.port)
    await site.start()
    logger.info(f"Diagnostics API listening on http://{args.host}:{args.port}/api/health")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
    return 0


COMMANDS = {
    "fetch": run_fetch,
    "health": run_health,
    "serve": run_serve,
}


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
    except DataAcquisitionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(COMMANDS[args.command](args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
