#!/usr/bin/env python3
"""CLI entry point for visit reprocessing.

Usage:
    # Reprocess a single date
    python scripts/run_reprocess_visits.py --start-date 2024-12-30 --end-date 2024-12-30

    # Import costs first, then reprocess a range
    python scripts/run_reprocess_visits.py --start-date 2024-12-01 --end-date 2024-12-07 --import-costs
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import aiohttp

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from aom_core.exceptions import ConfigurationError
from aom_core.reconcile.orchestrator import ReprocessVisitsService
from aom_core.settings import Settings


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_date(value: str):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Reprocess visits: allocate platform costs to visits for a date range"
    )
    parser.add_argument(
        "--start-date",
        type=parse_date,
        required=True,
        help="First date to reprocess (YYYY-MM-DD, inclusive)",
    )
    parser.add_argument(
        "--end-date",
        type=parse_date,
        required=True,
        help="Last date to reprocess (YYYY-MM-DD, inclusive)",
    )
    parser.add_argument(
        "--import-costs",
        action="store_true",
        help="Import platform costs for the range before merging",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    settings = Settings.from_env()
    timeout = aiohttp.ClientTimeout(total=300, connect=30)

    async with aiohttp.ClientSession(timeout=timeout) as session:
        service = ReprocessVisitsService.from_settings(
            settings, session=session if args.import_costs else None
        )
        try:
            report = await service.run(
                args.start_date, args.end_date, import_costs=args.import_costs
            )
        except ConfigurationError:
            return 2
        finally:
            service.close()

    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
