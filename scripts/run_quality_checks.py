"""
Run automated quality checks on pending measurements.

Usage:
    python scripts/run_quality_checks.py --flag-suspicious
    python scripts/run_quality_checks.py --auto-approve
    python scripts/run_quality_checks.py --flag-suspicious --auto-approve

Flagging runs before auto-approval so freshly flagged measurements are not
approved in the same invocation. Exits with status 1 when no action is given.
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import async_sessionmaker
from core.database import async_session_maker
from core.logging import setup_logging
from quality.engine import QualityEngine
from schemas.quality import QualityRunSummary

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run automated quality checks on pending measurements")
    parser.add_argument(
        "--flag-suspicious",
        action="store_true",
        help="Flag suspicious readings (low accuracy, outliers, unexpected range)"
    )
    parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Auto-approve pending measurements with a trusted GPS fix and no flags"
    )
    return parser


async def run_checks(args: argparse.Namespace, session_maker: async_sessionmaker) -> QualityRunSummary:
    engine = QualityEngine(session_maker)
    summary = QualityRunSummary()

    if args.flag_suspicious:
        logger.info("Flagging suspicious readings...")
        summary.flagged = await engine.flag_suspicious_readings()
        logger.info(f"Flagged {summary.flagged} measurements for review")

    if args.auto_approve:
        logger.info("Auto-approving qualified measurements...")
        summary.approved = await engine.auto_approve_qualified()
        logger.info(f"Auto-approved {summary.approved} measurements")

    return summary


def main(argv=None, session_maker: async_sessionmaker = None) -> int:
    args = build_parser().parse_args(argv)

    if not args.flag_suspicious and not args.auto_approve:
        logger.error("Please specify at least one option: --flag-suspicious or --auto-approve")
        return 1

    asyncio.run(run_checks(args, session_maker or async_session_maker))
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(main())
