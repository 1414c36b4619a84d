"""Command-line entry point for the periodic jobs.

Usage:
    python -m signal_leaderboard leaderboard [--reset] [--dry-run]
    python -m signal_leaderboard cleanup [--max-age-days N] [--archive | --no-archive] [--dry-run]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from signal_leaderboard.config import Settings, get_settings
from signal_leaderboard.jobs import JobRunner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signal_leaderboard",
        description="Maintain partition databases and publish leaderboards",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run against an in-memory backend; nothing is written to Telegram",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    lb = sub.add_parser("leaderboard", help="Materialize and publish all leaderboard views")
    lb.add_argument("--reset", action="store_true", help="Unpin existing views and recreate them")

    cleanup = sub.add_parser("cleanup", help="Prune expired tokens and wallets")
    cleanup.add_argument(
        "--max-age-days", type=int, default=None, help="Token retention in days (default: settings)"
    )
    cleanup.add_argument(
        "--archive",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Archive evicted entities before removal (default: settings)",
    )
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with JobRunner(settings, dry_run=args.dry_run or None) as runner:
        if args.command == "leaderboard":
            result = await runner.run_leaderboard(reset=args.reset)
            if result is None or result.failed:
                return 1
        else:
            results = await runner.run_cleanup(
                max_age_days=args.max_age_days, archive=args.archive
            )
            for partition, pruned in results.items():
                logger.info(
                    "%s: removed %d tokens, %d wallets, %d signals",
                    partition,
                    pruned.tokens,
                    pruned.wallets,
                    pruned.signals,
                )
        return 1 if runner.stats.errors else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logger.debug("Settings: %s", settings.redacted_summary())
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
