#!/usr/bin/env python3
"""Resolve reported matches whose confirmation deadline has passed.

Each pass also reminds opponents who have left a match unanswered for
``MATCH_REMINDER_AFTER_HOURS``. Run with ``--once`` from an external
scheduler, or without it to keep a sweeper running on
``AUTO_VALIDATE_INTERVAL_SECONDS``. SIGINT and SIGTERM finish the match in
progress and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

from app.config import AUTO_VALIDATE_INTERVAL_SECONDS, AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS
from app.db import get_engine, get_sessionmaker
from app.services.auto_validation import AutoValidationSweeper
from app.services.badges import BadgeChecker
from app.services.notifications import Notifier
from app.utils.sentry import init_sentry

logger = logging.getLogger("auto_validation")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--once", action="store_true", help="run a single sweep and reminder pass, then exit"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=AUTO_VALIDATE_INTERVAL_SECONDS,
        help="seconds between sweeps (default: %(default)s)",
    )
    parser.add_argument(
        "--match-timeout",
        type=float,
        default=AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS,
        help="time limit for a single match (default: %(default)s)",
    )
    return parser.parse_args()


async def _main(args: argparse.Namespace) -> int:
    sweeper = AutoValidationSweeper(
        get_sessionmaker(),
        notifier=Notifier(),
        badge_checker=BadgeChecker(),
        interval_seconds=args.interval,
        match_timeout=args.match_timeout,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, sweeper.stop)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    try:
        if args.once:
            report = await sweeper.run_once()
            reminders = await sweeper.remind_once()
            print(
                json.dumps(
                    {"autoValidation": report.as_dict(), "reminders": reminders.as_dict()},
                    indent=2,
                )
            )
            return 1 if report.errors or reminders.errors else 0
        await sweeper.run_forever()
        return 0
    finally:
        await get_engine().dispose()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_sentry("sweeper", with_fastapi=False)
    raise SystemExit(asyncio.run(_main(_parse_args())))


if __name__ == "__main__":
    main()
