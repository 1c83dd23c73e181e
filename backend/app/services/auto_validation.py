"""Periodic resolution of matches nobody confirmed in time.

A sweep lists the matches that are past their deadline and not contested,
then resolves each one in its own session and under its own time limit.
One failing or slow match is recorded in the report and the sweep moves
on. Nothing is kept in memory between sweeps, so an aborted or crashed run
is simply picked up by the next one; matches another writer resolved in
the meantime are counted as skipped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from ..config import AUTO_VALIDATE_INTERVAL_SECONDS, AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS
from ..models import Match
from ..time_utils import coerce_utc, utcnow
from .badges import BadgeChecker
from .match_store import resolve_automatically
from .match_validation import publish_resolution
from .notifications import Notifier
from .rating import DEFAULT_POLICY, RatingPolicy
from .reminders import ReminderReport, send_reminders

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepError:
    match_id: str
    error: str


@dataclass
class SweepReport:
    started_at: datetime
    found: int = 0
    resolved: int = 0
    skipped: int = 0
    errors: list[SweepError] = field(default_factory=list)
    aborted: bool = False

    def as_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "found": self.found,
            "resolved": self.resolved,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "errorDetails": [{"matchId": e.match_id, "error": e.error} for e in self.errors],
            "aborted": self.aborted,
        }


async def find_due_matches(
    session: AsyncSession, now: datetime, limit: int | None = None
) -> list[Match]:
    stmt = (
        select(Match)
        .where(
            Match.validated.is_(False),
            Match.contested.is_(False),
            Match.auto_validate_at <= coerce_utc(now),
        )
        .order_by(Match.auto_validate_at, Match.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars())


async def _sweep_one(
    session_factory: sessionmaker,
    match_id: str,
    now: datetime,
    *,
    notifier: Notifier | None,
    badge_checker: BadgeChecker | None,
    timeout: float,
    policy: RatingPolicy,
) -> bool:
    async with session_factory() as session:
        resolution = await resolve_automatically(
            session, match_id, now, policy=policy, timeout=timeout
        )
        if resolution is None:
            return False
        try:
            await asyncio.wait_for(
                publish_resolution(session, resolution, notifier, badge_checker),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Notifications for auto-validated match %s timed out", match_id)
        return True


async def run_sweep(
    session_factory: sessionmaker,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    badge_checker: BadgeChecker | None = None,
    abort_event: asyncio.Event | None = None,
    match_timeout: float = AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS,
    limit: int | None = None,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> SweepReport:
    now = coerce_utc(now or utcnow())
    report = SweepReport(started_at=now)

    async with session_factory() as session:
        match_ids = [m.id for m in await find_due_matches(session, now, limit)]
    report.found = len(match_ids)

    for match_id in match_ids:
        if abort_event is not None and abort_event.is_set():
            report.aborted = True
            LOGGER.info(
                "Auto-validation sweep aborted with %d match(es) left",
                report.found - report.resolved - report.skipped - len(report.errors),
            )
            break
        try:
            resolved = await _sweep_one(
                session_factory,
                match_id,
                now,
                notifier=notifier,
                badge_checker=badge_checker,
                timeout=match_timeout,
                policy=policy,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Auto-validation of match %s timed out after %ss", match_id, match_timeout)
            report.errors.append(SweepError(match_id, f"timed out after {match_timeout}s"))
        except Exception as exc:
            LOGGER.exception("Auto-validation of match %s failed", match_id)
            report.errors.append(SweepError(match_id, f"{type(exc).__name__}: {exc}"))
        else:
            if resolved:
                report.resolved += 1
            else:
                report.skipped += 1

    LOGGER.info(
        "Auto-validation sweep: found=%d resolved=%d skipped=%d errors=%d%s",
        report.found,
        report.resolved,
        report.skipped,
        len(report.errors),
        " (aborted)" if report.aborted else "",
    )
    return report


class AutoValidationSweeper:
    """Runs :func:`run_sweep` and the reminder pass on a fixed interval until
    :meth:`stop` is called."""

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        notifier: Notifier | None = None,
        badge_checker: BadgeChecker | None = None,
        interval_seconds: float = AUTO_VALIDATE_INTERVAL_SECONDS,
        match_timeout: float = AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.badge_checker = badge_checker
        self.interval_seconds = interval_seconds
        self.match_timeout = match_timeout
        self.clock = clock
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    async def run_once(self) -> SweepReport:
        return await run_sweep(
            self.session_factory,
            now=self.clock(),
            notifier=self.notifier,
            badge_checker=self.badge_checker,
            abort_event=self._stop,
            match_timeout=self.match_timeout,
        )

    async def remind_once(self) -> ReminderReport:
        return await send_reminders(
            self.session_factory, now=self.clock(), notifier=self.notifier
        )

    async def run_forever(self) -> None:
        LOGGER.info("Auto-validation sweeper started (every %ss)", self.interval_seconds)
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:
                LOGGER.exception("Auto-validation sweep crashed; retrying next interval")
            if self._stop.is_set():
                break
            try:
                await self.remind_once()
            except Exception:
                LOGGER.exception("Reminder pass crashed; retrying next interval")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        LOGGER.info("Auto-validation sweeper stopped")
