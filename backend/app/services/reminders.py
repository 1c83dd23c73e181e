"""Nudge players who have not answered a reported match yet.

Once a match has been waiting ``MATCH_REMINDER_AFTER_HOURS`` the opponent
of the reporter gets one ``match_reminder`` notification. The send is
claimed with a conditional update on ``reminder_sent_at``, so overlapping
runs never remind twice for the same match.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from ..config import AUTO_VALIDATE_AFTER_HOURS, MATCH_REMINDER_AFTER_HOURS
from ..db_errors import safe_rollback
from ..models import Match, Player
from ..time_utils import coerce_utc, utcnow
from .notifications import MATCH_REMINDER, MatchEvent, Notifier

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderError:
    match_id: str
    error: str


@dataclass
class ReminderReport:
    started_at: datetime
    found: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[ReminderError] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "found": self.found,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "errorDetails": [{"matchId": e.match_id, "error": e.error} for e in self.errors],
        }


def _reminder_filters(now: datetime, remind_after_hours: float, auto_validate_after_hours: float):
    # auto_validate_at is fixed at report time, so "reported at least N hours
    # ago" is the same as "deadline at most (deadline - N) hours away".
    lead = timedelta(hours=auto_validate_after_hours - remind_after_hours)
    return (
        Match.validated.is_(False),
        Match.contested.is_(False),
        Match.reminder_sent_at.is_(None),
        Match.auto_validate_at <= now + lead,
        Match.auto_validate_at > now,
    )


def hours_left(auto_validate_at: datetime, now: datetime) -> int:
    remaining = (coerce_utc(auto_validate_at) - coerce_utc(now)).total_seconds()
    return max(0, math.ceil(remaining / 3600))


async def find_matches_needing_reminder(
    session: AsyncSession,
    now: datetime,
    limit: int | None = None,
    *,
    remind_after_hours: float = MATCH_REMINDER_AFTER_HOURS,
    auto_validate_after_hours: float = AUTO_VALIDATE_AFTER_HOURS,
) -> list[Match]:
    if remind_after_hours >= auto_validate_after_hours:
        return []
    stmt = (
        select(Match)
        .where(*_reminder_filters(coerce_utc(now), remind_after_hours, auto_validate_after_hours))
        .order_by(Match.auto_validate_at, Match.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars())


async def _remind_one(
    session_factory: sessionmaker,
    match_id: str,
    now: datetime,
    *,
    notifier: Notifier | None,
    remind_after_hours: float,
    auto_validate_after_hours: float,
) -> bool:
    async with session_factory() as session:
        try:
            result = await session.execute(
                update(Match)
                .where(
                    Match.id == match_id,
                    *_reminder_filters(now, remind_after_hours, auto_validate_after_hours),
                )
                .values(reminder_sent_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return False
            await session.commit()
        except Exception:
            await safe_rollback(session)
            raise

        match = await session.get(Match, match_id)
        if notifier is not None and match is not None:
            recipient_id = (
                match.player2_id if match.reported_by == match.player1_id else match.player1_id
            )
            reporter = await session.get(Player, match.reported_by)
            reporter_name = reporter.name if reporter is not None else None
            await notifier.emit(
                session,
                MatchEvent(
                    type=MATCH_REMINDER,
                    recipient_id=recipient_id,
                    match_id=match.id,
                    actor_id=match.reported_by,
                    actor_name=reporter_name,
                    extra={
                        "reporterName": reporter_name,
                        "score": match.score,
                        "hoursLeft": hours_left(match.auto_validate_at, now),
                        "autoValidateAt": coerce_utc(match.auto_validate_at).isoformat(),
                    },
                ),
            )
        return True


async def send_reminders(
    session_factory: sessionmaker,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    limit: int | None = None,
    remind_after_hours: float = MATCH_REMINDER_AFTER_HOURS,
    auto_validate_after_hours: float = AUTO_VALIDATE_AFTER_HOURS,
) -> ReminderReport:
    now = coerce_utc(now or utcnow())
    report = ReminderReport(started_at=now)

    async with session_factory() as session:
        match_ids = [
            m.id
            for m in await find_matches_needing_reminder(
                session,
                now,
                limit,
                remind_after_hours=remind_after_hours,
                auto_validate_after_hours=auto_validate_after_hours,
            )
        ]
    report.found = len(match_ids)

    for match_id in match_ids:
        try:
            sent = await _remind_one(
                session_factory,
                match_id,
                now,
                notifier=notifier,
                remind_after_hours=remind_after_hours,
                auto_validate_after_hours=auto_validate_after_hours,
            )
        except Exception as exc:
            LOGGER.exception("Reminder for match %s failed", match_id)
            report.errors.append(ReminderError(match_id, f"{type(exc).__name__}: {exc}"))
        else:
            if sent:
                report.sent += 1
            else:
                report.skipped += 1

    LOGGER.info(
        "Match reminders: found=%d sent=%d skipped=%d errors=%d",
        report.found,
        report.sent,
        report.skipped,
        len(report.errors),
    )
    return report
