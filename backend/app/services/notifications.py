"""Persist match workflow events as in-app notifications."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_errors import is_missing_table_error, safe_rollback
from ..models import Notification

LOGGER = logging.getLogger(__name__)

MATCH_REPORTED = "match_reported"
MATCH_CONFIRMED = "match_confirmed"
MATCH_REJECTED = "match_rejected"
MATCH_CONTESTED = "match_contested"
MATCH_CONTESTED_ADMIN = "match_contested_admin"
MATCH_AUTO_VALIDATED = "match_auto_validated"
MATCH_CONTEST_RESOLVED = "match_contest_resolved"
MATCH_REMINDER = "match_reminder"

_TITLES = {
    MATCH_REPORTED: "Match to confirm",
    MATCH_CONFIRMED: "Match confirmed",
    MATCH_REJECTED: "Match rejected",
    MATCH_CONTESTED: "Match contested",
    MATCH_CONTESTED_ADMIN: "Contest to review",
    MATCH_AUTO_VALIDATED: "Match validated automatically",
    MATCH_CONTEST_RESOLVED: "Contest resolved",
    MATCH_REMINDER: "Match waiting for your confirmation",
}


@dataclass(frozen=True)
class MatchEvent:
    type: str
    recipient_id: str
    match_id: str
    actor_id: str | None = None
    actor_name: str | None = None
    elo_change: int | None = None
    extra: dict = field(default_factory=dict)

    def payload(self) -> dict:
        payload = {
            "title": _TITLES.get(self.type, "Match update"),
            "body": self._body(),
            "url": f"/matches/{self.match_id}/",
            "matchId": self.match_id,
            "actorId": self.actor_id,
            "actorName": self.actor_name,
        }
        if self.elo_change is not None:
            payload["eloChange"] = self.elo_change
        payload.update(self.extra)
        return payload

    def _body(self) -> str:
        who = self.actor_name or "Your opponent"
        change = ""
        if self.elo_change is not None:
            change = f" ({self.elo_change:+d} ELO)"
        if self.type == MATCH_REPORTED:
            return f"{who} reported a match against you. Confirm or reject it."
        if self.type == MATCH_CONFIRMED:
            return f"{who} confirmed your match{change}."
        if self.type == MATCH_REJECTED:
            return f"{who} rejected the match you reported."
        if self.type == MATCH_CONTESTED:
            return f"{who} contested your match. A club admin will review it."
        if self.type == MATCH_CONTESTED_ADMIN:
            return f"{who} contested a match in your club."
        if self.type == MATCH_AUTO_VALIDATED:
            return f"Your match was validated automatically{change}."
        if self.type == MATCH_CONTEST_RESOLVED:
            return "A contest on your match has been reviewed."
        if self.type == MATCH_REMINDER:
            hours = self.extra.get("hoursLeft")
            return (
                f"{who} is waiting for your confirmation. "
                f"The match will be validated automatically in {hours}h."
            )
        return "Your match was updated."


class Notifier:
    """Best-effort sink for :class:`MatchEvent` values.

    Failures are logged and rolled back; they never propagate to the
    caller, whose rating change has already been committed.
    """

    async def emit(self, session: AsyncSession, event: MatchEvent) -> Notification | None:
        notification = Notification(
            id=uuid.uuid4().hex,
            player_id=event.recipient_id,
            type=event.type,
            payload=event.payload(),
        )
        session.add(notification)
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await safe_rollback(session)
            if is_missing_table_error(exc, "notification"):
                LOGGER.debug("Notification table unavailable; skipping %s", event.type)
            else:
                LOGGER.warning(
                    "Failed to persist %s notification for match %s",
                    event.type,
                    event.match_id,
                    exc_info=exc,
                )
            return None
        return notification

    async def emit_many(self, session: AsyncSession, events: Iterable[MatchEvent]) -> int:
        delivered = 0
        for event in events:
            if await self.emit(session, event) is not None:
                delivered += 1
        return delivered
