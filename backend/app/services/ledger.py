"""Append-only rating history."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Match, RatingLedgerEntry

REASON_WIN = "match_win"
REASON_LOSS = "match_loss"


def _entry_metadata(match: Match, side: str, *, auto_validated: bool) -> dict:
    snapshot = dict(match.modifiers_applied or {})
    breakdown = dict(snapshot.get(side) or {})
    return {
        "matchFormat": snapshot.get("matchFormat", match.match_format),
        "kFactor": breakdown.get("kFactor"),
        "expectedScore": breakdown.get("expectedScore"),
        "totalModifier": breakdown.get("totalModifier", 1.0),
        "details": list(breakdown.get("details") or []),
        "autoValidated": auto_validated,
    }


def add_resolution_entries(
    session: AsyncSession,
    match: Match,
    elo_after: dict[str, int],
    deltas: dict[str, int],
    *,
    auto_validated: bool,
    recorded_at: datetime,
) -> list[RatingLedgerEntry]:
    """Stage the two ledger rows for a resolved match on ``session``.

    The caller owns the transaction; the unique constraint on
    ``(player_id, match_id)`` turns an accidental second resolution into an
    ``IntegrityError`` rather than a duplicate row.
    """

    entries: list[RatingLedgerEntry] = []
    for player_id in (match.player1_id, match.player2_id):
        won = player_id == match.winner_id
        entry = RatingLedgerEntry(
            id=uuid.uuid4().hex,
            player_id=player_id,
            match_id=match.id,
            elo_after=elo_after[player_id],
            delta=deltas[player_id],
            reason=REASON_WIN if won else REASON_LOSS,
            meta=_entry_metadata(
                match, "winner" if won else "loser", auto_validated=auto_validated
            ),
            recorded_at=recorded_at,
        )
        session.add(entry)
        entries.append(entry)
    return entries


async def list_player_history(
    session: AsyncSession, player_id: str, *, limit: int = 50, offset: int = 0
) -> list[RatingLedgerEntry]:
    rows = await session.execute(
        select(RatingLedgerEntry)
        .where(RatingLedgerEntry.player_id == player_id)
        .order_by(RatingLedgerEntry.recorded_at.desc(), RatingLedgerEntry.id)
        .limit(limit)
        .offset(offset)
    )
    return list(rows.scalars())

