"""Conditional writes on the ``match`` table.

Every mutation here states its precondition in the ``WHERE`` clause of the
statement that performs it and then inspects the affected row count. When
two callers race for the same match only the first statement to reach the
database matches a row; the other observes zero rows and is told why.

Each function owns its transaction: it commits on success and rolls back on
any failure, so a rating change is applied to both players together with
its two ledger rows or not at all.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..db_errors import safe_rollback
from ..exceptions import (
    ContestQuotaExceeded,
    ContestWindowExpired,
    MatchAlreadyContested,
    MatchAlreadyValidated,
    MatchNotContested,
    MatchNotFound,
)
from ..models import Match, Player
from ..time_utils import coerce_utc, start_of_month
from .ledger import add_resolution_entries
from .rating import DEFAULT_POLICY, RatingPolicy, apply_delta

LOGGER = logging.getLogger(__name__)

CONTEST_RESOLUTIONS = ("upheld", "rejected", "modified")


@dataclass(frozen=True)
class AppliedRating:
    player_id: str
    elo_before: int
    elo_after: int
    delta: int
    won: bool


@dataclass(frozen=True)
class Resolution:
    match: Match
    ratings: dict[str, AppliedRating]
    auto_validated: bool


async def load_match(session: AsyncSession, match_id: str) -> Match | None:
    """Read ``match_id`` fresh from the database, bypassing the identity map."""

    return (
        await session.execute(
            select(Match)
            .where(Match.id == match_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


def snapshot_deltas(match: Match) -> dict[str, int]:
    return {
        match.player1_id: match.player1_elo_after - match.player1_elo_before,
        match.player2_id: match.player2_elo_after - match.player2_elo_before,
    }


async def count_contests_this_month(
    session: AsyncSession, player_id: str, now: datetime
) -> int:
    return (
        await session.execute(
            select(func.count())
            .select_from(Match)
            .where(
                Match.contested_by == player_id,
                Match.contested_at >= start_of_month(now),
            )
        )
    ).scalar_one()


async def reject_match(session: AsyncSession, match_id: str) -> None:
    """Delete an unvalidated, never contested match.

    No rating or ledger rows are touched. A match that has been disputed is
    kept so the contest record and the contester's monthly count survive.
    """

    try:
        result = await session.execute(
            delete(Match)
            .where(
                Match.id == match_id,
                Match.validated.is_(False),
                Match.contested_at.is_(None),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await session.commit()
            return

        await session.rollback()
    except Exception:
        await safe_rollback(session)
        raise

    match = await load_match(session, match_id)
    if match is None:
        raise MatchNotFound(match_id)
    if not match.validated and match.contested_at is not None:
        raise MatchAlreadyContested(match_id)
    raise MatchAlreadyValidated(match_id)


async def _apply_ratings(
    session: AsyncSession,
    match: Match,
    *,
    policy: RatingPolicy,
) -> dict[str, AppliedRating]:
    deltas = snapshot_deltas(match)
    # Lock both rows in a stable order so two resolutions sharing a player
    # cannot deadlock each other.
    rows = (
        await session.execute(
            select(Player.id, Player.current_elo)
            .where(Player.id.in_(list(deltas)))
            .order_by(Player.id)
            .with_for_update()
        )
    ).all()
    current = {player_id: elo for player_id, elo in rows}
    missing = set(deltas) - set(current)
    if missing:
        raise LookupError(f"players missing for match {match.id}: {sorted(missing)}")

    applied: dict[str, AppliedRating] = {}
    for player_id in sorted(deltas):
        delta = deltas[player_id]
        won = player_id == match.winner_id
        shifted = Player.current_elo + delta
        new_elo = case((shifted < policy.floor, policy.floor), else_=shifted)
        await session.execute(
            update(Player)
            .where(Player.id == player_id)
            .values(
                current_elo=new_elo,
                best_elo=case((new_elo > Player.best_elo, new_elo), else_=Player.best_elo),
                matches_played=Player.matches_played + 1,
                wins=Player.wins + (1 if won else 0),
                losses=Player.losses + (0 if won else 1),
                last_match_at=coerce_utc(match.played_at),
            )
            .execution_options(synchronize_session=False)
        )
        elo_after = apply_delta(current[player_id], delta, policy)
        applied[player_id] = AppliedRating(
            player_id=player_id,
            elo_before=current[player_id],
            elo_after=elo_after,
            delta=elo_after - current[player_id],
            won=won,
        )
    return applied


async def _resolve(
    session: AsyncSession,
    match_id: str,
    *,
    guard: list,
    values: dict,
    auto_validated: bool,
    now: datetime,
    policy: RatingPolicy,
    timeout: float | None = None,
) -> Resolution | None:
    async def stage() -> tuple[Match, dict[str, AppliedRating]] | None:
        result = await session.execute(
            update(Match)
            .where(Match.id == match_id, *guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        match = await load_match(session, match_id)
        assert match is not None  # row was just updated in this transaction
        applied = await _apply_ratings(session, match, policy=policy)
        add_resolution_entries(
            session,
            match,
            {pid: rating.elo_after for pid, rating in applied.items()},
            {pid: rating.delta for pid, rating in applied.items()},
            auto_validated=auto_validated,
            recorded_at=now,
        )
        return match, applied

    try:
        # Only the staged writes are time-limited; the commit always completes.
        staged = await (stage() if timeout is None else asyncio.wait_for(stage(), timeout))
        if staged is None:
            await session.rollback()
            return None
        match, applied = staged
        await session.commit()
    except Exception:
        await safe_rollback(session)
        raise

    LOGGER.info(
        "Resolved match %s (%s): %s",
        match_id,
        "auto" if auto_validated else "manual",
        ", ".join(f"{pid} {r.delta:+d}" for pid, r in applied.items()),
    )
    return Resolution(match=match, ratings=applied, auto_validated=auto_validated)


async def resolve_manually(
    session: AsyncSession,
    match_id: str,
    actor_id: str,
    now: datetime,
    *,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> Resolution:
    """Flip ``validated`` on behalf of ``actor_id`` and apply the snapshot.

    Raises :class:`MatchAlreadyValidated` when another writer resolved the
    match first and :class:`MatchNotFound` when it was rejected meanwhile.
    """

    now = coerce_utc(now)
    resolution = await _resolve(
        session,
        match_id,
        guard=[Match.validated.is_(False)],
        values={
            "validated": True,
            "validated_by": actor_id,
            "validated_at": now,
            "updated_at": now,
        },
        auto_validated=False,
        now=now,
        policy=policy,
    )
    if resolution is not None:
        return resolution
    if await load_match(session, match_id) is None:
        raise MatchNotFound(match_id)
    raise MatchAlreadyValidated(match_id)


async def resolve_automatically(
    session: AsyncSession,
    match_id: str,
    now: datetime,
    *,
    policy: RatingPolicy = DEFAULT_POLICY,
    timeout: float | None = None,
) -> Resolution | None:
    """Resolve a match whose deadline passed. ``None`` means nothing to do.

    ``timeout`` bounds the work done before the commit; exceeding it raises
    :class:`asyncio.TimeoutError` with everything rolled back.
    """

    now = coerce_utc(now)
    return await _resolve(
        session,
        match_id,
        guard=[
            Match.validated.is_(False),
            Match.contested.is_(False),
            Match.auto_validate_at <= now,
        ],
        values={
            "validated": True,
            "auto_validated": True,
            "validated_at": now,
            "updated_at": now,
        },
        auto_validated=True,
        now=now,
        policy=policy,
        timeout=timeout,
    )


async def contest_match(
    session: AsyncSession,
    match_id: str,
    actor_id: str,
    reason: str,
    now: datetime,
    *,
    window_days: int,
    monthly_limit: int,
) -> Match:
    """Open a dispute. Never touches ``validated`` or any rating.

    A match can be contested once; ``contested_at`` stays set after an
    administrator closes the dispute.
    """

    now = coerce_utc(now)
    window_start = now - timedelta(days=window_days)
    filed = aliased(Match)
    filed_this_month = (
        select(func.count())
        .select_from(filed)
        .where(filed.contested_by == actor_id, filed.contested_at >= start_of_month(now))
        .scalar_subquery()
    )

    try:
        # Serialises concurrent contests by the same player so the monthly
        # count read by the subquery below is current.
        await session.execute(
            select(Player.id).where(Player.id == actor_id).with_for_update()
        )
        result = await session.execute(
            update(Match)
            .where(
                Match.id == match_id,
                Match.contested_at.is_(None),
                or_(
                    Match.validated.is_(False),
                    and_(Match.validated_at.is_not(None), Match.validated_at > window_start),
                ),
                filed_this_month < monthly_limit,
            )
            .values(
                contested=True,
                contested_by=actor_id,
                contested_at=now,
                contest_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        if updated:
            await session.commit()
        else:
            await session.rollback()
    except Exception:
        await safe_rollback(session)
        raise

    match = await load_match(session, match_id)
    if match is None:
        raise MatchNotFound(match_id)
    if updated:
        return match

    if match.contested_at is not None:
        raise MatchAlreadyContested(match_id)
    validated_at = coerce_utc(match.validated_at)
    if match.validated and (validated_at is None or validated_at <= window_start):
        raise ContestWindowExpired(match_id, window_days)
    if await count_contests_this_month(session, actor_id, now) >= monthly_limit:
        raise ContestQuotaExceeded(match_id, monthly_limit)
    raise MatchAlreadyContested(match_id)  # pragma: no cover - lost an unexplained race


async def record_contest_resolution(
    session: AsyncSession, match_id: str, resolution: str, now: datetime
) -> Match:
    """Record an administrator's decision on an open contest and close it.

    Clearing ``contested`` hands a pending match back to the normal flow, so
    it can be confirmed or auto-validated again. Ratings are never changed
    here; any correction is a separate, manual administrative action.
    """

    if resolution not in CONTEST_RESOLUTIONS:
        raise ValueError(f"unknown contest resolution {resolution!r}")

    now = coerce_utc(now)
    try:
        result = await session.execute(
            update(Match)
            .where(
                Match.id == match_id,
                Match.contested.is_(True),
                Match.contest_resolved_at.is_(None),
            )
            .values(
                contested=False,
                contest_resolution=resolution,
                contest_resolved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        if updated:
            await session.commit()
        else:
            await session.rollback()
    except Exception:
        await safe_rollback(session)
        raise

    match = await load_match(session, match_id)
    if match is None:
        raise MatchNotFound(match_id)
    if not updated:
        raise MatchNotContested(match_id)
    return match
