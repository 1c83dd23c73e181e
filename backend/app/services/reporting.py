"""Creation path for reported matches.

The reporter's call freezes the rating snapshot: both players' ratings and
the full modifier breakdown are computed now, from validated history only,
and stored on the match. Nothing is applied until the match is resolved.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_errors import safe_rollback
from ..exceptions import PlayerNotFound
from ..models import Match, Player
from ..time_utils import coerce_utc
from .notifications import MATCH_REPORTED, MatchEvent, Notifier
from .rating import (
    DEFAULT_POLICY,
    MatchContext,
    PastMatch,
    PlayerRatingInput,
    RatingPolicy,
    compute_delta,
    parse_score_games,
)
from .validation import ValidationError, validate_match_report

LOGGER = logging.getLogger(__name__)


async def load_history(
    session: AsyncSession,
    player_id: str,
    opponent_id: str,
    now: datetime,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> list[PastMatch]:
    """Validated matches relevant to the modifier windows.

    Matches inside the longest window are returned as-is. If the pair also
    met before that window, one older entry is added so the opponent is not
    considered new.
    """

    window_days = max(policy.repetition_window_days, policy.weekly_window_days)
    since = now - timedelta(days=window_days)
    involving = or_(Match.player1_id == player_id, Match.player2_id == player_id)

    rows = (
        await session.execute(
            select(Match.player1_id, Match.player2_id, Match.played_at).where(
                Match.validated.is_(True),
                involving,
                Match.played_at >= since,
            )
        )
    ).all()
    history = [
        PastMatch(
            opponent_id=p2 if p1 == player_id else p1,
            played_at=coerce_utc(played_at),
        )
        for p1, p2, played_at in rows
    ]

    if not any(h.opponent_id == opponent_id for h in history):
        earlier = (
            await session.execute(
                select(Match.played_at)
                .where(
                    Match.validated.is_(True),
                    Match.played_at < since,
                    or_(
                        (Match.player1_id == player_id) & (Match.player2_id == opponent_id),
                        (Match.player1_id == opponent_id) & (Match.player2_id == player_id),
                    ),
                )
                .limit(1)
            )
        ).scalar_one_or_none()
        if earlier is not None:
            history.append(PastMatch(opponent_id=opponent_id, played_at=coerce_utc(earlier)))

    return history


async def report_match(
    session: AsyncSession,
    *,
    reporter_id: str,
    opponent_id: str,
    winner_id: str,
    score: str,
    played_at: datetime,
    now: datetime,
    match_format: str | None = None,
    auto_validate_after_hours: int = 24,
    notifier: Notifier | None = None,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> Match:
    now = coerce_utc(now)
    played_at = coerce_utc(played_at)
    effective_format = validate_match_report(
        reporter_id=reporter_id,
        opponent_id=opponent_id,
        winner_id=winner_id,
        score=score,
        match_format=match_format,
        played_at=played_at,
        now=now,
    )

    reporter = await session.get(Player, reporter_id)
    if reporter is None:
        raise PlayerNotFound(reporter_id)
    opponent = await session.get(Player, opponent_id)
    if opponent is None:
        raise PlayerNotFound(opponent_id)
    if reporter.club_id and opponent.club_id and reporter.club_id != opponent.club_id:
        raise ValidationError("Both players must belong to the same club.")

    winner, loser = (reporter, opponent) if winner_id == reporter.id else (opponent, reporter)
    winner_games, loser_games = parse_score_games(score, winner_is_player1=winner is reporter)
    result = compute_delta(
        PlayerRatingInput(
            player_id=winner.id,
            elo=winner.current_elo,
            matches_played=winner.matches_played,
            history=await load_history(session, winner.id, loser.id, now, policy),
        ),
        PlayerRatingInput(
            player_id=loser.id,
            elo=loser.current_elo,
            matches_played=loser.matches_played,
            history=await load_history(session, loser.id, winner.id, now, policy),
        ),
        MatchContext(
            now=now,
            match_format=effective_format,
            winner_games=winner_games,
            loser_games=loser_games,
        ),
        policy,
    )
    reporter_side = result.winner if winner is reporter else result.loser
    opponent_side = result.loser if winner is reporter else result.winner

    deadline = now + timedelta(hours=auto_validate_after_hours)
    match = Match(
        id=uuid.uuid4().hex,
        club_id=reporter.club_id or opponent.club_id,
        player1_id=reporter.id,
        player2_id=opponent.id,
        winner_id=winner_id,
        score=" ".join(score.replace(",", " ").split()),
        match_format=effective_format,
        played_at=played_at,
        player1_elo_before=reporter_side.elo_before,
        player1_elo_after=reporter_side.elo_after,
        player2_elo_before=opponent_side.elo_before,
        player2_elo_after=opponent_side.elo_after,
        modifiers_applied=result.snapshot(),
        reported_by=reporter.id,
        validated=False,
        auto_validated=False,
        auto_validate_at=deadline,
        contested=False,
        created_at=now,
    )
    session.add(match)
    try:
        await session.commit()
    except Exception:
        await safe_rollback(session)
        raise

    LOGGER.info(
        "Match %s reported by %s against %s (provisional %+d/%+d)",
        match.id,
        reporter.id,
        opponent.id,
        reporter_side.delta,
        opponent_side.delta,
    )

    if notifier is not None:
        await notifier.emit(
            session,
            MatchEvent(
                type=MATCH_REPORTED,
                recipient_id=opponent.id,
                match_id=match.id,
                actor_id=reporter.id,
                actor_name=reporter.name,
                elo_change=opponent_side.delta,
                extra={"score": match.score, "autoValidateAt": deadline.isoformat()},
            ),
        )
    return match
