from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..db_errors import is_missing_table_error, safe_rollback
from ..exceptions import PlayerNotFound
from ..models import Player
from ..schemas import BadgeOut, PlayerOut, RatingHistoryEntryOut, RatingHistoryOut
from ..services.badges import load_player_badges
from ..services.ledger import list_player_history
from ..services.rating import k_factor, k_factor_label
from ..time_utils import coerce_utc
from .auth import get_current_player

router = APIRouter(prefix="/players", tags=["players"])


def player_out(p: Player) -> PlayerOut:
    matches_played = p.matches_played or 0
    return PlayerOut(
        id=p.id,
        name=p.name,
        clubId=p.club_id,
        isAdmin=bool(p.is_admin),
        currentElo=p.current_elo,
        bestElo=p.best_elo,
        matchesPlayed=matches_played,
        wins=p.wins or 0,
        losses=p.losses or 0,
        lastMatchAt=coerce_utc(p.last_match_at),
        kFactor=k_factor(matches_played),
        kFactorLabel=k_factor_label(matches_played),
    )


async def _require_player(session: AsyncSession, player_id: str) -> Player:
    p = await session.get(Player, player_id)
    if p is None:
        raise PlayerNotFound(player_id)
    return p


# GET /api/v0/players/me
@router.get("/me", response_model=PlayerOut)
async def get_me(player: Player = Depends(get_current_player)):
    return player_out(player)


# GET /api/v0/players/{player_id}
@router.get("/{player_id}", response_model=PlayerOut)
async def get_player(
    player_id: str,
    session: AsyncSession = Depends(get_session),
    _: Player = Depends(get_current_player),
):
    return player_out(await _require_player(session, player_id))


# GET /api/v0/players/{player_id}/rating-history
@router.get("/{player_id}/rating-history", response_model=RatingHistoryOut)
async def get_rating_history(
    player_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    _: Player = Depends(get_current_player),
):
    await _require_player(session, player_id)
    entries = await list_player_history(session, player_id, limit=limit, offset=offset)
    return RatingHistoryOut(
        playerId=player_id,
        items=[
            RatingHistoryEntryOut(
                matchId=e.match_id,
                eloAfter=e.elo_after,
                delta=e.delta,
                reason=e.reason,
                metadata=e.meta or {},
                recordedAt=coerce_utc(e.recorded_at),
            )
            for e in entries
        ],
        limit=limit,
        offset=offset,
    )


# GET /api/v0/players/{player_id}/badges
@router.get("/{player_id}/badges", response_model=list[BadgeOut])
async def list_player_badges(
    player_id: str,
    session: AsyncSession = Depends(get_session),
    _: Player = Depends(get_current_player),
):
    await _require_player(session, player_id)
    try:
        rows = await load_player_badges(session, player_id)
    except SQLAlchemyError as exc:
        await safe_rollback(session)
        if is_missing_table_error(exc, "player_badge"):
            return []
        raise
    return [
        BadgeOut(
            id=badge.id,
            name=badge.name,
            icon=badge.icon,
            category=badge.category,
            description=badge.description,
            earnedAt=coerce_utc(pb.earned_at),
        )
        for pb, badge in rows
    ]
