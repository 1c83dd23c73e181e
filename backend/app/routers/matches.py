from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import MatchNotFound, NotMatchParticipant
from ..models import Match, Player
from ..schemas import (
    ContestIn,
    ContestReceiptOut,
    ContestResolutionIn,
    ContestStatusOut,
    EloBreakdownOut,
    MatchIdOut,
    MatchOut,
    MatchReportIn,
    RatingChangeOut,
    RejectedMatchOut,
    ResolvedMatchOut,
    SideBreakdownOut,
)
from ..services.badges import BadgeChecker
from ..services.match_state import MatchLifecycle
from ..services.match_validation import ResolvedMatch, ValidationWorkflow
from ..services.notifications import Notifier
from ..time_utils import coerce_utc
from .auth import contest_rate_limit, get_current_player, limiter, write_rate_limit

router = APIRouter(prefix="/matches", tags=["matches"])


def get_workflow() -> ValidationWorkflow:
    return ValidationWorkflow(Notifier(), BadgeChecker())


def _match_out(m: Match) -> MatchOut:
    return MatchOut(
        id=m.id,
        clubId=m.club_id,
        player1Id=m.player1_id,
        player2Id=m.player2_id,
        winnerId=m.winner_id,
        score=m.score,
        matchFormat=m.match_format,
        playedAt=coerce_utc(m.played_at),
        status=MatchLifecycle.from_match(m).label,
        reportedBy=m.reported_by,
        validated=bool(m.validated),
        validatedAt=coerce_utc(m.validated_at),
        validatedBy=m.validated_by,
        autoValidated=bool(m.auto_validated),
        autoValidateAt=coerce_utc(m.auto_validate_at),
        contested=bool(m.contested),
        contestedBy=m.contested_by,
        contestedAt=coerce_utc(m.contested_at),
        contestReason=m.contest_reason,
        contestResolution=m.contest_resolution,
        contestResolvedAt=coerce_utc(m.contest_resolved_at),
        player1EloBefore=m.player1_elo_before,
        player1EloAfter=m.player1_elo_after,
        player2EloBefore=m.player2_elo_before,
        player2EloAfter=m.player2_elo_after,
        createdAt=coerce_utc(m.created_at),
    )


def _resolved_out(resolved: ResolvedMatch) -> ResolvedMatchOut:
    return ResolvedMatchOut(
        matchId=resolved.match_id,
        winnerId=resolved.winner_id,
        validatedAt=resolved.validated_at,
        validatedBy=resolved.validated_by,
        autoValidated=resolved.auto_validated,
        changes=[
            RatingChangeOut(
                playerId=c.player_id,
                eloBefore=c.elo_before,
                eloAfter=c.elo_after,
                delta=c.delta,
                won=c.won,
            )
            for c in resolved.changes
        ],
    )


async def _get_visible_match(session: AsyncSession, mid: str, player: Player) -> Match:
    m = await session.get(Match, mid)
    if m is None:
        raise MatchNotFound(mid)
    if player.id not in (m.player1_id, m.player2_id):
        if not (player.is_admin and (m.club_id is None or m.club_id == player.club_id)):
            raise NotMatchParticipant(mid)
    return m


# POST /api/v0/matches
@router.post("", response_model=MatchIdOut, status_code=201)
@limiter.limit(write_rate_limit)
async def report_match_route(
    request: Request,
    body: MatchReportIn,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
) -> MatchIdOut:
    match = await workflow.report(
        session,
        reporter_id=player.id,
        opponent_id=body.opponentId,
        winner_id=body.winnerId,
        score=body.score,
        played_at=body.playedAt,
        match_format=body.matchFormat,
    )
    return MatchIdOut(id=match.id, autoValidateAt=coerce_utc(match.auto_validate_at))


# GET /api/v0/matches
@router.get("", response_model=list[MatchOut])
async def list_my_matches(
    status: Literal["pending", "validated", "all"] = Query("all"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    stmt = select(Match).where(
        or_(Match.player1_id == player.id, Match.player2_id == player.id)
    )
    if status == "pending":
        stmt = stmt.where(Match.validated.is_(False))
    elif status == "validated":
        stmt = stmt.where(Match.validated.is_(True))
    stmt = stmt.order_by(Match.played_at.desc(), Match.id).limit(limit).offset(offset)
    rows = (await session.execute(stmt)).scalars().all()
    return [_match_out(m) for m in rows]


# GET /api/v0/matches/{mid}
@router.get("/{mid}", response_model=MatchOut)
async def get_match(
    mid: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    return _match_out(await _get_visible_match(session, mid, player))


# GET /api/v0/matches/{mid}/elo-breakdown
@router.get("/{mid}/elo-breakdown", response_model=EloBreakdownOut)
async def get_elo_breakdown(
    mid: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    m = await _get_visible_match(session, mid, player)
    snapshot = m.modifiers_applied or {}
    loser_id = m.player2_id if m.winner_id == m.player1_id else m.player1_id

    def side(key: str, player_id: str) -> SideBreakdownOut:
        data = snapshot.get(key)
        if data:
            return SideBreakdownOut(**data)
        # Older rows may carry no breakdown; fall back to the frozen columns.
        if player_id == m.player1_id:
            before, after = m.player1_elo_before, m.player1_elo_after
        else:
            before, after = m.player2_elo_before, m.player2_elo_after
        return SideBreakdownOut(
            playerId=player_id, eloBefore=before, eloAfter=after, delta=after - before
        )

    return EloBreakdownOut(
        matchId=m.id,
        status=MatchLifecycle.from_match(m).label,
        matchFormat=snapshot.get("matchFormat") or m.match_format,
        winner=side("winner", m.winner_id),
        loser=side("loser", loser_id),
    )


# POST /api/v0/matches/{mid}/confirm
@router.post("/{mid}/confirm", response_model=ResolvedMatchOut)
@limiter.limit(write_rate_limit)
async def confirm_match(
    request: Request,
    mid: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
):
    return _resolved_out(await workflow.confirm(session, mid, player.id))


# POST /api/v0/matches/{mid}/reject
@router.post("/{mid}/reject", response_model=RejectedMatchOut)
@limiter.limit(write_rate_limit)
async def reject_match(
    request: Request,
    mid: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
):
    rejected = await workflow.reject(session, mid, player.id)
    return RejectedMatchOut(
        matchId=rejected.match_id,
        rejectedBy=rejected.rejected_by,
        reportedBy=rejected.reported_by,
    )


# POST /api/v0/matches/{mid}/contest
@router.post("/{mid}/contest", response_model=ContestReceiptOut, status_code=201)
@limiter.limit(contest_rate_limit)
async def contest_match(
    request: Request,
    mid: str,
    body: ContestIn,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
):
    receipt = await workflow.contest(session, mid, player.id, body.reason)
    return ContestReceiptOut(
        matchId=receipt.match_id,
        contestedBy=receipt.contested_by,
        contestedAt=receipt.contested_at,
        reason=receipt.reason,
        adminsNotified=receipt.admins_notified,
        contestsRemaining=receipt.contests_remaining,
    )


# GET /api/v0/matches/{mid}/contest
@router.get("/{mid}/contest", response_model=ContestStatusOut)
async def get_contest_status(
    mid: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
):
    status = await workflow.get_contest_status(session, mid, player.id)
    return ContestStatusOut(
        matchId=status.match_id,
        validated=status.validated,
        validatedAt=status.validated_at,
        contested=status.contested,
        contestedBy=status.contested_by,
        contestedAt=status.contested_at,
        contestReason=status.contest_reason,
        contestResolution=status.contest_resolution,
        contestResolvedAt=status.contest_resolved_at,
        canContest=status.can_contest,
        blockedBy=status.blocked_by.value if status.blocked_by else None,
        windowEndsAt=status.window_ends_at,
        contestsUsedThisMonth=status.contests_used_this_month,
        monthlyLimit=status.monthly_limit,
    )


# POST /api/v0/matches/{mid}/contest/resolution
@router.post("/{mid}/contest/resolution", response_model=MatchOut)
async def resolve_contest(
    mid: str,
    body: ContestResolutionIn,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
    workflow: ValidationWorkflow = Depends(get_workflow),
):
    match = await workflow.resolve_contest(session, mid, player.id, body.resolution)
    return _match_out(match)
