"""Human-triggered operations on reported matches.

Each public method returns a small result object or raises one member of
the :class:`~app.exceptions.MatchWorkflowError` family. Authorisation is
checked on a fresh read of the match; the write itself is then delegated
to :mod:`app.services.match_store`, whose conditional statements are what
actually guarantee a rating is applied once.

Notifications and badge checks run after the resolution has committed and
can never undo it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import (
    AUTO_VALIDATE_AFTER_HOURS,
    CONTEST_WINDOW_DAYS,
    MAX_CONTESTS_PER_MONTH,
)
from ..db_errors import safe_rollback
from ..exceptions import (
    ClubAdminRequired,
    ContestQuotaExceeded,
    ContestWindowExpired,
    MatchAlreadyContested,
    MatchAlreadyValidated,
    MatchErrorKind,
    MatchNotContested,
    MatchNotFound,
    MatchWorkflowError,
    NotMatchParticipant,
    ReporterCannotRespond,
)
from ..models import Match, Player
from ..time_utils import coerce_utc, utcnow
from .badges import BadgeChecker
from .match_state import IllegalTransition, MatchAction, MatchLifecycle
from .match_store import (
    Resolution,
    contest_match,
    count_contests_this_month,
    load_match,
    record_contest_resolution,
    reject_match,
    resolve_manually,
)
from .notifications import (
    MATCH_AUTO_VALIDATED,
    MATCH_CONFIRMED,
    MATCH_CONTEST_RESOLVED,
    MATCH_CONTESTED,
    MATCH_CONTESTED_ADMIN,
    MATCH_REJECTED,
    MatchEvent,
    Notifier,
)
from .rating import DEFAULT_POLICY, RatingPolicy
from .reporting import report_match
from .validation import ValidationError

LOGGER = logging.getLogger(__name__)

MIN_CONTEST_REASON_LENGTH = 10
MAX_CONTEST_REASON_LENGTH = 1000


@dataclass(frozen=True)
class PlayerRatingChange:
    player_id: str
    elo_before: int
    elo_after: int
    delta: int
    won: bool


@dataclass(frozen=True)
class ResolvedMatch:
    match_id: str
    winner_id: str
    validated_at: datetime
    validated_by: str | None
    auto_validated: bool
    changes: tuple[PlayerRatingChange, ...]

    @classmethod
    def from_resolution(cls, resolution: Resolution) -> "ResolvedMatch":
        match = resolution.match
        return cls(
            match_id=match.id,
            winner_id=match.winner_id,
            validated_at=coerce_utc(match.validated_at),
            validated_by=match.validated_by,
            auto_validated=resolution.auto_validated,
            changes=tuple(
                PlayerRatingChange(
                    player_id=r.player_id,
                    elo_before=r.elo_before,
                    elo_after=r.elo_after,
                    delta=r.delta,
                    won=r.won,
                )
                for r in (
                    resolution.ratings[match.player1_id],
                    resolution.ratings[match.player2_id],
                )
            ),
        )

    def change_for(self, player_id: str) -> PlayerRatingChange | None:
        for change in self.changes:
            if change.player_id == player_id:
                return change
        return None


@dataclass(frozen=True)
class RejectedMatch:
    match_id: str
    rejected_by: str
    reported_by: str


@dataclass(frozen=True)
class ContestReceipt:
    match_id: str
    contested_by: str
    contested_at: datetime
    reason: str
    admins_notified: int
    contests_remaining: int


@dataclass(frozen=True)
class ContestStatus:
    match_id: str
    validated: bool
    validated_at: datetime | None
    contested: bool
    contested_by: str | None
    contested_at: datetime | None
    contest_reason: str | None
    contest_resolution: str | None
    contest_resolved_at: datetime | None
    can_contest: bool
    blocked_by: MatchErrorKind | None
    window_ends_at: datetime | None
    contests_used_this_month: int
    monthly_limit: int


def _other_player(match: Match, player_id: str) -> str:
    return match.player2_id if player_id == match.player1_id else match.player1_id


def _is_participant(match: Match, player_id: str) -> bool:
    return player_id in (match.player1_id, match.player2_id)


async def _player_names(session: AsyncSession, ids: Iterable[str]) -> dict[str, str]:
    rows = await session.execute(select(Player.id, Player.name).where(Player.id.in_(list(ids))))
    return {pid: name for pid, name in rows.all()}


async def _club_admin_ids(session: AsyncSession, club_id: str | None) -> list[str]:
    if not club_id:
        return []
    rows = await session.execute(
        select(Player.id).where(Player.club_id == club_id, Player.is_admin.is_(True))
    )
    return list(rows.scalars())


def resolution_events(resolution: Resolution, names: dict[str, str]) -> list[MatchEvent]:
    """Events announcing a resolution: the reporter for a manual confirm,
    both players for an automatic one."""

    match = resolution.match
    if resolution.auto_validated:
        return [
            MatchEvent(
                type=MATCH_AUTO_VALIDATED,
                recipient_id=pid,
                match_id=match.id,
                actor_id=_other_player(match, pid),
                actor_name=names.get(_other_player(match, pid)),
                elo_change=resolution.ratings[pid].delta,
            )
            for pid in (match.player1_id, match.player2_id)
        ]
    return [
        MatchEvent(
            type=MATCH_CONFIRMED,
            recipient_id=match.reported_by,
            match_id=match.id,
            actor_id=match.validated_by,
            actor_name=names.get(match.validated_by),
            elo_change=resolution.ratings[match.reported_by].delta,
        )
    ]


async def publish_resolution(
    session: AsyncSession,
    resolution: Resolution,
    notifier: Notifier | None,
    badge_checker: BadgeChecker | None,
) -> None:
    """Fire the post-commit side effects of a resolution. Never raises."""

    match = resolution.match
    try:
        if notifier is not None:
            names = await _player_names(session, (match.player1_id, match.player2_id))
            await notifier.emit_many(session, resolution_events(resolution, names))
        if badge_checker is not None:
            await badge_checker.on_match_resolved(
                session,
                match.player1_id,
                match.player2_id,
                match.winner_id,
                {"matchId": match.id, "autoValidated": resolution.auto_validated},
            )
    except Exception:
        await safe_rollback(session)
        LOGGER.exception("Post-resolution side effects failed for match %s", match.id)


class ValidationWorkflow:
    def __init__(
        self,
        notifier: Notifier | None = None,
        badge_checker: BadgeChecker | None = None,
        *,
        contest_window_days: int = CONTEST_WINDOW_DAYS,
        monthly_contest_limit: int = MAX_CONTESTS_PER_MONTH,
        auto_validate_after_hours: int = AUTO_VALIDATE_AFTER_HOURS,
        policy: RatingPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.notifier = notifier
        self.badge_checker = badge_checker
        self.contest_window_days = contest_window_days
        self.monthly_contest_limit = monthly_contest_limit
        self.auto_validate_after_hours = auto_validate_after_hours
        self.policy = policy
        self.clock = clock

    def _now(self) -> datetime:
        return coerce_utc(self.clock())

    async def _require_match(self, session: AsyncSession, match_id: str) -> Match:
        match = await load_match(session, match_id)
        if match is None:
            raise MatchNotFound(match_id)
        return match

    async def _check_response_allowed(
        self, session: AsyncSession, match_id: str, actor_id: str, action: MatchAction
    ) -> Match:
        try:
            match = await self._require_match(session, match_id)
            lifecycle = MatchLifecycle.from_match(match)
            try:
                lifecycle.apply(action)
            except IllegalTransition:
                if action is MatchAction.REJECT and not lifecycle.is_resolved:
                    raise MatchAlreadyContested(match_id) from None
                raise MatchAlreadyValidated(match_id) from None
            if not _is_participant(match, actor_id):
                raise NotMatchParticipant(match_id)
            if actor_id == match.reported_by:
                raise ReporterCannotRespond(match_id)
        except MatchWorkflowError:
            await safe_rollback(session)
            raise
        return match

    async def report(
        self,
        session: AsyncSession,
        *,
        reporter_id: str,
        opponent_id: str,
        winner_id: str,
        score: str,
        played_at: datetime | None = None,
        match_format: str | None = None,
    ) -> Match:
        now = self._now()
        return await report_match(
            session,
            reporter_id=reporter_id,
            opponent_id=opponent_id,
            winner_id=winner_id,
            score=score,
            played_at=played_at or now,
            now=now,
            match_format=match_format,
            auto_validate_after_hours=self.auto_validate_after_hours,
            notifier=self.notifier,
            policy=self.policy,
        )

    async def confirm(self, session: AsyncSession, match_id: str, actor_id: str) -> ResolvedMatch:
        await self._check_response_allowed(session, match_id, actor_id, MatchAction.CONFIRM)
        resolution = await resolve_manually(
            session, match_id, actor_id, self._now(), policy=self.policy
        )
        await publish_resolution(session, resolution, self.notifier, self.badge_checker)
        return ResolvedMatch.from_resolution(resolution)

    async def reject(self, session: AsyncSession, match_id: str, actor_id: str) -> RejectedMatch:
        match = await self._check_response_allowed(
            session, match_id, actor_id, MatchAction.REJECT
        )
        reported_by = match.reported_by
        await reject_match(session, match_id)
        LOGGER.info("Match %s rejected by %s", match_id, actor_id)

        if self.notifier is not None:
            names = await _player_names(session, [actor_id])
            await self.notifier.emit(
                session,
                MatchEvent(
                    type=MATCH_REJECTED,
                    recipient_id=reported_by,
                    match_id=match_id,
                    actor_id=actor_id,
                    actor_name=names.get(actor_id),
                ),
            )
        return RejectedMatch(match_id=match_id, rejected_by=actor_id, reported_by=reported_by)

    def _window_ends_at(self, match: Match) -> datetime | None:
        if not MatchLifecycle.from_match(match).is_resolved or match.validated_at is None:
            return None
        return coerce_utc(match.validated_at) + timedelta(days=self.contest_window_days)

    def _contest_blocker(
        self, match: Match, actor_id: str, now: datetime, used_this_month: int
    ) -> MatchErrorKind | None:
        """First rule that prevents ``actor_id`` from contesting, if any."""

        if not _is_participant(match, actor_id):
            return MatchErrorKind.NOT_PARTICIPANT
        if not MatchLifecycle.from_match(match).can(MatchAction.CONTEST):
            return MatchErrorKind.ALREADY_CONTESTED
        window_ends_at = self._window_ends_at(match)
        if match.validated and (window_ends_at is None or now >= window_ends_at):
            return MatchErrorKind.CONTEST_WINDOW_EXPIRED
        if used_this_month >= self.monthly_contest_limit:
            return MatchErrorKind.CONTEST_QUOTA_EXCEEDED
        return None

    def _contest_error(self, kind: MatchErrorKind, match_id: str) -> MatchWorkflowError:
        if kind is MatchErrorKind.NOT_PARTICIPANT:
            return NotMatchParticipant(match_id)
        if kind is MatchErrorKind.ALREADY_CONTESTED:
            return MatchAlreadyContested(match_id)
        if kind is MatchErrorKind.CONTEST_WINDOW_EXPIRED:
            return ContestWindowExpired(match_id, self.contest_window_days)
        return ContestQuotaExceeded(match_id, self.monthly_contest_limit)

    async def contest(
        self, session: AsyncSession, match_id: str, actor_id: str, reason: str
    ) -> ContestReceipt:
        reason = (reason or "").strip()
        if len(reason) < MIN_CONTEST_REASON_LENGTH:
            raise ValidationError(
                f"Please explain the contest in at least {MIN_CONTEST_REASON_LENGTH} characters."
            )
        if len(reason) > MAX_CONTEST_REASON_LENGTH:
            raise ValidationError(
                f"Contest reasons are limited to {MAX_CONTEST_REASON_LENGTH} characters."
            )

        now = self._now()
        try:
            match = await self._require_match(session, match_id)
            used = await count_contests_this_month(session, actor_id, now)
            blocker = self._contest_blocker(match, actor_id, now, used)
            if blocker is not None:
                raise self._contest_error(blocker, match_id)
        except MatchWorkflowError:
            await safe_rollback(session)
            raise

        match = await contest_match(
            session,
            match_id,
            actor_id,
            reason,
            now,
            window_days=self.contest_window_days,
            monthly_limit=self.monthly_contest_limit,
        )
        LOGGER.info("Match %s contested by %s", match_id, actor_id)

        other_id = _other_player(match, actor_id)
        admin_ids = [pid for pid in await _club_admin_ids(session, match.club_id) if pid != actor_id]
        if self.notifier is not None:
            names = await _player_names(session, [actor_id])
            common = {
                "match_id": match_id,
                "actor_id": actor_id,
                "actor_name": names.get(actor_id),
                "extra": {"reason": reason},
            }
            events = [MatchEvent(type=MATCH_CONTESTED, recipient_id=other_id, **common)]
            events.extend(
                MatchEvent(type=MATCH_CONTESTED_ADMIN, recipient_id=admin_id, **common)
                for admin_id in admin_ids
            )
            await self.notifier.emit_many(session, events)

        return ContestReceipt(
            match_id=match_id,
            contested_by=actor_id,
            contested_at=coerce_utc(match.contested_at),
            reason=reason,
            admins_notified=len(admin_ids),
            contests_remaining=max(0, self.monthly_contest_limit - used - 1),
        )

    async def _is_club_admin(self, session: AsyncSession, match: Match, player_id: str) -> bool:
        player = await session.get(Player, player_id)
        if player is None or not player.is_admin:
            return False
        return match.club_id is None or player.club_id == match.club_id

    async def get_contest_status(
        self, session: AsyncSession, match_id: str, actor_id: str
    ) -> ContestStatus:
        now = self._now()
        match = await self._require_match(session, match_id)
        if not _is_participant(match, actor_id) and not await self._is_club_admin(
            session, match, actor_id
        ):
            raise NotMatchParticipant(match_id)

        used = await count_contests_this_month(session, actor_id, now)
        blocker = self._contest_blocker(match, actor_id, now, used)
        return ContestStatus(
            match_id=match.id,
            validated=bool(match.validated),
            validated_at=coerce_utc(match.validated_at),
            contested=bool(match.contested),
            contested_by=match.contested_by,
            contested_at=coerce_utc(match.contested_at),
            contest_reason=match.contest_reason,
            contest_resolution=match.contest_resolution,
            contest_resolved_at=coerce_utc(match.contest_resolved_at),
            can_contest=blocker is None,
            blocked_by=blocker,
            window_ends_at=self._window_ends_at(match),
            contests_used_this_month=used,
            monthly_limit=self.monthly_contest_limit,
        )

    async def resolve_contest(
        self, session: AsyncSession, match_id: str, admin_id: str, resolution: str
    ) -> Match:
        try:
            match = await self._require_match(session, match_id)
            if not await self._is_club_admin(session, match, admin_id):
                raise ClubAdminRequired()
            try:
                MatchLifecycle.from_match(match).apply(MatchAction.RESOLVE_CONTEST)
            except IllegalTransition:
                raise MatchNotContested(match_id) from None
        except (MatchWorkflowError, ClubAdminRequired):
            await safe_rollback(session)
            raise

        match = await record_contest_resolution(session, match_id, resolution, self._now())
        LOGGER.info("Contest on match %s resolved as %s by %s", match_id, resolution, admin_id)

        if self.notifier is not None:
            names = await _player_names(session, [admin_id])
            await self.notifier.emit_many(
                session,
                [
                    MatchEvent(
                        type=MATCH_CONTEST_RESOLVED,
                        recipient_id=pid,
                        match_id=match_id,
                        actor_id=admin_id,
                        actor_name=names.get(admin_id),
                        extra={"resolution": resolution},
                    )
                    for pid in (match.player1_id, match.player2_id)
                ],
            )
        return match
