"""Badge catalog management and auto-awarding logic."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import uuid
from typing import Iterable

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_errors import safe_rollback
from ..models import Badge, Match, Player, PlayerBadge, RatingLedgerEntry
from .ledger import REASON_WIN

LOGGER = logging.getLogger(__name__)


@dataclass
class BadgeDefinition:
    id: str
    name: str
    icon: str | None
    category: str
    description: str | None
    rule: dict | None


BADGE_DEFINITIONS: list[BadgeDefinition] = [
    BadgeDefinition(
        id="first_match",
        name="First Steps",
        icon="👟",
        category="milestone",
        description="Played a first validated match.",
        rule={"type": "matches_played_at_least", "threshold": 1},
    ),
    BadgeDefinition(
        id="first_win",
        name="First Win",
        icon="🎉",
        category="milestone",
        description="Won a first validated match.",
        rule={"type": "wins_at_least", "threshold": 1},
    ),
    BadgeDefinition(
        id="veteran_50",
        name="Veteran",
        icon="🎖️",
        category="milestone",
        description="Played 50 validated matches.",
        rule={"type": "matches_played_at_least", "threshold": 50},
    ),
    BadgeDefinition(
        id="veteran_100",
        name="Legend",
        icon="🏅",
        category="milestone",
        description="Played 100 validated matches.",
        rule={"type": "matches_played_at_least", "threshold": 100},
    ),
    BadgeDefinition(
        id="elo_1500",
        name="First Summit",
        icon="⛰️",
        category="skill",
        description="Reached a 1500 rating.",
        rule={"type": "best_elo_at_least", "threshold": 1500},
    ),
    BadgeDefinition(
        id="elo_1800",
        name="Confirmed Expert",
        icon="🏔️",
        category="skill",
        description="Reached an 1800 rating.",
        rule={"type": "best_elo_at_least", "threshold": 1800},
    ),
    BadgeDefinition(
        id="elo_2000",
        name="Grand Master",
        icon="🗻",
        category="skill",
        description="Reached a 2000 rating.",
        rule={"type": "best_elo_at_least", "threshold": 2000},
    ),
    BadgeDefinition(
        id="giant_killer",
        name="Giant Killer",
        icon="⚔️",
        category="special",
        description="Won 3 matches against players rated 100+ points higher.",
        rule={"type": "upset_wins_at_least", "threshold": 3},
    ),
    BadgeDefinition(
        id="explorer",
        name="Explorer",
        icon="🗺️",
        category="special",
        description="Played validated matches against 10 different opponents.",
        rule={"type": "unique_opponents_at_least", "threshold": 10},
    ),
]


@dataclass
class PlayerBadgeSnapshot:
    player_id: str
    matches_played: int
    wins: int
    best_elo: int
    upset_wins: int
    unique_opponents: int


async def sync_badge_catalog(session: AsyncSession) -> None:
    existing = {
        b.id: b for b in (await session.execute(select(Badge))).scalars().all()
    }
    updated = False
    for definition in BADGE_DEFINITIONS:
        badge = existing.get(definition.id)
        if not badge:
            session.add(
                Badge(
                    id=definition.id,
                    name=definition.name,
                    icon=definition.icon,
                    category=definition.category,
                    description=definition.description,
                    rule=definition.rule,
                )
            )
            updated = True
            continue

        for field in ("name", "icon", "category", "description", "rule"):
            new_value = getattr(definition, field)
            if getattr(badge, field) != new_value:
                setattr(badge, field, new_value)
                updated = True

    if updated:
        await session.commit()


async def _collect_snapshot(session: AsyncSession, player_id: str) -> PlayerBadgeSnapshot | None:
    player = (
        await session.execute(
            select(Player)
            .where(Player.id == player_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if player is None:
        return None

    win_rows = (
        await session.execute(
            select(RatingLedgerEntry.meta).where(
                RatingLedgerEntry.player_id == player_id,
                RatingLedgerEntry.reason == REASON_WIN,
            )
        )
    ).scalars().all()
    upset_wins = sum(
        1
        for meta in win_rows
        if any(d.get("type") == "upset" for d in (meta or {}).get("details") or [])
    )

    pairs = (
        await session.execute(
            select(Match.player1_id, Match.player2_id).where(
                Match.validated.is_(True),
                or_(Match.player1_id == player_id, Match.player2_id == player_id),
            )
        )
    ).all()
    opponents = {p2 if p1 == player_id else p1 for p1, p2 in pairs}

    return PlayerBadgeSnapshot(
        player_id=player_id,
        matches_played=player.matches_played or 0,
        wins=player.wins or 0,
        best_elo=player.best_elo or 0,
        upset_wins=upset_wins,
        unique_opponents=len(opponents),
    )


def _rule_matches(rule: dict | None, snapshot: PlayerBadgeSnapshot) -> bool:
    if not rule:
        return False
    rule_type = rule.get("type")
    threshold = int(rule.get("threshold") or 0)
    if rule_type == "matches_played_at_least":
        return snapshot.matches_played >= threshold
    if rule_type == "wins_at_least":
        return snapshot.wins >= threshold
    if rule_type == "best_elo_at_least":
        return snapshot.best_elo >= threshold
    if rule_type == "upset_wins_at_least":
        return snapshot.upset_wins >= threshold
    if rule_type == "unique_opponents_at_least":
        return snapshot.unique_opponents >= threshold
    return False


async def award_badges_for_player(
    session: AsyncSession, player_id: str, definitions: Iterable[BadgeDefinition] | None = None
) -> list[str]:
    badge_definitions = list(definitions or BADGE_DEFINITIONS)
    snapshot = await _collect_snapshot(session, player_id)
    if snapshot is None:
        return []

    existing_badges = set(
        (
            await session.execute(
                select(PlayerBadge.badge_id).where(PlayerBadge.player_id == player_id)
            )
        ).scalars()
    )

    awarded: list[str] = []
    for definition in badge_definitions:
        if definition.id in existing_badges or not _rule_matches(definition.rule, snapshot):
            continue
        session.add(
            PlayerBadge(
                id=uuid.uuid4().hex,
                player_id=player_id,
                badge_id=definition.id,
            )
        )
        awarded.append(definition.id)

    if awarded:
        await session.commit()
    return awarded


async def load_player_badges(session: AsyncSession, player_id: str) -> list[tuple[PlayerBadge, Badge]]:
    rows = (
        await session.execute(
            select(PlayerBadge, Badge)
            .join(Badge, Badge.id == PlayerBadge.badge_id)
            .where(PlayerBadge.player_id == player_id)
            .order_by(PlayerBadge.earned_at.desc())
        )
    ).all()
    return rows


class BadgeChecker:
    """Awards achievements once a match has been resolved.

    Runs after the resolution has committed; any failure is logged and
    swallowed so it cannot affect the rating outcome.
    """

    async def on_match_resolved(
        self,
        session: AsyncSession,
        player1_id: str,
        player2_id: str,
        winner_id: str,
        context: dict | None = None,
    ) -> dict[str, list[str]]:
        awarded: dict[str, list[str]] = {}
        try:
            await sync_badge_catalog(session)
            for player_id in (player1_id, player2_id):
                awarded[player_id] = await award_badges_for_player(session, player_id)
        except SQLAlchemyError:
            await safe_rollback(session)
            LOGGER.exception(
                "Badge check failed for match %s",
                (context or {}).get("matchId"),
            )
            return awarded

        if any(awarded.values()):
            LOGGER.info(
                "Awarded badges after match %s (winner %s): %s",
                (context or {}).get("matchId"),
                winner_id,
                {pid: ids for pid, ids in awarded.items() if ids},
            )
        return awarded
