"""Pure ELO rating engine for singles tennis matches.

Nothing in this module touches the database or the clock: every input,
including ``now`` for the history windows, is passed in explicitly so the
same inputs always produce the same deltas. That is what allows the
before/after snapshot to be frozen on the match at report time.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Sequence

MIN_ELO = 100

MATCH_FORMATS = ("one_set", "two_sets", "three_sets", "super_tiebreak")

FORMAT_COEFFICIENTS: dict[str, float] = {
    "one_set": 0.5,
    "two_sets": 0.8,
    "three_sets": 1.0,
    "super_tiebreak": 0.3,
}

FORMAT_LABELS: dict[str, str] = {
    "one_set": "1 set",
    "two_sets": "2 sets",
    "three_sets": "3 sets",
    "super_tiebreak": "Super tie-break",
}

_SET_RE = re.compile(r"^(\d{1,2})-(\d{1,2})(?:\(\d+\))?$")


@dataclass(frozen=True)
class KFactorBand:
    """K applies while ``matches_played < below`` (``None`` is open-ended)."""

    below: int | None
    k: int
    label: str


DEFAULT_K_BANDS: tuple[KFactorBand, ...] = (
    KFactorBand(below=10, k=40, label="New player"),
    KFactorBand(below=30, k=32, label="Intermediate"),
    KFactorBand(below=100, k=24, label="Established"),
    KFactorBand(below=None, k=16, label="Expert"),
)


@dataclass(frozen=True)
class RatingPolicy:
    """Tunable constants of the rating model.

    The K bands must be ordered by ``below`` and K must never increase as a
    player gains experience; both are checked on construction.
    """

    k_bands: tuple[KFactorBand, ...] = DEFAULT_K_BANDS
    floor: int = MIN_ELO
    new_opponent_bonus: float = 1.15
    repetition_penalty_per_match: float = 0.05
    repetition_min_modifier: float = 0.70
    repetition_window_days: int = 30
    upset_bonus: float = 1.20
    upset_elo_threshold: int = 100
    weekly_diversity_bonus: float = 1.10
    weekly_diversity_min_opponents: int = 3
    weekly_window_days: int = 7
    format_coefficients: Mapping[str, float] = field(
        default_factory=lambda: dict(FORMAT_COEFFICIENTS)
    )

    def __post_init__(self) -> None:
        if not self.k_bands:
            raise ValueError("at least one K-factor band is required")
        if self.k_bands[-1].below is not None:
            raise ValueError("the last K-factor band must be open-ended")

        previous_below = -1
        previous_k = math.inf
        for band in self.k_bands:
            if band.below is not None:
                if band.below <= previous_below:
                    raise ValueError("K-factor bands must be ordered by match count")
                previous_below = band.below
            if band.k > previous_k:
                raise ValueError("K-factor must not increase with experience")
            previous_k = band.k


DEFAULT_POLICY = RatingPolicy()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def expected_score(player_elo: float, opponent_elo: float) -> float:
    """Probability that ``player_elo`` beats ``opponent_elo``."""

    return 1 / (1 + 10 ** ((opponent_elo - player_elo) / 400))


def _band_for(matches_played: int, policy: RatingPolicy) -> KFactorBand:
    for band in policy.k_bands:
        if band.below is None or matches_played < band.below:
            return band
    return policy.k_bands[-1]  # pragma: no cover - guarded by __post_init__


def k_factor(matches_played: int, policy: RatingPolicy = DEFAULT_POLICY) -> int:
    return _band_for(max(0, matches_played), policy).k


def k_factor_label(matches_played: int, policy: RatingPolicy = DEFAULT_POLICY) -> str:
    return _band_for(max(0, matches_played), policy).label


def margin_modifier(winner_games: int, loser_games: int) -> float:
    margin = winner_games - loser_games
    if margin >= 5:
        return 1.15
    if margin >= 3:
        return 1.05
    if margin <= 1:
        return 0.90
    return 1.0


def split_sets(score: str) -> list[tuple[int, int]]:
    """Parse ``"6-4 3-6 10-8"`` (commas allowed) into per-set game pairs.

    Tie-break points in parentheses (``7-6(5)``) are ignored. Tokens that
    are not set scores are skipped.
    """

    sets: list[tuple[int, int]] = []
    for token in (score or "").replace(",", " ").split():
        m = _SET_RE.match(token)
        if m:
            sets.append((int(m.group(1)), int(m.group(2))))
    return sets


def parse_score_games(score: str, winner_is_player1: bool) -> tuple[int, int]:
    """Return ``(winner_games, loser_games)`` totalled across all sets."""

    player1_games = 0
    player2_games = 0
    for games1, games2 in split_sets(score):
        player1_games += games1
        player2_games += games2
    if winner_is_player1:
        return player1_games, player2_games
    return player2_games, player1_games


def infer_match_format(score: str) -> str:
    sets = split_sets(score)
    if sets and max(sets[-1]) >= 10:
        return "super_tiebreak"
    if len(sets) == 1:
        return "one_set"
    if len(sets) >= 3:
        return "three_sets"
    return "two_sets"


@dataclass(frozen=True)
class PastMatch:
    opponent_id: str
    played_at: datetime


@dataclass(frozen=True)
class HistoryStats:
    is_new_opponent: bool
    recent_matches_vs_opponent: int
    weekly_unique_opponents: int


def build_history_context(
    history: Iterable[PastMatch],
    opponent_id: str,
    now: datetime,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> HistoryStats:
    """Summarise a player's validated history relative to ``opponent_id``."""

    repetition_cutoff = now - timedelta(days=policy.repetition_window_days)
    weekly_cutoff = now - timedelta(days=policy.weekly_window_days)

    played_before = False
    recent = 0
    weekly_opponents: set[str] = set()
    for past in history:
        if past.opponent_id == opponent_id:
            played_before = True
            if past.played_at >= repetition_cutoff:
                recent += 1
        if past.played_at >= weekly_cutoff:
            weekly_opponents.add(past.opponent_id)

    return HistoryStats(
        is_new_opponent=not played_before,
        recent_matches_vs_opponent=recent,
        weekly_unique_opponents=len(weekly_opponents),
    )


@dataclass(frozen=True)
class ModifierDetail:
    type: str
    value: float
    description: str

    def as_dict(self) -> dict:
        return {"type": self.type, "value": self.value, "description": self.description}


@dataclass(frozen=True)
class ModifiersResult:
    total_modifier: float = 1.0
    details: tuple[ModifierDetail, ...] = ()

    def as_dict(self) -> dict:
        return {
            "totalModifier": self.total_modifier,
            "details": [d.as_dict() for d in self.details],
        }


@dataclass(frozen=True)
class ModifierContext:
    player_elo: int
    opponent_elo: int
    is_winner: bool
    is_new_opponent: bool = False
    recent_matches_vs_opponent: int = 0
    weekly_unique_opponents: int = 0
    match_format: str | None = None
    winner_games: int | None = None
    loser_games: int | None = None


def compute_modifiers(
    ctx: ModifierContext, policy: RatingPolicy = DEFAULT_POLICY
) -> ModifiersResult:
    details: list[ModifierDetail] = []

    if ctx.is_new_opponent:
        details.append(
            ModifierDetail(
                "new_opponent",
                policy.new_opponent_bonus,
                f"New opponent bonus (+{_percent(policy.new_opponent_bonus)}%)",
            )
        )
    elif ctx.recent_matches_vs_opponent > 0:
        value = max(
            policy.repetition_min_modifier,
            1 - ctx.recent_matches_vs_opponent * policy.repetition_penalty_per_match,
        )
        if value < 1:
            count = ctx.recent_matches_vs_opponent
            details.append(
                ModifierDetail(
                    "repetition",
                    round(value, 2),
                    f"Repeat opponent penalty (-{_percent(value)}%, "
                    f"{count} recent match{'es' if count > 1 else ''})",
                )
            )

    elo_gap = ctx.opponent_elo - ctx.player_elo
    if ctx.is_winner and elo_gap >= policy.upset_elo_threshold:
        details.append(
            ModifierDetail(
                "upset",
                policy.upset_bonus,
                f"Upset bonus (+{_percent(policy.upset_bonus)}%, beat a player "
                f"{elo_gap} points higher)",
            )
        )

    if ctx.weekly_unique_opponents >= policy.weekly_diversity_min_opponents:
        details.append(
            ModifierDetail(
                "weekly_diversity",
                policy.weekly_diversity_bonus,
                f"Weekly diversity bonus (+{_percent(policy.weekly_diversity_bonus)}%, "
                f"{ctx.weekly_unique_opponents} opponents this week)",
            )
        )

    if ctx.match_format:
        coefficient = policy.format_coefficients.get(ctx.match_format, 1.0)
        if coefficient != 1.0:
            label = FORMAT_LABELS.get(ctx.match_format, ctx.match_format)
            details.append(
                ModifierDetail("match_format", coefficient, f"Format: {label} (x{coefficient})")
            )

    if ctx.winner_games is not None and ctx.loser_games is not None:
        margin = margin_modifier(ctx.winner_games, ctx.loser_games)
        if margin != 1.0:
            details.append(
                ModifierDetail(
                    "margin",
                    margin,
                    f"Games margin {ctx.winner_games}-{ctx.loser_games} (x{margin})",
                )
            )

    total = 1.0
    for detail in details:
        total *= detail.value

    return ModifiersResult(
        total_modifier=_round_half_up(total * 100) / 100,
        details=tuple(details),
    )


def _percent(value: float) -> int:
    return _round_half_up(abs(value - 1) * 100)


@dataclass(frozen=True)
class PlayerRatingInput:
    player_id: str
    elo: int
    matches_played: int
    history: Sequence[PastMatch] = ()


@dataclass(frozen=True)
class MatchContext:
    now: datetime
    match_format: str | None = None
    winner_games: int | None = None
    loser_games: int | None = None


@dataclass(frozen=True)
class SideBreakdown:
    player_id: str
    elo_before: int
    elo_after: int
    delta: int
    k_factor: int
    k_factor_label: str
    expected_score: float
    modifiers: ModifiersResult

    def as_dict(self) -> dict:
        return {
            "playerId": self.player_id,
            "eloBefore": self.elo_before,
            "eloAfter": self.elo_after,
            "delta": self.delta,
            "kFactor": self.k_factor,
            "kFactorLabel": self.k_factor_label,
            "expectedScore": round(self.expected_score, 4),
            "totalModifier": self.modifiers.total_modifier,
            "details": [d.as_dict() for d in self.modifiers.details],
        }


@dataclass(frozen=True)
class DeltaResult:
    winner: SideBreakdown
    loser: SideBreakdown
    match_format: str | None = None

    @property
    def winner_delta(self) -> int:
        return self.winner.delta

    @property
    def loser_delta(self) -> int:
        return self.loser.delta

    def snapshot(self) -> dict:
        """Breakdown persisted on the match as ``modifiers_applied``."""

        return {
            "matchFormat": self.match_format,
            "winner": self.winner.as_dict(),
            "loser": self.loser.as_dict(),
        }


def apply_delta(elo: int, delta: int, policy: RatingPolicy = DEFAULT_POLICY) -> int:
    return max(policy.floor, elo + delta)


def _side(
    player: PlayerRatingInput,
    opponent: PlayerRatingInput,
    *,
    is_winner: bool,
    context: MatchContext,
    policy: RatingPolicy,
) -> SideBreakdown:
    stats = build_history_context(player.history, opponent.player_id, context.now, policy)
    modifiers = compute_modifiers(
        ModifierContext(
            player_elo=player.elo,
            opponent_elo=opponent.elo,
            is_winner=is_winner,
            is_new_opponent=stats.is_new_opponent,
            recent_matches_vs_opponent=stats.recent_matches_vs_opponent,
            weekly_unique_opponents=stats.weekly_unique_opponents,
            match_format=context.match_format,
            winner_games=context.winner_games,
            loser_games=context.loser_games,
        ),
        policy,
    )
    k = k_factor(player.matches_played, policy)
    expected = expected_score(player.elo, opponent.elo)
    actual = 1.0 if is_winner else 0.0
    delta = _round_half_up(k * modifiers.total_modifier * (actual - expected))
    return SideBreakdown(
        player_id=player.player_id,
        elo_before=player.elo,
        elo_after=apply_delta(player.elo, delta, policy),
        delta=delta,
        k_factor=k,
        k_factor_label=k_factor_label(player.matches_played, policy),
        expected_score=expected,
        modifiers=modifiers,
    )


def compute_delta(
    winner: PlayerRatingInput,
    loser: PlayerRatingInput,
    context: MatchContext,
    policy: RatingPolicy = DEFAULT_POLICY,
) -> DeltaResult:
    """Compute both sides' rating change for a completed match.

    Each side uses its own K-factor and modifier total, so the two deltas
    are not expected to cancel out.
    """

    return DeltaResult(
        winner=_side(winner, loser, is_winner=True, context=context, policy=policy),
        loser=_side(loser, winner, is_winner=False, context=context, policy=policy),
        match_format=context.match_format,
    )
