from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from .rating import MATCH_FORMATS, infer_match_format, split_sets


class ValidationError(Exception):
    """Raised when a submitted match report is invalid."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


MAX_GAMES_PER_SET = 7
MAX_TIEBREAK_POINTS = 30
MIN_TIEBREAK_POINTS = 10
MAX_BACKDATE_DAYS = 30


def _is_super_tiebreak(a: int, b: int) -> bool:
    return max(a, b) >= MIN_TIEBREAK_POINTS


def validate_tennis_score(score: str) -> List[Tuple[int, int]]:
    """Validate a singles tennis score such as ``"6-4 3-6 10-7"``.

    Rules:
    - One to three sets, written ``A-B`` and separated by spaces or commas
    - Regular sets go up to ``MAX_GAMES_PER_SET`` games and cannot be tied
    - Only the final set may be a match tie-break (first to 10, win by 2)
    - A match tie-break is only allowed as a deciding set
    """

    if not isinstance(score, str) or not score.strip():
        raise ValidationError("A score is required.")

    tokens = score.replace(",", " ").split()
    sets = split_sets(score)
    if len(sets) != len(tokens):
        raise ValidationError("Each set must be written as games-games, e.g. 6-4.")
    if len(sets) == 0:
        raise ValidationError("At least one set is required.")
    if len(sets) > 3:
        raise ValidationError("Too many sets. Max allowed is 3.")

    for i, (a, b) in enumerate(sets, start=1):
        if a == b:
            raise ValidationError(f"Set #{i} cannot be a tie.")
        if _is_super_tiebreak(a, b):
            if i != len(sets) or i == 1:
                raise ValidationError(
                    f"Set #{i}: a match tie-break can only decide the final set."
                )
            if max(a, b) > MAX_TIEBREAK_POINTS:
                raise ValidationError(
                    f"Set #{i}: tie-break points must be <= {MAX_TIEBREAK_POINTS}."
                )
            if abs(a - b) < 2:
                raise ValidationError(f"Set #{i}: a tie-break must be won by 2 points.")
            continue
        if max(a, b) > MAX_GAMES_PER_SET:
            raise ValidationError(
                f"Set #{i} games must be <= {MAX_GAMES_PER_SET}."
            )

    return sets


def sets_won(sets: List[Tuple[int, int]]) -> Tuple[int, int]:
    player1 = sum(1 for a, b in sets if a > b)
    return player1, len(sets) - player1


def validate_match_report(
    *,
    reporter_id: str,
    opponent_id: str,
    winner_id: str,
    score: str,
    match_format: Optional[str],
    played_at: datetime,
    now: datetime,
) -> str:
    """Validate a report and return the effective match format.

    ``score`` is written from the reporter's point of view (reporter games
    first) and must agree with ``winner_id``.
    """

    if reporter_id == opponent_id:
        raise ValidationError("You cannot report a match against yourself.")
    if winner_id not in (reporter_id, opponent_id):
        raise ValidationError("The winner must be one of the two players.")
    if match_format is not None and match_format not in MATCH_FORMATS:
        raise ValidationError(
            f"Unknown match format. Use one of: {', '.join(MATCH_FORMATS)}."
        )

    sets = validate_tennis_score(score)
    reporter_sets, opponent_sets = sets_won(sets)
    if reporter_sets == opponent_sets:
        raise ValidationError("The score does not designate a winner.")
    score_winner = reporter_id if reporter_sets > opponent_sets else opponent_id
    if score_winner != winner_id:
        raise ValidationError("The score does not match the declared winner.")

    if played_at > now:
        raise ValidationError("A match cannot be played in the future.")
    if played_at < now - timedelta(days=MAX_BACKDATE_DAYS):
        raise ValidationError(
            f"Matches older than {MAX_BACKDATE_DAYS} days cannot be reported."
        )

    return match_format or infer_match_format(score)
