from datetime import datetime, timedelta, timezone

import pytest
from app.services.validation import (
    ValidationError,
    sets_won,
    validate_match_report,
    validate_tennis_score,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _report(**overrides):
    kwargs = dict(
        reporter_id="a",
        opponent_id="b",
        winner_id="a",
        score="6-4 6-3",
        match_format=None,
        played_at=NOW - timedelta(hours=2),
        now=NOW,
    )
    kwargs.update(overrides)
    return validate_match_report(**kwargs)


def test_accepts_valid_scores() -> None:
    assert validate_tennis_score("6-4") == [(6, 4)]
    assert validate_tennis_score("6-4, 3-6, 7-6(5)") == [(6, 4), (3, 6), (7, 6)]
    assert validate_tennis_score("6-4 3-6 10-8") == [(6, 4), (3, 6), (10, 8)]


@pytest.mark.parametrize(
    "score, msg",
    [
        ("", "score is required"),
        ("six-four", "games-games"),
        ("6-4 6-4 6-4 6-4", "too many sets"),
        ("6-6", "cannot be a tie"),
        ("9-7", "<= 7"),
        ("10-8", "only decide the final set"),
        ("10-8 6-4", "only decide the final set"),
        ("6-4 3-6 10-9", "won by 2"),
        ("6-4 3-6 32-30", "<= 30"),
    ],
    ids=[
        "empty",
        "not-a-set",
        "four-sets",
        "tie",
        "too-many-games",
        "tiebreak-only",
        "tiebreak-first",
        "tiebreak-margin",
        "tiebreak-points",
    ],
)
def test_rejects_invalid_scores(score, msg) -> None:
    with pytest.raises(ValidationError) as exc:
        validate_tennis_score(score)
    assert msg.lower() in str(exc.value).lower()


def test_sets_won_counts_from_first_player() -> None:
    assert sets_won([(6, 4), (3, 6), (10, 8)]) == (2, 1)


def test_report_returns_declared_or_inferred_format() -> None:
    assert _report() == "two_sets"
    assert _report(score="6-4") == "one_set"
    assert _report(score="6-4 3-6 6-2") == "three_sets"
    assert _report(score="6-4 3-6 10-8") == "super_tiebreak"
    assert _report(match_format="three_sets") == "three_sets"


def test_report_score_is_read_from_reporter_side() -> None:
    assert _report(winner_id="b", score="4-6 3-6") == "two_sets"
    with pytest.raises(ValidationError, match="declared winner"):
        _report(winner_id="b", score="6-4 6-3")


@pytest.mark.parametrize(
    "overrides, msg",
    [
        ({"opponent_id": "a"}, "against yourself"),
        ({"winner_id": "c"}, "one of the two players"),
        ({"match_format": "five_sets"}, "unknown match format"),
        ({"score": "6-4 4-6"}, "does not designate a winner"),
        ({"played_at": NOW + timedelta(minutes=5)}, "future"),
        ({"played_at": NOW - timedelta(days=31)}, "older than 30 days"),
    ],
    ids=["self", "outsider-winner", "format", "drawn", "future", "too-old"],
)
def test_report_rejections(overrides, msg) -> None:
    with pytest.raises(ValidationError) as exc:
        _report(**overrides)
    assert msg.lower() in exc.value.detail.lower()
