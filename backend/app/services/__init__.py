"""Internal application services.

``rating``, ``match_state`` and ``validation`` are pure helpers with no I/O;
the remaining modules operate on an ``AsyncSession``.
"""

from .validation import ValidationError, validate_match_report, validate_tennis_score
from .rating import (
    DEFAULT_POLICY,
    MIN_ELO,
    RatingPolicy,
    apply_delta,
    compute_delta,
    compute_modifiers,
    expected_score,
    k_factor,
    k_factor_label,
)
from .match_state import MatchAction, MatchLifecycle, MatchState

__all__ = [
    "ValidationError",
    "validate_match_report",
    "validate_tennis_score",
    "DEFAULT_POLICY",
    "MIN_ELO",
    "RatingPolicy",
    "apply_delta",
    "compute_delta",
    "compute_modifiers",
    "expected_score",
    "k_factor",
    "k_factor_label",
    "MatchAction",
    "MatchLifecycle",
    "MatchState",
]
