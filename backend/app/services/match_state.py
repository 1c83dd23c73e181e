"""Explicit lifecycle for reported matches.

The ``match`` table stores the lifecycle as boolean flags. This module
derives a single state from them and lists the transitions the workflow
and the sweeper are allowed to make, so an illegal move is caught before a
statement is ever issued.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MatchState(str, Enum):
    REPORTED = "reported"
    VALIDATED = "validated"
    AUTO_VALIDATED = "auto_validated"
    REJECTED = "rejected"


class MatchAction(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    AUTO_VALIDATE = "auto_validate"
    CONTEST = "contest"
    RESOLVE_CONTEST = "resolve_contest"


_TRANSITIONS: dict[tuple[MatchState, MatchAction], MatchState] = {
    (MatchState.REPORTED, MatchAction.CONFIRM): MatchState.VALIDATED,
    (MatchState.REPORTED, MatchAction.REJECT): MatchState.REJECTED,
    (MatchState.REPORTED, MatchAction.AUTO_VALIDATE): MatchState.AUTO_VALIDATED,
    # Contesting only raises the review overlay; the rating state is kept.
    (MatchState.REPORTED, MatchAction.CONTEST): MatchState.REPORTED,
    (MatchState.VALIDATED, MatchAction.CONTEST): MatchState.VALIDATED,
    (MatchState.AUTO_VALIDATED, MatchAction.CONTEST): MatchState.AUTO_VALIDATED,
    (MatchState.REPORTED, MatchAction.RESOLVE_CONTEST): MatchState.REPORTED,
    (MatchState.VALIDATED, MatchAction.RESOLVE_CONTEST): MatchState.VALIDATED,
    (MatchState.AUTO_VALIDATED, MatchAction.RESOLVE_CONTEST): MatchState.AUTO_VALIDATED,
}


class IllegalTransition(Exception):
    def __init__(self, lifecycle: "MatchLifecycle", action: MatchAction) -> None:
        super().__init__(
            f"cannot {action.value} a match in state {lifecycle.label}"
        )
        self.lifecycle = lifecycle
        self.action = action


@dataclass(frozen=True)
class MatchLifecycle:
    state: MatchState
    contested: bool = False
    contest_resolved: bool = False

    @classmethod
    def from_match(cls, match) -> "MatchLifecycle":
        if match.validated:
            state = MatchState.AUTO_VALIDATED if match.auto_validated else MatchState.VALIDATED
        else:
            state = MatchState.REPORTED
        return cls(
            state=state,
            contested=bool(match.contested),
            contest_resolved=match.contest_resolved_at is not None,
        )

    @property
    def is_resolved(self) -> bool:
        return self.state in (MatchState.VALIDATED, MatchState.AUTO_VALIDATED)

    @property
    def was_contested(self) -> bool:
        return self.contested or self.contest_resolved

    @property
    def label(self) -> str:
        if self.contested:
            return f"{self.state.value}+contested"
        return self.state.value

    def can(self, action: MatchAction) -> bool:
        if (self.state, action) not in _TRANSITIONS:
            return False
        if action is MatchAction.AUTO_VALIDATE and self.contested:
            return False
        # A match is contested at most once and keeps its dispute record.
        if action in (MatchAction.CONTEST, MatchAction.REJECT) and self.was_contested:
            return False
        if action is MatchAction.RESOLVE_CONTEST:
            return self.contested and not self.contest_resolved
        return True

    def apply(self, action: MatchAction) -> "MatchLifecycle":
        if not self.can(action):
            raise IllegalTransition(self, action)
        next_state = _TRANSITIONS[(self.state, action)]
        if action is MatchAction.CONTEST:
            return MatchLifecycle(next_state, contested=True)
        if action is MatchAction.RESOLVE_CONTEST:
            return MatchLifecycle(next_state, contested=False, contest_resolved=True)
        return MatchLifecycle(
            next_state,
            contested=self.contested,
            contest_resolved=self.contest_resolved,
        )
