from types import SimpleNamespace

import pytest

from app.services.match_state import (
    IllegalTransition,
    MatchAction,
    MatchLifecycle,
    MatchState,
)


def _row(**fields):
    base = dict(validated=False, auto_validated=False, contested=False, contest_resolved_at=None)
    base.update(fields)
    return SimpleNamespace(**base)


def test_state_is_derived_from_flags():
    assert MatchLifecycle.from_match(_row()).state is MatchState.REPORTED
    assert MatchLifecycle.from_match(_row(validated=True)).state is MatchState.VALIDATED
    auto = MatchLifecycle.from_match(_row(validated=True, auto_validated=True))
    assert auto.state is MatchState.AUTO_VALIDATED
    assert auto.is_resolved


def test_labels_show_open_contest():
    assert MatchLifecycle.from_match(_row(contested=True)).label == "reported+contested"
    closed = MatchLifecycle.from_match(_row(validated=True, contest_resolved_at="2026-03-01"))
    assert closed.label == "validated"
    assert closed.was_contested


def test_reported_match_transitions():
    reported = MatchLifecycle(MatchState.REPORTED)
    assert reported.apply(MatchAction.CONFIRM).state is MatchState.VALIDATED
    assert reported.apply(MatchAction.REJECT).state is MatchState.REJECTED
    assert reported.apply(MatchAction.AUTO_VALIDATE).state is MatchState.AUTO_VALIDATED
    assert not reported.can(MatchAction.RESOLVE_CONTEST)


def test_resolved_matches_are_terminal_for_ratings():
    for state in (MatchState.VALIDATED, MatchState.AUTO_VALIDATED):
        lifecycle = MatchLifecycle(state)
        for action in (MatchAction.CONFIRM, MatchAction.REJECT, MatchAction.AUTO_VALIDATE):
            assert not lifecycle.can(action)
        assert lifecycle.can(MatchAction.CONTEST)


def test_contest_blocks_auto_validation_and_rejection_but_not_confirmation():
    contested = MatchLifecycle(MatchState.REPORTED).apply(MatchAction.CONTEST)
    assert contested.contested
    assert not contested.can(MatchAction.AUTO_VALIDATE)
    assert not contested.can(MatchAction.CONTEST)
    assert not contested.can(MatchAction.REJECT)
    assert contested.can(MatchAction.CONFIRM)
    assert contested.apply(MatchAction.CONFIRM).contested


def test_contest_resolves_once_and_reopens_pending_match():
    contested = MatchLifecycle(MatchState.REPORTED).apply(MatchAction.CONTEST)
    resolved = contested.apply(MatchAction.RESOLVE_CONTEST)
    assert resolved.contest_resolved
    assert not resolved.contested
    assert resolved.state is MatchState.REPORTED
    assert resolved.can(MatchAction.AUTO_VALIDATE)
    assert resolved.can(MatchAction.CONFIRM)
    assert not resolved.can(MatchAction.CONTEST)
    assert not resolved.can(MatchAction.REJECT)
    with pytest.raises(IllegalTransition):
        resolved.apply(MatchAction.RESOLVE_CONTEST)


def test_validated_contest_resolution_keeps_rating_state():
    resolved = MatchLifecycle(MatchState.VALIDATED, contested=True).apply(
        MatchAction.RESOLVE_CONTEST
    )
    assert resolved.state is MatchState.VALIDATED
    assert resolved.label == "validated"


def test_rejected_is_terminal():
    rejected = MatchLifecycle(MatchState.REJECTED)
    for action in MatchAction:
        assert not rejected.can(action)
    with pytest.raises(IllegalTransition, match="cannot confirm"):
        rejected.apply(MatchAction.CONFIRM)
