import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.exceptions import (
    ClubAdminRequired,
    ContestQuotaExceeded,
    ContestWindowExpired,
    MatchAlreadyContested,
    MatchAlreadyValidated,
    MatchErrorKind,
    MatchNotContested,
    MatchNotFound,
    NotMatchParticipant,
    PlayerNotFound,
    ReporterCannotRespond,
)
from app.models import Club, Match, Notification, Player
from app.services.badges import BadgeChecker
from app.services.match_validation import ValidationWorkflow
from app.services.notifications import Notifier
from app.services.validation import ValidationError

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


async def _setup():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with maker() as session:
        session.add_all(
            [
                Club(id="c1", name="Club One"),
                Club(id="c2", name="Club Two"),
                Player(id="a", name="Alice", club_id="c1", current_elo=1200, best_elo=1200, matches_played=5),
                Player(id="b", name="Bruno", club_id="c1", current_elo=1300, best_elo=1300, matches_played=40),
                Player(id="c", name="Chloe", club_id="c1"),
                Player(id="x", name="Xavier", club_id="c1", is_admin=True),
                Player(id="y", name="Yuna", club_id="c2", is_admin=True),
            ]
        )
        await session.commit()
    return engine, maker


def _workflow(clock, **kwargs):
    return ValidationWorkflow(Notifier(), BadgeChecker(), clock=clock, **kwargs)


async def _report(workflow, session, score="6-4 6-3"):
    return await workflow.report(
        session,
        reporter_id="a",
        opponent_id="b",
        winner_id="a",
        score=score,
        played_at=workflow.clock() - timedelta(hours=1),
    )


async def _notifications(session):
    rows = await session.execute(
        select(Notification.player_id, Notification.type, Notification.payload).order_by(
            Notification.player_id, Notification.type
        )
    )
    return rows.all()


def test_report_notifies_opponent():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)
                notes = await _notifications(session)
            assert [(n[0], n[1]) for n in notes] == [("b", "match_reported")]
            payload = notes[0][2]
            assert payload["matchId"] == match.id
            assert payload["actorName"] == "Alice"
            assert payload["eloChange"] == match.player2_elo_after - match.player2_elo_before
            assert payload["score"] == "6-4 6-3"
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_report_rejects_other_club_and_unknown_players():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                with pytest.raises(ValidationError, match="same club"):
                    await workflow.report(
                        session, reporter_id="a", opponent_id="y", winner_id="a", score="6-4 6-4"
                    )
                with pytest.raises(PlayerNotFound):
                    await workflow.report(
                        session, reporter_id="a", opponent_id="ghost", winner_id="a", score="6-4 6-4"
                    )
                assert (await session.execute(select(Match))).scalars().all() == []
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_confirm_by_opponent_applies_rating_and_notifies_reporter():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)
                resolved = await workflow.confirm(session, match.id, "b")

                assert resolved.validated_by == "b"
                assert resolved.auto_validated is False
                change = resolved.change_for("a")
                assert change.won is True
                assert change.elo_after == 1200 + change.delta

                notes = await _notifications(session)
                assert ("a", "match_confirmed") in [(n[0], n[1]) for n in notes]
                confirmed = next(n for n in notes if n[1] == "match_confirmed")
                assert confirmed[2]["eloChange"] == change.delta

                with pytest.raises(MatchAlreadyValidated):
                    await workflow.confirm(session, match.id, "b")
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_only_the_opponent_may_respond():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)

                with pytest.raises(ReporterCannotRespond) as exc:
                    await workflow.confirm(session, match.id, "a")
                assert exc.value.status_code == 403
                assert exc.value.code == "match_is_reporter"

                with pytest.raises(NotMatchParticipant):
                    await workflow.reject(session, match.id, "c")

                with pytest.raises(MatchNotFound):
                    await workflow.confirm(session, "missing", "b")
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_reject_removes_match_and_notifies_reporter():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)
                rejected = await workflow.reject(session, match.id, "b")
                assert rejected.reported_by == "a"

                assert await session.get(Match, match.id) is None
                types = [(n[0], n[1]) for n in await _notifications(session)]
                assert ("a", "match_rejected") in types

                a = await session.get(Player, "a")
                await session.refresh(a)
                assert a.current_elo == 1200
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contest_notifies_opponent_and_club_admins():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)

                with pytest.raises(ValidationError):
                    await workflow.contest(session, match.id, "b", "   wrong   ")

                receipt = await workflow.contest(
                    session, match.id, "b", "  I won the second set 6-3  "
                )
                assert receipt.reason == "I won the second set 6-3"
                assert receipt.admins_notified == 1
                assert receipt.contests_remaining == 2

                types = [(n[0], n[1]) for n in await _notifications(session)]
                assert ("a", "match_contested") in types
                assert ("x", "match_contested_admin") in types
                assert not any(pid == "y" for pid, _ in types)

                status = await workflow.get_contest_status(session, match.id, "b")
                assert status.contested is True
                assert status.can_contest is False
                assert status.blocked_by is MatchErrorKind.ALREADY_CONTESTED
                assert status.contests_used_this_month == 1
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contest_window_closes_after_validation():
    async def run_test():
        engine, maker = await _setup()
        try:
            clock = Clock(NOW)
            workflow = _workflow(clock)
            async with maker() as session:
                match = await _report(workflow, session)
                await workflow.confirm(session, match.id, "b")

                clock.now = NOW + timedelta(days=6)
                status = await workflow.get_contest_status(session, match.id, "b")
                assert status.can_contest is True
                assert status.window_ends_at == NOW + timedelta(days=7)

                clock.now = NOW + timedelta(days=8)
                with pytest.raises(ContestWindowExpired):
                    await workflow.contest(session, match.id, "b", "this result was wrong")
                status = await workflow.get_contest_status(session, match.id, "b")
                assert status.blocked_by is MatchErrorKind.CONTEST_WINDOW_EXPIRED
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contest_quota_per_month():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW), monthly_contest_limit=1)
            async with maker() as session:
                first = await _report(workflow, session)
                second = await _report(workflow, session)
                await workflow.contest(session, first.id, "b", "first disputed result")
                with pytest.raises(ContestQuotaExceeded) as exc:
                    await workflow.contest(session, second.id, "b", "second disputed result")
                assert exc.value.status_code == 429
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contest_status_visibility():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)
                status = await workflow.get_contest_status(session, match.id, "x")
                assert status.blocked_by is MatchErrorKind.NOT_PARTICIPANT

                with pytest.raises(NotMatchParticipant):
                    await workflow.get_contest_status(session, match.id, "c")
                with pytest.raises(NotMatchParticipant):
                    await workflow.get_contest_status(session, match.id, "y")
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contested_match_cannot_be_rejected():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)
                await workflow.contest(session, match.id, "b", "the score was 6-4 4-6")

                with pytest.raises(MatchAlreadyContested) as exc:
                    await workflow.reject(session, match.id, "b")
                assert exc.value.code == "match_already_contested"

                await workflow.resolve_contest(session, match.id, "x", "rejected")
                with pytest.raises(MatchAlreadyContested):
                    await workflow.reject(session, match.id, "b")

                kept = await session.get(Match, match.id)
                await session.refresh(kept)
                assert kept.contested_by == "b"
                assert kept.contested is False

                confirmed = await workflow.confirm(session, match.id, "b")
                assert confirmed.winner_id == "a"
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_resolve_contest_requires_club_admin():
    async def run_test():
        engine, maker = await _setup()
        try:
            workflow = _workflow(Clock(NOW))
            async with maker() as session:
                match = await _report(workflow, session)

                with pytest.raises(MatchNotContested):
                    await workflow.resolve_contest(session, match.id, "x", "upheld")

                await workflow.contest(session, match.id, "b", "the score was 6-4 4-6")
                with pytest.raises(ClubAdminRequired):
                    await workflow.resolve_contest(session, match.id, "a", "upheld")
                with pytest.raises(ClubAdminRequired):
                    await workflow.resolve_contest(session, match.id, "y", "upheld")

                resolved = await workflow.resolve_contest(session, match.id, "x", "modified")
                assert resolved.contest_resolution == "modified"

                types = [(n[0], n[1]) for n in await _notifications(session)]
                assert ("a", "match_contest_resolved") in types
                assert ("b", "match_contest_resolved") in types

                with pytest.raises(MatchNotContested):
                    await workflow.resolve_contest(session, match.id, "x", "upheld")
        finally:
            await engine.dispose()

    asyncio.run(run_test())
