import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.db import Base, build_engine, build_sessionmaker
from app.models import Club, Match, Notification, Player
from app.services.auto_validation import AutoValidationSweeper
from app.services.match_store import contest_match, resolve_manually
from app.services.notifications import MATCH_REMINDER, MatchEvent, Notifier
from app.services.reminders import (
    find_matches_needing_reminder,
    hours_left,
    send_reminders,
)
from app.services.reporting import report_match

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


async def _prepare(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = build_sessionmaker(engine)
    async with maker() as session:
        session.add_all(
            [
                Club(id="c1", name="Club One"),
                Player(id="a", name="Alice", club_id="c1"),
                Player(id="b", name="Bruno", club_id="c1"),
                Player(id="c", name="Chloe", club_id="c1"),
            ]
        )
        await session.commit()
    return maker


async def _memory_db():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return engine, await _prepare(engine)


async def _report(maker, opponent="b", now=NOW):
    async with maker() as session:
        match = await report_match(
            session,
            reporter_id="a",
            opponent_id=opponent,
            winner_id="a",
            score="6-2 7-6",
            played_at=now - timedelta(hours=1),
            now=now,
        )
        return match.id


async def _reminders(maker):
    async with maker() as session:
        rows = await session.execute(
            select(Notification).where(Notification.type == MATCH_REMINDER)
        )
        return list(rows.scalars())


def test_hours_left_rounds_up_and_never_goes_negative():
    assert hours_left(NOW + timedelta(hours=17, minutes=1), NOW) == 18
    assert hours_left(NOW + timedelta(hours=18), NOW) == 18
    assert hours_left(NOW - timedelta(hours=1), NOW) == 0


def test_reminder_event_payload():
    event = MatchEvent(
        type=MATCH_REMINDER,
        recipient_id="b",
        match_id="m1",
        actor_id="a",
        actor_name="Alice",
        extra={"reporterName": "Alice", "score": "6-2 7-6", "hoursLeft": 18},
    )
    payload = event.payload()
    assert payload["title"] == "Match waiting for your confirmation"
    assert payload["body"] == (
        "Alice is waiting for your confirmation. "
        "The match will be validated automatically in 18h."
    )
    assert payload["hoursLeft"] == 18
    assert payload["score"] == "6-2 7-6"


def test_reminder_is_sent_once_after_six_hours():
    async def run_test():
        engine, maker = await _memory_db()
        try:
            match_id = await _report(maker)

            early = await send_reminders(maker, now=NOW + timedelta(hours=5), notifier=Notifier())
            assert (early.found, early.sent) == (0, 0)

            at = NOW + timedelta(hours=6)
            report = await send_reminders(maker, now=at, notifier=Notifier())
            assert (report.found, report.sent, report.skipped) == (1, 1, 0)
            assert report.as_dict()["errors"] == 0

            (note,) = await _reminders(maker)
            assert note.player_id == "b"
            assert note.payload["matchId"] == match_id
            assert note.payload["reporterName"] == "Alice"
            assert note.payload["actorId"] == "a"
            assert note.payload["score"] == "6-2 7-6"
            assert note.payload["hoursLeft"] == 18
            assert note.payload["autoValidateAt"] == (NOW + timedelta(hours=24)).isoformat()

            async with maker() as session:
                match = await session.get(Match, match_id)
                assert match.reminder_sent_at is not None
                assert match.validated is False

            again = await send_reminders(maker, now=at + timedelta(hours=1), notifier=Notifier())
            assert again.found == 0
            assert len(await _reminders(maker)) == 1
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_contested_validated_and_overdue_matches_are_not_reminded():
    async def run_test():
        engine, maker = await _memory_db()
        try:
            contested = await _report(maker)
            confirmed = await _report(maker, opponent="c")
            overdue = await _report(maker, now=NOW - timedelta(days=2))
            pending = await _report(maker, opponent="c")
            async with maker() as session:
                await contest_match(
                    session, contested, "b", "we never finished", NOW, window_days=7, monthly_limit=3
                )
                await resolve_manually(session, confirmed, "c", NOW + timedelta(hours=1))

            at = NOW + timedelta(hours=7)
            async with maker() as session:
                due = await find_matches_needing_reminder(session, at)
                assert [m.id for m in due] == [pending]
                assert overdue not in [m.id for m in due]

            report = await send_reminders(maker, now=at, notifier=Notifier())
            assert report.sent == 1
            assert [n.player_id for n in await _reminders(maker)] == ["c"]
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_reminders_disabled_when_delay_reaches_deadline():
    async def run_test():
        engine, maker = await _memory_db()
        try:
            await _report(maker)
            report = await send_reminders(
                maker, now=NOW + timedelta(hours=23), remind_after_hours=24
            )
            assert report.found == 0
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_overlapping_reminder_runs_notify_once(tmp_path):
    async def run_test():
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
        try:
            maker = await _prepare(engine)
            match_ids = [await _report(maker) for _ in range(3)]
            at = NOW + timedelta(hours=8)

            reports = await asyncio.gather(
                *(send_reminders(maker, now=at, notifier=Notifier()) for _ in range(3))
            )
            assert sum(r.sent for r in reports) == len(match_ids)
            assert all(r.errors == [] for r in reports)

            notes = await _reminders(maker)
            assert sorted(n.payload["matchId"] for n in notes) == sorted(match_ids)
        finally:
            await engine.dispose()

    asyncio.run(run_test())


def test_sweeper_sends_reminders_between_sweeps():
    async def run_test():
        engine, maker = await _memory_db()
        try:
            await _report(maker)
            sweeper = AutoValidationSweeper(
                maker,
                notifier=Notifier(),
                interval_seconds=0.01,
                clock=lambda: NOW + timedelta(hours=6),
            )
            task = asyncio.create_task(sweeper.run_forever())
            await asyncio.sleep(0.2)
            sweeper.stop()
            await asyncio.wait_for(task, timeout=5)

            assert len(await _reminders(maker)) == 1
        finally:
            await engine.dispose()

    asyncio.run(run_test())
