import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app import db
from app.main import app
from app.models import Club, Player
from app.routers import auth
from app.routers.auth import create_access_token

V0 = "/api/v0"


def _seed():
    async def _insert() -> None:
        async with db.get_sessionmaker()() as session:
            session.add_all(
                [
                    Club(id="c1", name="Club One"),
                    Player(id="a", name="Alice", club_id="c1", current_elo=1200, best_elo=1200, matches_played=5),
                    Player(id="b", name="Bruno", club_id="c1", current_elo=1300, best_elo=1300, matches_played=40),
                    Player(id="c", name="Chloe", club_id="c1"),
                    Player(id="x", name="Xavier", club_id="c1", is_admin=True),
                ]
            )
            await session.commit()

    asyncio.run(_insert())


def _headers(player_id: str, *, is_admin: bool = False) -> dict[str, str]:
    token = create_access_token(Player(id=player_id, name=player_id, is_admin=is_admin))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client():
    _seed()
    with TestClient(app) as client:
        auth.limiter.reset()
        yield client


def _report(client, **overrides):
    body = {
        "opponentId": "b",
        "winnerId": "a",
        "score": "6-4 6-3",
        "playedAt": (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat(),
    }
    body.update(overrides)
    return client.post(f"{V0}/matches", json=body, headers=_headers("a"))


def test_requires_bearer_token(client):
    resp = client.get(f"{V0}/matches")
    assert resp.status_code == 401
    assert resp.json()["code"] == "auth_missing_token"

    resp = client.get(f"{V0}/matches", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "auth_invalid_token"


def test_report_and_confirm_flow(client):
    resp = _report(client)
    assert resp.status_code == 201, resp.text
    mid = resp.json()["id"]
    assert resp.json()["autoValidateAt"]

    detail = client.get(f"{V0}/matches/{mid}", headers=_headers("b"))
    assert detail.status_code == 200
    body = detail.json()
    assert body["status"] == "reported"
    assert body["reportedBy"] == "a"
    assert body["matchFormat"] == "two_sets"

    breakdown = client.get(f"{V0}/matches/{mid}/elo-breakdown", headers=_headers("a")).json()
    assert breakdown["winner"]["playerId"] == "a"
    assert breakdown["winner"]["kFactor"] == 40
    assert breakdown["loser"]["kFactorLabel"] == "Established"
    assert {d["type"] for d in breakdown["winner"]["details"]} >= {"new_opponent", "upset"}

    confirmed = client.post(f"{V0}/matches/{mid}/confirm", headers=_headers("b"))
    assert confirmed.status_code == 200, confirmed.text
    changes = {c["playerId"]: c for c in confirmed.json()["changes"]}
    assert changes["a"]["eloAfter"] == body["player1EloAfter"]
    assert changes["b"]["delta"] < 0

    again = client.post(f"{V0}/matches/{mid}/confirm", headers=_headers("b"))
    assert again.status_code == 409
    assert again.headers["content-type"].startswith("application/problem+json")
    assert again.json()["code"] == "match_already_validated"

    player = client.get(f"{V0}/players/a", headers=_headers("b")).json()
    assert player["currentElo"] == changes["a"]["eloAfter"]
    assert player["matchesPlayed"] == 6
    assert player["kFactorLabel"] == "New player"

    history = client.get(f"{V0}/players/a/rating-history", headers=_headers("a")).json()
    assert [item["reason"] for item in history["items"]] == ["match_win"]
    assert history["items"][0]["metadata"]["autoValidated"] is False

    validated = client.get(f"{V0}/matches?status=validated", headers=_headers("a")).json()
    assert [m["id"] for m in validated] == [mid]
    assert client.get(f"{V0}/matches?status=pending", headers=_headers("a")).json() == []


def test_report_validation_errors(client):
    bad_score = _report(client, score="6-6 6-3")
    assert bad_score.status_code == 422
    assert bad_score.json()["code"] == "match_validation_error"

    wrong_winner = _report(client, winnerId="b")
    assert wrong_winner.status_code == 422
    assert "declared winner" in wrong_winner.json()["detail"]

    naive_date = _report(client, playedAt="2026-03-01T10:00:00")
    assert naive_date.status_code == 422

    unknown_opponent = _report(client, opponentId="ghost", winnerId="a")
    assert unknown_opponent.status_code == 404
    assert unknown_opponent.json()["code"] == "player_not_found"


def test_reporter_and_outsiders_cannot_respond(client):
    mid = _report(client).json()["id"]

    own = client.post(f"{V0}/matches/{mid}/confirm", headers=_headers("a"))
    assert own.status_code == 403
    assert own.json()["code"] == "match_is_reporter"

    outsider = client.post(f"{V0}/matches/{mid}/reject", headers=_headers("c"))
    assert outsider.status_code == 403
    assert outsider.json()["code"] == "match_not_participant"

    assert client.get(f"{V0}/matches/{mid}", headers=_headers("c")).status_code == 403
    assert client.get(f"{V0}/matches/{mid}", headers=_headers("x")).status_code == 200

    rejected = client.post(f"{V0}/matches/{mid}/reject", headers=_headers("b"))
    assert rejected.status_code == 200
    assert rejected.json()["reportedBy"] == "a"
    missing = client.get(f"{V0}/matches/{mid}", headers=_headers("a"))
    assert missing.status_code == 404
    assert missing.json()["code"] == "match_not_found"


def test_contest_and_admin_resolution(client):
    mid = _report(client).json()["id"]

    short = client.post(
        f"{V0}/matches/{mid}/contest", json={"reason": "no"}, headers=_headers("b")
    )
    assert short.status_code == 422

    contested = client.post(
        f"{V0}/matches/{mid}/contest",
        json={"reason": "The second set was 3-6 for me"},
        headers=_headers("b"),
    )
    assert contested.status_code == 201, contested.text
    assert contested.json()["adminsNotified"] == 1
    assert contested.json()["contestsRemaining"] == 2

    status = client.get(f"{V0}/matches/{mid}/contest", headers=_headers("a")).json()
    assert status["contested"] is True
    assert status["canContest"] is False
    assert status["blockedBy"] == "already_contested"

    assert client.get(f"{V0}/matches/{mid}", headers=_headers("a")).json()["status"] == (
        "reported+contested"
    )

    blocked = client.post(f"{V0}/matches/{mid}/reject", headers=_headers("b"))
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "match_already_contested"

    not_admin = client.post(
        f"{V0}/matches/{mid}/contest/resolution",
        json={"resolution": "upheld"},
        headers=_headers("a"),
    )
    assert not_admin.status_code == 403
    assert not_admin.json()["code"] == "club_admin_required"

    invalid = client.post(
        f"{V0}/matches/{mid}/contest/resolution",
        json={"resolution": "cancelled"},
        headers=_headers("x"),
    )
    assert invalid.status_code == 422

    resolved = client.post(
        f"{V0}/matches/{mid}/contest/resolution",
        json={"resolution": "upheld"},
        headers=_headers("x"),
    )
    assert resolved.status_code == 200
    assert resolved.json()["contestResolution"] == "upheld"
    assert resolved.json()["status"] == "reported"

    twice = client.post(
        f"{V0}/matches/{mid}/contest/resolution",
        json={"resolution": "upheld"},
        headers=_headers("x"),
    )
    assert twice.status_code == 409
    assert twice.json()["code"] == "match_not_contested"

    after = client.get(f"{V0}/matches/{mid}/contest", headers=_headers("b")).json()
    assert after["contested"] is False
    assert after["contestResolution"] == "upheld"
    assert after["blockedBy"] == "already_contested"

    again = client.post(
        f"{V0}/matches/{mid}/contest",
        json={"reason": "The second set was 3-6 for me"},
        headers=_headers("b"),
    )
    assert again.status_code == 409
    assert again.json()["code"] == "match_already_contested"
    assert client.post(f"{V0}/matches/{mid}/reject", headers=_headers("b")).status_code == 409

    confirmed = client.post(f"{V0}/matches/{mid}/confirm", headers=_headers("b"))
    assert confirmed.status_code == 200, confirmed.text


def test_contest_quota_returns_429(client):
    ids = [_report(client).json()["id"] for _ in range(4)]
    for mid in ids[:3]:
        resp = client.post(
            f"{V0}/matches/{mid}/contest",
            json={"reason": "disputed result here"},
            headers=_headers("b"),
        )
        assert resp.status_code == 201

    over = client.post(
        f"{V0}/matches/{ids[3]}/contest",
        json={"reason": "disputed result here"},
        headers=_headers("b"),
    )
    assert over.status_code == 429
    assert over.json()["code"] == "match_contest_quota_exceeded"
