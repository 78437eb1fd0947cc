from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from errors import PersistenceUnavailable
from main import create_app


@pytest.fixture
def client(store, clock):
    # No context manager: the lifespan would try to reach PostgreSQL
    return TestClient(create_app(store=store, clock=clock))


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_health_degraded_when_store_unreachable(client, store, monkeypatch):
    async def unreachable():
        raise PersistenceUnavailable("count users")

    monkeypatch.setattr(store, "count_users", unreachable)
    body = client.get("/health").json()
    assert (body["status"], body["database"]) == ("degraded", "disconnected")


def test_create_user(client):
    response = client.post("/api/users", json={"username": "calm_cat"})
    assert response.status_code == 201
    assert response.json()["username"] == "calm_cat"
    assert response.json()["streak_count"] == 0


def test_record_session(client, store):
    store.add_user(1)
    response = client.post(
        "/api/users/1/meditation/sessions",
        json={"duration": 10, "meditation_type": "breathing"}
    )

    assert response.status_code == 201
    body = response.json()
    assert (body["streak"], body["total_minutes"], body["today_completed"]) == (1, 10, True)
    assert [a["id"] for a in body["new_achievements"]] == ["streak_1", "first_session"]
    assert body["session"]["meditation_type"] == "breathing"


@pytest.mark.parametrize("payload", [{"duration": 0}, {"duration": -3}, {}])
def test_record_session_rejects_bad_duration(client, store, payload):
    store.add_user(1)
    response = client.post("/api/users/1/meditation/sessions", json=payload)
    assert response.status_code == 422
    assert store.sessions == []


def test_unknown_user_returns_error_body(client):
    response = client.post("/api/users/99/meditation/sessions", json={"duration": 10})

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["status"] == 404
    assert error["path"] == "/api/users/99/meditation/sessions"
    assert "99" in error["message"]


def test_conflict_maps_to_409(client, store):
    store.add_user(1)
    store.conflicts_to_raise = 10

    response = client.post("/api/users/1/meditation/sessions", json={"duration": 10})

    assert response.status_code == 409
    assert store.users[1].total_minutes == 0


def test_user_views(client, store, now):
    store.add_user(1, streak_count=2, total_minutes=45)
    store.add_session(1, 20, now - timedelta(days=1), "mantra")
    store.add_session(1, 25, now - timedelta(hours=2), "breathing")

    streak = client.get("/api/users/1/meditation/streak").json()
    assert (streak["streak"], streak["today_completed"]) == (2, True)

    history = client.get("/api/users/1/meditation/history", params={"limit": 1}).json()
    assert history["pagination"]["total_pages"] == 2
    assert history["sessions"][0]["duration"] == 25

    stats = client.get("/api/users/1/stats").json()
    assert stats["total_sessions"] == 2
    assert stats["variety_count"] == 2

    achievements = client.get("/api/users/1/meditation/achievements").json()
    assert achievements["achievements"][0]["achieved"] is True

    dashboard = client.get("/api/users/1/meditation/dashboard").json()
    assert dashboard["streak_count"] == 2


def test_leaderboard_endpoints(client, store):
    for user_id, minutes in {1: 120, 2: 90, 3: 90, 4: 10}.items():
        store.add_user(user_id, total_minutes=minutes)

    board = client.get("/api/leaderboard", params={"limit": 2, "user_id": 4}).json()
    assert [e["user_id"] for e in board["entries"]] == [1, 2]
    assert board["pagination"]["total_pages"] == 2
    assert board["current_user_rank"]["rank"] == 4

    rank = client.get("/api/leaderboard/users/3").json()
    assert (rank["rank"], rank["minutes"]) == (2, 90)

    around = client.get("/api/leaderboard/around/4", params={"range": 1}).json()
    assert [e["user_id"] for e in around["entries"]] == [3, 4]


def test_leaderboard_rejects_unknown_timeframe(client):
    assert client.get("/api/leaderboard", params={"timeframe": "decade"}).status_code == 422


def test_admin_streak_reset(client, store, now):
    store.add_user(1, streak_count=3, streak_updated_at=now - timedelta(days=3))

    report = client.post("/api/admin/streaks/reset").json()

    assert report["reset"] == 1
    assert store.users[1].streak_count == 0
