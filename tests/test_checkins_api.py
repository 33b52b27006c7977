# path: tests/test_checkins_api.py
import json
from datetime import datetime

import pytest

from app.core.security import create_access_token
from app.models.user import User
from app.services.gemini import get_quest_generator
from app.main import app
from tests.factories import add_business, add_user, add_zone, north_of, square

CENTER = (40.0, -74.0)


@pytest.fixture
def world(db):
    user = add_user(db)
    add_business(db, "b-1", *CENTER, name="Bean There", min_percent_off=10, max_percent_off=30,
                 hours_json={"always": True})
    add_zone(db, "z-1", square(*CENTER), name="Riverside", neighborhood="Old Town")
    return user


def _is_utc(value: str) -> bool:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ts.utcoffset() is not None and ts.utcoffset().total_seconds() == 0


def _body(meters=45, business_id="b-1", **extra):
    lat, lng = north_of(*CENTER, meters)
    return {"businessId": business_id, "latitude": lat, "longitude": lng, **extra}


def test_checkin_created(client, auth_headers, world):
    r = client.post("/checkins", json=_body(friendIds=["42"]), headers=auth_headers(world.id))
    assert r.status_code == 201
    data = r.json()
    assert data["businessId"] == "b-1"
    assert data["businessName"] == "Bean There"
    assert data["isFirstVisit"] is True
    assert data["streakDays"] == 1
    assert data["points"]["base"] == 10
    assert data["points"]["friendBonus"] == 5
    assert data["points"]["zoneCaptureBonus"] == 25
    assert data["points"]["neighborhoodBonus"] == 50
    assert data["points"]["total"] == 90
    assert data["zoneCapture"] == {"zoneId": "z-1", "zoneName": "Riverside", "neighborhoodName": "Old Town"}
    assert data["neighborhoodCapture"] == {"neighborhoodName": "Old Town"}
    assert data["questRedemption"] is None


def test_checkin_too_far(client, auth_headers, world):
    r = client.post("/checkins", json=_body(meters=51), headers=auth_headers(world.id))
    assert r.status_code == 400
    assert r.json() == {"error": "Too far from location", "distance": 51, "maxDistance": 50}


def test_checkin_cooldown(client, auth_headers, world):
    headers = auth_headers(world.id)
    assert client.post("/checkins", json=_body(), headers=headers).status_code == 201
    r = client.post("/checkins", json=_body(), headers=headers)
    assert r.status_code == 429
    assert r.json()["error"] == "Already checked in here recently"
    assert _is_utc(r.json()["nextAvailable"])


def test_checkin_unknown_business(client, auth_headers, world):
    r = client.post("/checkins", json=_body(business_id="missing"), headers=auth_headers(world.id))
    assert r.status_code == 404
    assert r.json() == {"error": "Business not found"}


def test_checkin_rejects_bad_coordinates(client, auth_headers, world):
    r = client.post("/checkins", json={"businessId": "b-1", "latitude": 123, "longitude": 0},
                    headers=auth_headers(world.id))
    assert r.status_code == 422


def test_checkin_requires_token(client, world):
    r = client.post("/checkins", json=_body())
    assert r.status_code in (401, 403)


def test_checkin_rejects_bad_token(client, world):
    r = client.post("/checkins", json=_body(), headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_undo_flow(client, auth_headers, world, db):
    headers = auth_headers(world.id)
    created = client.post("/checkins", json=_body(), headers=headers).json()

    r = client.post("/checkins/undo", json={"businessId": "b-1"}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {
        "removedCheckInId": created["id"],
        "pointsRemoved": 85,
        "zoneCaptureRemoved": True,
        "neighborhoodCaptureRemoved": True,
    }
    db.expire_all()
    assert db.get(User, world.id).points == 0

    again = client.post("/checkins/undo", json={"businessId": "b-1"}, headers=headers)
    assert again.status_code == 404
    assert again.json() == {"error": "No check-in found to undo"}


def test_stats_and_history(client, auth_headers, world):
    headers = auth_headers(world.id)
    client.post("/checkins", json=_body(), headers=headers)

    stats = client.get("/checkins/stats", headers=headers).json()
    assert stats == {
        "totalCheckins": 1,
        "uniquePlaces": 1,
        "totalPoints": 10,
        "thisWeek": 1,
        "zonesCaptured": 1,
        "neighborhoodsCaptured": 1,
    }

    history = client.get("/checkins/history", headers=headers).json()
    assert len(history) == 1
    assert history[0]["businessName"] == "Bean There"
    assert history[0]["pointsEarned"] == 10
    assert _is_utc(history[0]["createdAt"])


def test_me(client, auth_headers, world):
    headers = auth_headers(world.id)
    client.post("/checkins", json=_body(), headers=headers)

    me = client.get("/me", headers=headers).json()
    assert me["userId"] == world.id
    assert me["points"] == 85
    assert me["streakDays"] == 1
    assert me["zonesCaptured"] == 1
    assert me["neighborhoodsCaptured"] == 1


def test_expired_token_rejected(client, world):
    token, _, _ = create_access_token(user_id=world.id, expires_minutes=-5)
    r = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json() == {"detail": "Token expired"}


def test_me_unknown_user(client, auth_headers):
    r = client.get("/me", headers=auth_headers(999))
    assert r.status_code == 404


def test_generate_quests_applies_guardrails(client, auth_headers, world):
    def fake_generator(payload):
        return json.dumps({"quests": [
            {"quest_id": "abc", "business_id": "b-1", "type": "PHOTO", "title": "Latte art",
             "short_prompt": "Snap it", "steps": [{"text": "Order"}], "points": 50,
             "expires_in_minutes": 500, "suggested_percent_off": 150},
            {"business_id": "b-fake", "title": "Nope"},
        ]})

    app.dependency_overrides[get_quest_generator] = lambda: fake_generator
    headers = auth_headers(world.id)
    r = client.post("/quests/generate", json={"userLat": CENTER[0], "userLng": CENTER[1], "windowMinutes": 60},
                    headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert data["source"] == "ai"
    assert data["generated_for_window_minutes"] == 60
    [quest] = data["quests"]
    assert quest["suggested_percent_off"] == 30
    assert quest["expires_in_minutes"] == 60
    assert quest["quest_id"] != "abc"

    active = client.get("/quests/active", headers=headers).json()
    assert [q["quest_id"] for q in active] == [quest["quest_id"]]
    assert _is_utc(active[0]["ends_at"])

    # 打卡時兌換剛產生的任務
    checkin = client.post("/checkins", json=_body(), headers=headers).json()
    assert checkin["questRedemption"]["questId"] == quest["quest_id"]
    assert checkin["points"]["questBonus"] == 50
    assert _is_utc(checkin["questRedemption"]["endsAt"])


def test_generate_quests_without_generator_uses_fallback(client, auth_headers, world):
    app.dependency_overrides[get_quest_generator] = lambda: None
    r = client.post("/quests/generate", json={"userLat": CENTER[0], "userLng": CENTER[1]},
                    headers=auth_headers(world.id))
    assert r.status_code == 200
    data = r.json()
    assert data["source"] == "fallback"
    assert data["generated_for_window_minutes"] == 120
    assert [q["business_id"] for q in data["quests"]] == ["b-1"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
