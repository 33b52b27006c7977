# path: tests/test_quests.py
import json
from datetime import datetime, timedelta

import pytest

from app.core.errors import QuestValidationError
from app.models.quest import GeneratedQuest
from app.services.quests import (
    FALLBACK_QUEST_COUNT,
    MAX_QUESTS_PER_BATCH,
    QUEST_POINTS_MAX,
    QUEST_POINTS_MIN,
    Candidate,
    build_candidates,
    clamp_expires,
    clamp_percent_off,
    generate_quests,
    is_open_now,
    list_active_quests,
    parse_generator_output,
    persist_quests,
    validate_batch,
)
from tests.factories import add_business

NOW = datetime(2026, 3, 10, 16, 0)

CAFE = Candidate(
    business_id="b-cafe", name="Bean There", category="cafe", distance_m=120.0,
    min_percent_off=10, max_percent_off=30, is_open_now=True, safety_rating=4.5,
)
BAKERY = Candidate(
    business_id="b-bakery", name="Crumbs", category="bakery", distance_m=80.0,
    min_percent_off=5, max_percent_off=15, is_open_now=False,
)
STATUE = Candidate(
    business_id="b-statue", name="Old Statue", category="landmark", distance_m=300.0,
    min_percent_off=None, max_percent_off=None, is_open_now=True, tags=("landmark",),
)
CANDIDATES = [CAFE, BAKERY, STATUE]


def _suggestion(**overrides):
    base = {
        "quest_id": "upstream-1",
        "business_id": "b-cafe",
        "type": "PHOTO",
        "title": "Latte art hunt",
        "short_prompt": "Snap the latte art.",
        "steps": [{"text": "Order a latte"}, {"text": "Take a photo"}],
        "points": 60,
        "expires_in_minutes": 45,
        "suggested_percent_off": 20,
        "safety_note": "Well lit street.",
    }
    base.update(overrides)
    return base


def test_percent_off_clamped_to_candidate_max():
    [quest] = validate_batch([_suggestion(suggested_percent_off=150)], CANDIDATES, 120)
    assert quest.suggested_percent_off == 30


def test_percent_off_clamped_to_candidate_min():
    [quest] = validate_batch([_suggestion(suggested_percent_off=-5)], CANDIDATES, 120)
    assert quest.suggested_percent_off == 10


def test_missing_percent_off_uses_lower_bound():
    assert clamp_percent_off(None, CAFE) == 10
    assert clamp_percent_off(float("nan"), CAFE) == 10


def test_landmark_never_gets_a_coupon():
    [quest] = validate_batch([_suggestion(business_id="b-statue", suggested_percent_off=25)], CANDIDATES, 120)
    assert quest.suggested_percent_off is None
    assert quest.is_landmark


def test_unknown_business_is_rejected():
    quests = validate_batch(
        [_suggestion(business_id="b-hallucinated"), _suggestion(title="Real one")], CANDIDATES, 120,
    )
    assert [q.title for q in quests] == ["Real one"]


def test_all_rejected_raises():
    with pytest.raises(QuestValidationError):
        validate_batch([_suggestion(business_id="nope"), "garbage", {"title": "no business"}], CANDIDATES, 120)


def test_rejected_count_only_covers_examined_suggestions():
    with pytest.raises(QuestValidationError) as exc:
        validate_batch([_suggestion(business_id="nope") for _ in range(MAX_QUESTS_PER_BATCH + 5)], CANDIDATES, 120)
    assert exc.value.rejected == MAX_QUESTS_PER_BATCH


def test_expires_clamped_to_window():
    [long_one, short_one] = validate_batch(
        [_suggestion(expires_in_minutes=9999), _suggestion(expires_in_minutes=0)], CANDIDATES, 90,
    )
    assert long_one.expires_in_minutes == 90
    assert short_one.expires_in_minutes == 1
    assert clamp_expires(None, 90) == 90
    assert clamp_expires(float("inf"), 90) == 90


def test_points_and_type_normalised():
    [big, small] = validate_batch(
        [_suggestion(points=10_000, type="DANCE"), _suggestion(points=1, type="route")], CANDIDATES, 120,
    )
    assert big.points == QUEST_POINTS_MAX
    assert big.type == "CHECK_IN"
    assert small.points == QUEST_POINTS_MIN
    assert small.type == "ROUTE"


def test_quest_ids_are_always_fresh():
    quests = validate_batch([_suggestion(), _suggestion()], CANDIDATES, 120)
    ids = {q.quest_id for q in quests}
    assert "upstream-1" not in ids
    assert len(ids) == 2


def test_text_fields_trimmed():
    [quest] = validate_batch(
        [_suggestion(title="  x" * 100, steps=["  walk   north ", {"text": ""}, 3])], CANDIDATES, 120,
    )
    assert len(quest.title) <= 120
    assert quest.steps == ("walk north",)


def test_batch_size_capped():
    quests = validate_batch([_suggestion() for _ in range(25)], CANDIDATES, 120)
    assert len(quests) == MAX_QUESTS_PER_BATCH


def test_adversarial_input_always_within_bounds():
    nasty = [
        _suggestion(suggested_percent_off=v, expires_in_minutes=e)
        for v, e in [(1e12, 1e12), (-1e12, -1e12), (float("nan"), float("nan")), (None, None), (29.6, 59.9)]
    ]
    for q in validate_batch(nasty, CANDIDATES, 60):
        assert 10 <= q.suggested_percent_off <= 30
        assert 1 <= q.expires_in_minutes <= 60


def test_parse_generator_output_strips_wrapping_text():
    raw = 'Sure!\n```json\n{"quests": [{"business_id": "b-cafe"}]}\n```'
    assert parse_generator_output(raw) == {"quests": [{"business_id": "b-cafe"}]}
    assert parse_generator_output("not json at all") is None
    assert parse_generator_output(None) is None


def test_generate_quests_uses_generator_output():
    seen = {}

    def fake(payload):
        seen.update(payload)
        return json.dumps({"quests": [_suggestion(suggested_percent_off=150)]})

    batch = generate_quests(CANDIDATES, 120, fake, now=NOW, weather_tag="rain", user_lat=40.0, user_lng=-74.0)
    assert batch.source == "ai"
    assert batch.quests[0].suggested_percent_off == 30
    assert seen["weather_tag"] == "rain"
    assert {c["business_id"] for c in seen["candidates"]} == {"b-cafe", "b-bakery", "b-statue"}


@pytest.mark.parametrize("generator", [
    None,
    lambda payload: "the model is having a bad day",
    lambda payload: {"quests": [{"business_id": "b-unknown", "title": "x"}]},
])
def test_generate_quests_falls_back(generator):
    batch = generate_quests(CANDIDATES, 120, generator, now=NOW)
    assert batch.source == "fallback"
    assert len(batch.quests) == FALLBACK_QUEST_COUNT


def test_generator_exception_falls_back():
    def broken(payload):
        raise TimeoutError("upstream timeout")

    batch = generate_quests(CANDIDATES, 120, broken, now=NOW)
    assert batch.source == "fallback"


def test_fallback_is_deterministic_and_safe():
    batch = generate_quests(CANDIDATES, 45, None, now=NOW)
    # 營業中的優先，再依距離
    assert [q.business_id for q in batch.quests] == ["b-cafe", "b-statue", "b-bakery"]
    for q in batch.quests:
        assert q.expires_in_minutes == 45
    statue = batch.quests[1]
    assert statue.suggested_percent_off is None
    assert "Statue" in statue.title


def test_no_candidates_gives_empty_batch():
    batch = generate_quests([], 120, lambda payload: pytest.fail("should not be called"), now=NOW)
    assert batch.quests == []


def test_is_open_now():
    assert is_open_now({"always": True}, "mon", 0)
    assert is_open_now({"mon": "09:00-12:00;13:00-18:00"}, "mon", 14 * 60)
    assert not is_open_now({"mon": "09:00-12:00;13:00-18:00"}, "mon", 12 * 60 + 30)
    assert not is_open_now({"sun": "CLOSED"}, "sun", 600)
    assert not is_open_now({"mon": "whenever"}, "mon", 600)
    assert not is_open_now(None, "mon", 600)


def test_build_candidates_drops_landmark_coupon_bounds(db):
    shop = add_business(db, "b-1", 40.0, -74.0, min_percent_off=5, max_percent_off=20, hours_json={"always": True})
    park = add_business(db, "b-2", 40.001, -74.0, tags=["landmark"], min_percent_off=5, max_percent_off=20)
    shop_c, park_c = build_candidates([shop, park], 40.0, -74.0, NOW)
    assert (shop_c.min_percent_off, shop_c.max_percent_off, shop_c.is_open_now) == (5, 20, True)
    assert (park_c.min_percent_off, park_c.max_percent_off) == (None, None)
    assert park_c.is_landmark
    assert shop_c.distance_m == 0


def test_persisted_quests_are_active_within_window(db):
    [quest] = validate_batch([_suggestion(expires_in_minutes=30)], CANDIDATES, 120)
    persist_quests(db, [quest], NOW)
    db.commit()

    assert [q.quest_id for q in list_active_quests(db, NOW + timedelta(minutes=10))] == [quest.quest_id]
    assert list_active_quests(db, NOW + timedelta(minutes=31)) == []
    row = db.query(GeneratedQuest).one()
    assert row.steps_json == [{"text": "Order a latte"}, {"text": "Take a photo"}]
