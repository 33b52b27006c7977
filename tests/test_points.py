# path: tests/test_points.py
from app.services.points import (
    FRIEND_BONUS_PER_FRIEND,
    NEW_LOCATION_POINTS,
    REPEAT_VISIT_POINTS,
    calculate_points,
)


def test_first_visit_base():
    p = calculate_points(is_first_visit=True)
    assert p.base == NEW_LOCATION_POINTS
    assert p.total == NEW_LOCATION_POINTS


def test_repeat_visit_base():
    assert calculate_points(is_first_visit=False).base == REPEAT_VISIT_POINTS


def test_friend_bonus_capped_at_five_friends():
    assert calculate_points(is_first_visit=True, friend_count=3).friend_bonus == 3 * FRIEND_BONUS_PER_FRIEND
    assert calculate_points(is_first_visit=True, friend_count=12).friend_bonus == 25


def test_streak_bonus_capped_at_thirty_days():
    assert calculate_points(is_first_visit=True, streak_days=4).streak_bonus == 20
    assert calculate_points(is_first_visit=True, streak_days=90).streak_bonus == 150


def test_capture_bonuses_use_configured_defaults():
    p = calculate_points(is_first_visit=True, new_zone_captured=True, new_neighborhood_captured=True)
    assert p.zone_capture_bonus == 25
    assert p.neighborhood_bonus == 50
    assert p.capture_total == 75
    assert p.total == NEW_LOCATION_POINTS + 75


def test_capture_bonus_overrides():
    p = calculate_points(is_first_visit=False, new_zone_captured=True, zone_capture_points=40)
    assert p.zone_capture_bonus == 40
    assert p.neighborhood_bonus == 0


def test_visit_total_excludes_capture_bonuses():
    p = calculate_points(
        is_first_visit=True, friend_count=1, promotion_bonus=15, quest_bonus=50, new_zone_captured=True,
    )
    assert p.visit_total == 10 + 5 + 15 + 50
    assert p.total == p.visit_total + 25


def test_missing_or_negative_inputs_contribute_zero():
    p = calculate_points(is_first_visit=True, friend_count=-3, promotion_bonus=None, streak_days=-1, quest_bonus=-10)
    assert (p.friend_bonus, p.promotion_bonus, p.streak_bonus, p.quest_bonus) == (0, 0, 0, 0)
