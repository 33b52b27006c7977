# path: app/services/points.py
from __future__ import annotations
from dataclasses import dataclass

from app.core.config import settings

NEW_LOCATION_POINTS = 10
REPEAT_VISIT_POINTS = 5
FRIEND_BONUS_PER_FRIEND = 5
MAX_BONUS_FRIENDS = 5
STREAK_BONUS_PER_DAY = 5
MAX_BONUS_STREAK_DAYS = 30


@dataclass(frozen=True)
class PointsBreakdown:
    base: int = 0
    friend_bonus: int = 0
    promotion_bonus: int = 0
    streak_bonus: int = 0
    zone_capture_bonus: int = 0
    neighborhood_bonus: int = 0
    quest_bonus: int = 0

    @property
    def visit_total(self) -> int:
        """造訪本身拿到的點數（存在 check_ins.points_earned）；佔領獎勵跟著區域狀態走，不算在內。"""
        return self.base + self.friend_bonus + self.promotion_bonus + self.streak_bonus + self.quest_bonus

    @property
    def capture_total(self) -> int:
        return self.zone_capture_bonus + self.neighborhood_bonus

    @property
    def total(self) -> int:
        return self.visit_total + self.capture_total


def _non_negative(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def calculate_points(
    *,
    is_first_visit: bool,
    friend_count: int = 0,
    promotion_bonus: int = 0,
    streak_days: int = 0,
    new_zone_captured: bool = False,
    new_neighborhood_captured: bool = False,
    quest_bonus: int = 0,
    zone_capture_points: int | None = None,
    neighborhood_capture_points: int | None = None,
) -> PointsBreakdown:
    """
    純函式：把這次打卡的事實換成逐項點數。
    缺的 / 負的輸入一律視為 0 貢獻；streak_days 只在開啟連續獎勵時由呼叫端帶入。
    """
    zone_points = settings.ZONE_CAPTURE_POINTS if zone_capture_points is None else zone_capture_points
    hood_points = (
        settings.NEIGHBORHOOD_CAPTURE_POINTS if neighborhood_capture_points is None else neighborhood_capture_points
    )

    friends = _non_negative(friend_count)
    streak = _non_negative(streak_days)

    return PointsBreakdown(
        base=NEW_LOCATION_POINTS if is_first_visit else REPEAT_VISIT_POINTS,
        friend_bonus=FRIEND_BONUS_PER_FRIEND * min(friends, MAX_BONUS_FRIENDS),
        promotion_bonus=_non_negative(promotion_bonus),
        streak_bonus=STREAK_BONUS_PER_DAY * min(streak, MAX_BONUS_STREAK_DAYS),
        zone_capture_bonus=_non_negative(zone_points) if new_zone_captured else 0,
        neighborhood_bonus=_non_negative(hood_points) if new_neighborhood_captured else 0,
        quest_bonus=_non_negative(quest_bonus),
    )
