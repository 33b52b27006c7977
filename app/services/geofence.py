# path: app/services/geofence.py
"""
地理圍欄 + 冷卻檢查（純函式，不碰 DB）。

順序固定：先檢查距離，再檢查冷卻。兩個條件互相獨立，任何一個不過就丟錯。
"""
from __future__ import annotations
import math
from datetime import datetime, timedelta
from typing import Iterable

from app.core.errors import TooFarError, CooldownActiveError

EARTH_RADIUS_M = 6371000.0
DEFAULT_RADIUS_M = 50.0
DEFAULT_COOLDOWN = timedelta(hours=24)


def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dlambda/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))
    return EARTH_RADIUS_M * c


def ensure_within_radius(distance_m: float, radius_m: float = DEFAULT_RADIUS_M) -> None:
    # 剛好等於半徑算通過
    if distance_m > radius_m:
        raise TooFarError(distance_meters=round(distance_m), max_distance=radius_m)


def ensure_cooldown_elapsed(
    prior_checkins: Iterable[datetime],
    now: datetime,
    cooldown: timedelta = DEFAULT_COOLDOWN,
) -> None:
    """
    prior_checkins：同一個 (user, business) 以前的打卡時間
    最近一次在冷卻期內 → 下次可打卡時間 = 那次 + cooldown
    """
    latest = max(prior_checkins, default=None)
    if latest is None:
        return
    next_available = latest + cooldown
    if next_available > now:
        raise CooldownActiveError(next_available_at=next_available)


def validate_checkin(
    *,
    claimed_lat: float,
    claimed_lng: float,
    target_lat: float,
    target_lng: float,
    prior_checkins: Iterable[datetime],
    now: datetime,
    radius_m: float = DEFAULT_RADIUS_M,
    cooldown: timedelta = DEFAULT_COOLDOWN,
) -> float:
    """回傳實際距離（公尺）；不合格就丟 TooFarError / CooldownActiveError。"""
    distance = haversine_distance_m(claimed_lat, claimed_lng, target_lat, target_lng)
    ensure_within_radius(distance, radius_m)
    ensure_cooldown_elapsed(prior_checkins, now, cooldown)
    return distance
