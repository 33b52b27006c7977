# path: tests/factories.py
# 測試用的種子資料 / 座標小工具
import math

from app.models.places import Business, Zone, Promotion
from app.models.user import User

EARTH_RADIUS_M = 6371000.0


def north_of(lat: float, lng: float, meters: float) -> tuple[float, float]:
    """往正北移動 meters 公尺（同一條經線上，haversine 距離剛好就是 meters）。"""
    return lat + math.degrees(meters / EARTH_RADIUS_M), lng


def square(lat: float, lng: float, half: float = 0.005) -> list[list[float]]:
    """以 (lat, lng) 為中心的正方形，[lng, lat] 順序、首尾重複。"""
    return [
        [lng - half, lat - half],
        [lng + half, lat - half],
        [lng + half, lat + half],
        [lng - half, lat + half],
        [lng - half, lat - half],
    ]


def add_user(db, **kw) -> User:
    user = User(status=kw.pop("status", "user"), **kw)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_business(db, business_id: str, lat: float, lng: float, **kw) -> Business:
    b = Business(
        id=business_id,
        name=kw.pop("name", f"Shop {business_id}"),
        category=kw.pop("category", "cafe"),
        latitude=lat,
        longitude=lng,
        **kw,
    )
    db.add(b)
    db.commit()
    return b


def add_zone(db, zone_id: str, ring, *, name: str | None = None, neighborhood: str | None = None) -> Zone:
    z = Zone(id=zone_id, name=name or f"Zone {zone_id}", neighborhood_name=neighborhood, boundary_coords=ring)
    db.add(z)
    db.commit()
    return z


def add_promotion(db, business_id: str, bonus: int, start, end) -> Promotion:
    p = Promotion(business_id=business_id, title="promo", bonus_points=bonus, start_time=start, end_time=end)
    db.add(p)
    db.commit()
    return p
