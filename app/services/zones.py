# path: app/services/zones.py
"""
Zone Resolver：點 → 所在區域。

- 區域幾何由其他服務維護，可能隨時改，所以每次評估都重新從 DB 撈（load_zones），不做跨請求快取
- 命中規則：依傳入順序，第一個包含該點的區域勝出（區域理論上不重疊；真的重疊時就是「先到先贏」）
- 剛好落在邊上的點：結果取決於射線法本身，不另外修正
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from app.models.places import Business, Zone

logger = logging.getLogger(__name__)

Ring = tuple[tuple[float, float], ...]   # ((lng, lat), ...)


@dataclass(frozen=True)
class ZonePolygon:
    id: str
    name: str
    neighborhood_name: str | None
    ring: Ring
    # (min_lng, min_lat, max_lng, max_lat)，只拿來快速排除，不影響判斷結果
    bbox: tuple[float, float, float, float] = field(init=False, repr=False)

    def __post_init__(self):
        if len(self.ring) < 3:
            raise ValueError(f"zone {self.id}: polygon needs at least 3 vertices, got {len(self.ring)}")
        lngs = [p[0] for p in self.ring]
        lats = [p[1] for p in self.ring]
        object.__setattr__(self, "bbox", (min(lngs), min(lats), max(lngs), max(lats)))

    def contains(self, lat: float, lng: float) -> bool:
        min_lng, min_lat, max_lng, max_lat = self.bbox
        if not (min_lng <= lng <= max_lng and min_lat <= lat <= max_lat):
            return False
        return point_in_polygon(lng, lat, self.ring)


def point_in_polygon(lng: float, lat: float, ring: Sequence[Sequence[float]]) -> bool:
    """even-odd 射線法。ring 是 [lng, lat] 的序列（首尾重複與否都可以）。"""
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def parse_boundary_coords(raw) -> Ring:
    # DB 裡可能是 JSON 欄位，也可能是舊資料留下的 JSON 字串
    if isinstance(raw, str):
        raw = json.loads(raw)
    ring = []
    for p in raw:
        # 每個頂點必須是兩個數字的陣列；{"lat":..,"lng":..} 這種物件格式不收
        if not isinstance(p, (list, tuple)) or len(p) < 2:
            raise ValueError(f"vertex must be a coordinate pair, got {p!r}")
        ring.append((float(p[0]), float(p[1])))
    return tuple(ring)


def to_polygon(zone: Zone) -> ZonePolygon:
    return ZonePolygon(
        id=zone.id,
        name=zone.name,
        neighborhood_name=zone.neighborhood_name or None,
        ring=parse_boundary_coords(zone.boundary_coords),
    )


def load_zones(db: Session) -> list[ZonePolygon]:
    """撈目前全部區域（固定依 id 排序，決定重疊時的勝出順序）。壞掉的幾何直接跳過。"""
    zones: list[ZonePolygon] = []
    for z in db.query(Zone).order_by(Zone.id.asc()).all():
        try:
            zones.append(to_polygon(z))
        except (ValueError, TypeError, IndexError, KeyError) as exc:
            logger.warning("skip zone %s with invalid boundary: %s", z.id, exc)
    return zones


def resolve_zone(lat: float, lng: float, zones: Iterable[ZonePolygon]) -> ZonePolygon | None:
    for zone in zones:
        if zone.contains(lat, lng):
            return zone
    return None


def neighborhood_zone_ids(db: Session, neighborhood_name: str) -> list[str]:
    # 直接數資料表：幾何壞掉而被 load_zones 跳過的區域也算在街區總數裡
    rows = (
        db.query(Zone.id)
        .filter(Zone.neighborhood_name == neighborhood_name)
        .order_by(Zone.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def business_ids_in_zone(zone: ZonePolygon, businesses: Iterable[Business]) -> list[str]:
    return [
        b.id for b in businesses
        if b.latitude is not None and b.longitude is not None and zone.contains(b.latitude, b.longitude)
    ]
