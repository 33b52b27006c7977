# path: app/services/capture.py
"""
區域 / 街區佔領狀態機。

每個 (user, zone)：未佔領 → 已佔領（撤銷打卡時可能再退回未佔領）
每個 (user, neighborhood)：zones_captured 計數 + 推導出的 fully_captured

兩種入口：
  - capture_zone_for_checkin：打卡成功後的正向轉移（已佔領就什麼都不做）
  - recompute_zone / recompute_neighborhood：撤銷後「從剩下的歷史重新算」，不做反向扣減
這裡不丟使用者看得到的錯誤；沒有區域是正常結果。
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.places import Business
from app.models.territory import CheckIn, ZoneProgress, NeighborhoodProgress
from app.services.zones import ZonePolygon, business_ids_in_zone, neighborhood_zone_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureResult:
    new_zone_captured: bool = False
    zone_id: str | None = None
    zone_name: str | None = None
    neighborhood_name: str | None = None
    new_neighborhood_captured: bool = False


@dataclass(frozen=True)
class NeighborhoodState:
    neighborhood_name: str
    zones_captured: int
    total_zones: int
    was_fully_captured: bool
    fully_captured: bool

    @property
    def newly_captured(self) -> bool:
        return self.fully_captured and not self.was_fully_captured


def is_fully_captured(zones_captured: int, total_zones: int) -> bool:
    return total_zones > 0 and zones_captured >= total_zones


# ---- 讀取 ----

def get_zone_progress(db: Session, user_id: int, zone_id: str, *, lock: bool = False) -> ZoneProgress | None:
    q = db.query(ZoneProgress).filter(ZoneProgress.user_id == user_id, ZoneProgress.zone_id == zone_id)
    if lock:
        q = q.with_for_update()
    return q.first()


def get_neighborhood_progress(db: Session, user_id: int, name: str, *, lock: bool = False) -> NeighborhoodProgress | None:
    q = db.query(NeighborhoodProgress).filter(
        NeighborhoodProgress.user_id == user_id,
        NeighborhoodProgress.neighborhood_name == name,
    )
    if lock:
        q = q.with_for_update()
    return q.first()


def is_zone_captured(db: Session, user_id: int, zone_id: str) -> bool:
    row = get_zone_progress(db, user_id, zone_id)
    return bool(row and row.captured)


def is_neighborhood_captured(db: Session, user_id: int, name: str) -> bool:
    row = get_neighborhood_progress(db, user_id, name)
    return bool(row and row.fully_captured)


# ---- 寫入 ----

def _upsert_zone_progress(db: Session, user_id: int, zone_id: str, *, captured: bool, now: datetime) -> ZoneProgress:
    row = get_zone_progress(db, user_id, zone_id, lock=True)
    if row is None:
        row = ZoneProgress(user_id=user_id, zone_id=zone_id, captured=False, captured_at=None)
        db.add(row)
    if captured:
        # 原本就佔領著的話保留最早的佔領時間
        if not row.captured or row.captured_at is None:
            row.captured_at = now
        row.captured = True
    else:
        row.captured = False
        row.captured_at = None
    # Session 沒開 autoflush，後面的計數查詢要看得到這筆
    db.flush()
    return row


def recompute_neighborhood(
    db: Session,
    user_id: int,
    neighborhood_name: str,
    now: datetime,
) -> NeighborhoodState:
    """
    街區進度永遠用「現況」重算：
      total_zones    = 目前資料表裡帶這個街區名的區域數（含幾何壞掉、無法命中的）
      zones_captured = 使用者在這些區域中已佔領的數量
    """
    zone_ids = neighborhood_zone_ids(db, neighborhood_name)
    total_zones = len(zone_ids)
    zones_captured = 0
    if zone_ids:
        zones_captured = (
            db.query(func.count(ZoneProgress.id))
            .filter(
                ZoneProgress.user_id == user_id,
                ZoneProgress.zone_id.in_(zone_ids),
                ZoneProgress.captured.is_(True),
            )
            .scalar() or 0
        )

    row = get_neighborhood_progress(db, user_id, neighborhood_name, lock=True)
    was_fully = bool(row and row.fully_captured)
    fully = is_fully_captured(zones_captured, total_zones)

    if row is None:
        row = NeighborhoodProgress(user_id=user_id, neighborhood_name=neighborhood_name)
        db.add(row)
    row.zones_captured = zones_captured
    row.total_zones = total_zones
    row.fully_captured = fully
    if fully:
        if not was_fully or row.captured_at is None:
            row.captured_at = now
    else:
        row.captured_at = None
    db.flush()

    return NeighborhoodState(
        neighborhood_name=neighborhood_name,
        zones_captured=zones_captured,
        total_zones=total_zones,
        was_fully_captured=was_fully,
        fully_captured=fully,
    )


def capture_zone_for_checkin(
    db: Session,
    user_id: int,
    zone: ZonePolygon | None,
    now: datetime,
) -> CaptureResult:
    if zone is None:
        return CaptureResult()

    if is_zone_captured(db, user_id, zone.id):
        # 已佔領：冪等，不給獎勵也不再通知
        return CaptureResult(zone_id=zone.id, zone_name=zone.name, neighborhood_name=zone.neighborhood_name)

    _upsert_zone_progress(db, user_id, zone.id, captured=True, now=now)
    logger.info("user %s captured zone %s (%s)", user_id, zone.id, zone.name)

    new_hood = False
    if zone.neighborhood_name:
        state = recompute_neighborhood(db, user_id, zone.neighborhood_name, now)
        new_hood = state.newly_captured
        if new_hood:
            logger.info("user %s captured neighborhood %s", user_id, zone.neighborhood_name)

    return CaptureResult(
        new_zone_captured=True,
        zone_id=zone.id,
        zone_name=zone.name,
        neighborhood_name=zone.neighborhood_name,
        new_neighborhood_captured=new_hood,
    )


def user_has_checkin_in_zone(db: Session, user_id: int, zone: ZonePolygon, businesses: Iterable[Business]) -> bool:
    business_ids = business_ids_in_zone(zone, businesses)
    if not business_ids:
        return False
    remaining = (
        db.query(func.count(CheckIn.id))
        .filter(CheckIn.user_id == user_id, CheckIn.business_id.in_(business_ids))
        .scalar() or 0
    )
    return remaining > 0


def recompute_zone(
    db: Session,
    user_id: int,
    zone: ZonePolygon,
    businesses: Iterable[Business],
    now: datetime,
) -> bool:
    """區域是否佔領 = 區域內任何商家還有這個使用者留下的打卡。回傳重算後的狀態。"""
    captured = user_has_checkin_in_zone(db, user_id, zone, businesses)
    _upsert_zone_progress(db, user_id, zone.id, captured=captured, now=now)
    return captured
