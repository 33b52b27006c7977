# path: app/services/undo.py
"""
撤銷某個 (user, business) 最近一次打卡。

作法是「刪掉那筆 → 用剩下的歷史重算佔領狀態」，不是把當初加的東西扣回去：
同一區域裡有好幾家店時，只有重算才能保證佔領獎勵不會重複扣或漏扣。
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import run_in_transaction
from app.core.errors import NoCheckInToUndoError
from app.models.places import Business
from app.models.territory import CheckIn
from app.models.user import User, utcnow_naive
from app.services.capture import (
    is_neighborhood_captured,
    is_zone_captured,
    recompute_neighborhood,
    recompute_zone,
)
from app.services.checkins import get_business, lock_user
from app.services.ledger import deduct_points
from app.services.quests import release_quest_claims
from app.services.zones import ZonePolygon, load_zones, resolve_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UndoResult:
    removed_checkin_id: str
    points_removed: int
    zone_capture_removed: bool
    neighborhood_capture_removed: bool


def latest_checkin(db: Session, user_id: int, business_id: str) -> CheckIn | None:
    return (
        db.query(CheckIn)
        .filter(CheckIn.user_id == user_id, CheckIn.business_id == business_id)
        .order_by(CheckIn.created_at.desc(), CheckIn.id.desc())
        .first()
    )


def latest_checkin_overall(db: Session, user_id: int) -> CheckIn | None:
    return (
        db.query(CheckIn)
        .filter(CheckIn.user_id == user_id)
        .order_by(CheckIn.created_at.desc(), CheckIn.id.desc())
        .first()
    )


def restore_streak(user: User, checkin: CheckIn) -> bool:
    """撤銷的是最新一筆時，把連續天數 / 最後打卡日退回打卡前的值。舊資料沒存就不動。"""
    if checkin.prev_streak_days is None:
        return False
    user.streak_days = checkin.prev_streak_days
    user.last_checkin_date = checkin.prev_last_checkin_date
    return True


def _undo(
    db: Session,
    *,
    user_id: int,
    business_id: str,
    now: datetime,
    zones: Sequence[ZonePolygon] | None,
) -> UndoResult:
    user = lock_user(db, user_id)
    checkin = latest_checkin(db, user.id, business_id)
    if checkin is None:
        raise NoCheckInToUndoError(business_id)
    business = get_business(db, business_id)

    checkin_id = checkin.id
    points_earned = checkin.points_earned or 0

    # 1) 先記下撤銷前的佔領狀態（只拿來算回報欄位）
    zone_set = list(zones) if zones is not None else load_zones(db)
    zone = resolve_zone(business.latitude, business.longitude, zone_set)
    was_zone = bool(zone) and is_zone_captured(db, user.id, zone.id)
    was_hood = bool(zone and zone.neighborhood_name) and is_neighborhood_captured(db, user.id, zone.neighborhood_name)

    # 連續天數只跟著最新一筆走；撤銷更早的打卡不影響目前的連續紀錄
    latest = latest_checkin_overall(db, user.id)
    if latest is not None and latest.id == checkin_id:
        restore_streak(user, checkin)

    # 2) 刪掉這筆打卡（連同它兌換的任務）
    release_quest_claims(db, checkin_id)
    db.delete(checkin)
    db.flush()

    # 3) 4) 用剩下的歷史重算區域 → 街區
    now_zone = False
    now_hood = False
    if zone is not None:
        now_zone = recompute_zone(db, user.id, zone, db.query(Business).all(), now)
        if zone.neighborhood_name:
            now_hood = recompute_neighborhood(db, user.id, zone.neighborhood_name, now).fully_captured

    zone_removed = was_zone and not now_zone
    hood_removed = was_hood and not now_hood

    # 5) 扣點：那次造訪本身的點數 + 因此失去的佔領獎勵；餘額最低 0
    points_removed = points_earned
    if zone_removed:
        points_removed += settings.ZONE_CAPTURE_POINTS
    if hood_removed:
        points_removed += settings.NEIGHBORHOOD_CAPTURE_POINTS
    deduct_points(db, user, points_removed, checkin_id)

    return UndoResult(
        removed_checkin_id=checkin_id,
        points_removed=points_removed,
        zone_capture_removed=zone_removed,
        neighborhood_capture_removed=hood_removed,
    )


def undo_last_checkin(
    db: Session,
    *,
    user_id: int,
    business_id: str,
    now: datetime | None = None,
    zones: Sequence[ZonePolygon] | None = None,
) -> UndoResult:
    now = now or utcnow_naive()
    result = run_in_transaction(
        db,
        lambda s: _undo(s, user_id=user_id, business_id=business_id, now=now, zones=zones),
        context={"op": "undo", "user_id": user_id, "business_id": business_id},
    )
    logger.info(
        "undo check-in %s user=%s business=%s points_removed=%s zone_removed=%s neighborhood_removed=%s",
        result.removed_checkin_id, user_id, business_id, result.points_removed,
        result.zone_capture_removed, result.neighborhood_capture_removed,
    )
    return result
