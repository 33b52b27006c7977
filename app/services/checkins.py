# path: app/services/checkins.py
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import run_in_transaction
from app.core.errors import TargetNotFoundError
from app.models.places import Business, Promotion
from app.models.territory import CheckIn, ZoneProgress, NeighborhoodProgress
from app.models.user import User, utcnow_naive
from app.services.capture import CaptureResult, capture_zone_for_checkin
from app.services.geofence import validate_checkin
from app.services.ledger import CheckInEffects, apply_checkin_effects
from app.services.points import PointsBreakdown, calculate_points
from app.services.quests import QuestRedemption, redeem_quest
from app.services.streak import evaluate_streak, local_day
from app.services.zones import ZonePolygon, load_zones, resolve_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInResult:
    check_in_id: str
    business_id: str
    business_name: str
    points: PointsBreakdown
    is_first_visit: bool
    streak_days: int
    capture: CaptureResult
    quest_redemption: QuestRedemption | None = None


def lock_user(db: Session, user_id: int) -> User:
    # 同一個使用者的打卡 / 撤銷排隊進來：餘額、佔領旗標、街區計數都靠這把鎖
    user = db.query(User).filter(User.id == user_id).with_for_update().first()
    if not user:
        raise TargetNotFoundError("user", str(user_id))
    return user


def get_business(db: Session, business_id: str) -> Business:
    business = db.query(Business).filter(Business.id == business_id).first()
    if not business:
        raise TargetNotFoundError("business", business_id)
    return business


def active_promotion_bonus(db: Session, business_id: str, now: datetime) -> int:
    bonus = (
        db.query(func.max(Promotion.bonus_points))
        .filter(
            Promotion.business_id == business_id,
            Promotion.start_time <= now,
            Promotion.end_time >= now,
        )
        .scalar()
    )
    return max(0, int(bonus or 0))


def recent_checkin_times(db: Session, user_id: int, business_id: str, since: datetime) -> list[datetime]:
    rows = (
        db.query(CheckIn.created_at)
        .filter(
            CheckIn.user_id == user_id,
            CheckIn.business_id == business_id,
            CheckIn.created_at > since,
        )
        .all()
    )
    return [dt for (dt,) in rows]


def has_visited(db: Session, user_id: int, business_id: str) -> bool:
    row = (
        db.query(CheckIn.id)
        .filter(CheckIn.user_id == user_id, CheckIn.business_id == business_id)
        .first()
    )
    return row is not None


def count_friends(friend_ids: Iterable | None, user_id: int) -> int:
    # 好友關係由社群服務管；這裡只去重、排除自己
    if not friend_ids:
        return 0
    return len({str(f) for f in friend_ids} - {str(user_id)})


def _checkin(
    db: Session,
    *,
    user_id: int,
    business_id: str,
    latitude: float,
    longitude: float,
    friend_ids: Sequence | None,
    now: datetime,
    zones: Sequence[ZonePolygon] | None,
) -> CheckInResult:
    user = lock_user(db, user_id)
    business = get_business(db, business_id)

    # 1) 地理圍欄 → 冷卻（順序固定）
    cooldown = timedelta(hours=settings.CHECKIN_COOLDOWN_HOURS)
    validate_checkin(
        claimed_lat=latitude,
        claimed_lng=longitude,
        target_lat=business.latitude,
        target_lng=business.longitude,
        prior_checkins=recent_checkin_times(db, user.id, business.id, now - cooldown),
        now=now,
        radius_m=settings.CHECKIN_RADIUS_METERS,
        cooldown=cooldown,
    )

    is_first_visit = not has_visited(db, user.id, business.id)

    # 2) 區域 → 佔領狀態機（區域用商家座標判斷，不是使用者回報的座標）
    zone_set = list(zones) if zones is not None else load_zones(db)
    zone = resolve_zone(business.latitude, business.longitude, zone_set)
    capture = capture_zone_for_checkin(db, user.id, zone, now)

    # 3) 連續天數：要在寫入這次打卡之前判斷「今天第一次」
    streak_days = evaluate_streak(db, user.id, user.streak_days, now)

    # 4) 任務兌換（每個任務每人一次）
    check_in_id = str(uuid.uuid4())
    redemption = redeem_quest(db, user_id=user.id, business=business, check_in_id=check_in_id, now=now)

    # 5) 點數
    points = calculate_points(
        is_first_visit=is_first_visit,
        friend_count=count_friends(friend_ids, user.id),
        promotion_bonus=active_promotion_bonus(db, business.id, now),
        streak_days=streak_days if settings.STREAK_BONUS_ENABLED else 0,
        new_zone_captured=capture.new_zone_captured,
        new_neighborhood_captured=capture.new_neighborhood_captured,
        quest_bonus=redemption.points if redemption else 0,
    )

    row = CheckIn(
        id=check_in_id,
        user_id=user.id,
        business_id=business.id,
        latitude=latitude,
        longitude=longitude,
        points_earned=points.visit_total,
        prev_streak_days=user.streak_days or 0,
        prev_last_checkin_date=user.last_checkin_date,
        created_at=now,
    )
    db.add(row)
    db.flush()

    apply_checkin_effects(
        db,
        user,
        CheckInEffects(points=points, streak_days=streak_days, checkin_day=local_day(now), capture=capture),
        row.id,
    )

    return CheckInResult(
        check_in_id=row.id,
        business_id=business.id,
        business_name=business.name,
        points=points,
        is_first_visit=is_first_visit,
        streak_days=streak_days,
        capture=capture,
        quest_redemption=redemption,
    )


def perform_checkin(
    db: Session,
    *,
    user_id: int,
    business_id: str,
    latitude: float,
    longitude: float,
    friend_ids: Sequence | None = None,
    now: datetime | None = None,
    zones: Sequence[ZonePolygon] | None = None,
) -> CheckInResult:
    """
    一次打卡 = 一個交易：佔領進度、點數、連續天數、打卡紀錄一起 commit，任何一步失敗整筆 rollback。
    zones 可由呼叫端注入（測試用）；沒給就每次重新從 DB 撈。
    """
    now = now or utcnow_naive()
    result = run_in_transaction(
        db,
        lambda s: _checkin(
            s,
            user_id=user_id,
            business_id=business_id,
            latitude=latitude,
            longitude=longitude,
            friend_ids=friend_ids,
            now=now,
            zones=zones,
        ),
        context={"op": "checkin", "user_id": user_id, "business_id": business_id},
    )
    logger.info(
        "check-in %s user=%s business=%s points=%s zone_captured=%s neighborhood_captured=%s",
        result.check_in_id, user_id, business_id, result.points.total,
        result.capture.new_zone_captured, result.capture.new_neighborhood_captured,
    )
    return result


# ========================
#  查詢
# ========================

def get_checkin_stats(db: Session, user_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow_naive()
    week_ago = now - timedelta(days=7)

    total_checkins, unique_places, total_points = (
        db.query(
            func.count(CheckIn.id),
            func.count(func.distinct(CheckIn.business_id)),
            func.coalesce(func.sum(CheckIn.points_earned), 0),
        )
        .filter(CheckIn.user_id == user_id)
        .one()
    )
    this_week = (
        db.query(func.count(CheckIn.id))
        .filter(CheckIn.user_id == user_id, CheckIn.created_at > week_ago)
        .scalar() or 0
    )
    zones_captured = (
        db.query(func.count(ZoneProgress.id))
        .filter(ZoneProgress.user_id == user_id, ZoneProgress.captured.is_(True))
        .scalar() or 0
    )
    neighborhoods_captured = (
        db.query(func.count(NeighborhoodProgress.id))
        .filter(NeighborhoodProgress.user_id == user_id, NeighborhoodProgress.fully_captured.is_(True))
        .scalar() or 0
    )
    return {
        "total_checkins": int(total_checkins or 0),
        "unique_places": int(unique_places or 0),
        "total_points": int(total_points or 0),
        "this_week": int(this_week),
        "zones_captured": int(zones_captured),
        "neighborhoods_captured": int(neighborhoods_captured),
    }


def get_checkin_history(db: Session, user_id: int, limit: int = 20, offset: int = 0) -> list[tuple[CheckIn, Business | None]]:
    return (
        db.query(CheckIn, Business)
        .outerjoin(Business, Business.id == CheckIn.business_id)
        .filter(CheckIn.user_id == user_id)
        .order_by(CheckIn.created_at.desc(), CheckIn.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
