# path: app/routers/checkins.py
from fastapi import APIRouter, Depends, Query
from starlette import status
from sqlalchemy.orm import Session
from app.core.db import get_db
from app.core.deps import get_current_user_id
from app.schemas.checkins import (
    CheckinIn, CheckinOut, PointsOut, ZoneCaptureOut, NeighborhoodCaptureOut,
    QuestRedemptionOut, UndoIn, UndoOut, CheckinStatsOut, CheckinRow,
)
from app.services.checkins import (
    CheckInResult, perform_checkin, get_checkin_stats, get_checkin_history,
)
from app.services.undo import undo_last_checkin

router = APIRouter(prefix="/checkins", tags=["checkins"])

# TooFarError / CooldownActiveError / TargetNotFoundError ... 由 app.main 的 exception handler 轉成 HTTP 狀態碼


def _to_out(result: CheckInResult) -> CheckinOut:
    p = result.points
    cap = result.capture
    zone_capture = None
    if cap.new_zone_captured:
        zone_capture = ZoneCaptureOut(
            zone_id=cap.zone_id, zone_name=cap.zone_name, neighborhood_name=cap.neighborhood_name
        )
    hood_capture = None
    if cap.new_neighborhood_captured:
        hood_capture = NeighborhoodCaptureOut(neighborhood_name=cap.neighborhood_name)
    quest = None
    if result.quest_redemption:
        r = result.quest_redemption
        quest = QuestRedemptionOut(
            quest_id=r.quest_id, business_id=r.business_id, title=r.title,
            short_prompt=r.short_prompt, suggested_percent_off=r.suggested_percent_off,
            ends_at=r.ends_at, points=r.points, is_landmark=r.is_landmark,
        )
    return CheckinOut(
        id=result.check_in_id,
        business_id=result.business_id,
        business_name=result.business_name,
        points=PointsOut(
            base=p.base, friend_bonus=p.friend_bonus, promotion_bonus=p.promotion_bonus,
            streak_bonus=p.streak_bonus, zone_capture_bonus=p.zone_capture_bonus,
            neighborhood_bonus=p.neighborhood_bonus, quest_bonus=p.quest_bonus, total=p.total,
        ),
        is_first_visit=result.is_first_visit,
        streak_days=result.streak_days,
        zone_capture=zone_capture,
        neighborhood_capture=hood_capture,
        quest_redemption=quest,
    )


@router.post("", response_model=CheckinOut, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
def checkin(payload: CheckinIn, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    result = perform_checkin(
        db,
        user_id=user_id,
        business_id=payload.business_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        friend_ids=payload.friend_ids,
    )
    return _to_out(result)


@router.post("/undo", response_model=UndoOut, response_model_by_alias=True)
def checkin_undo(payload: UndoIn, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    result = undo_last_checkin(db, user_id=user_id, business_id=payload.business_id)
    return UndoOut(
        removed_check_in_id=result.removed_checkin_id,
        points_removed=result.points_removed,
        zone_capture_removed=result.zone_capture_removed,
        neighborhood_capture_removed=result.neighborhood_capture_removed,
    )


@router.get("/stats", response_model=CheckinStatsOut, response_model_by_alias=True)
def checkin_stats(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return CheckinStatsOut(**get_checkin_stats(db, user_id))


@router.get("/history", response_model=list[CheckinRow], response_model_by_alias=True)
def checkin_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows = get_checkin_history(db, user_id, limit=limit, offset=offset)
    return [
        CheckinRow(
            id=c.id, business_id=c.business_id,
            business_name=b.name if b else None, business_category=b.category if b else None,
            latitude=c.latitude, longitude=c.longitude,
            points_earned=c.points_earned, created_at=c.created_at,
        ) for c, b in rows
    ]
