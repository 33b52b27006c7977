# path: app/routers/me.py
from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.deps import get_current_user
from app.models.territory import ZoneProgress, NeighborhoodProgress
from app.models.user import User, utcnow_naive
from app.schemas.checkins import MeSummary
from app.services.streak import current_streak

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=MeSummary, response_model_by_alias=True)
def read_me(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # 1) 佔領數量
    zones = (
        db.query(func.count(ZoneProgress.id))
        .filter(ZoneProgress.user_id == user.id, ZoneProgress.captured.is_(True))
        .scalar() or 0
    )
    hoods = (
        db.query(func.count(NeighborhoodProgress.id))
        .filter(NeighborhoodProgress.user_id == user.id, NeighborhoodProgress.fully_captured.is_(True))
        .scalar() or 0
    )

    # 2) 連續天數（斷掉的就顯示 0）
    streak = current_streak(user.streak_days, user.last_checkin_date, utcnow_naive())

    return MeSummary(
        user_id=user.id,
        status=user.status,
        points=user.points or 0,
        streak_days=streak,
        last_checkin_date=user.last_checkin_date,
        zones_captured=int(zones),
        neighborhoods_captured=int(hoods),
    )
