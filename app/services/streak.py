# app/services/streak.py
from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.territory import CheckIn


def local_day(ts: datetime, tz_name: str | None = None) -> date:
    """把 DB 裡的 UTC（無時區）時間轉成指定時區的「當地日期」。"""
    tz = ZoneInfo(tz_name or settings.STREAK_TIMEZONE)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz).date()


def _naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_day_bounds_utc(day: date, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """
    回傳某個當地日期的區間 [00:00, 隔天 00:00)，換算成 UTC 無時區，方便直接跟 created_at 比。
    """
    tz = ZoneInfo(tz_name or settings.STREAK_TIMEZONE)
    start_local = datetime(day.year, day.month, day.day, tzinfo=tz)
    next_day = day + timedelta(days=1)
    end_local = datetime(next_day.year, next_day.month, next_day.day, tzinfo=tz)
    return _naive_utc(start_local), _naive_utc(end_local)


def next_streak(current: int, has_yesterday: bool, is_first_today: bool) -> int:
    """
    每次打卡都評估一次：
      - 昨天有打卡 → +1
      - 否則，如果是今天第一次 → 重設為 1
      - 否則不變
    """
    if has_yesterday:
        return (current or 0) + 1
    if is_first_today:
        return 1
    return current or 0


def has_checkin_on(db: Session, user_id: int, day: date, tz_name: str | None = None) -> bool:
    start, end = local_day_bounds_utc(day, tz_name)
    row = (
        db.query(CheckIn.id)
        .filter(
            CheckIn.user_id == user_id,
            CheckIn.created_at >= start,
            CheckIn.created_at < end,
        )
        .first()
    )
    return row is not None


def evaluate_streak(db: Session, user_id: int, current: int, now: datetime) -> int:
    """要在新的打卡寫入「之前」呼叫，這樣「今天第一次」才判斷得準。"""
    today = local_day(now)
    has_yesterday = has_checkin_on(db, user_id, today - timedelta(days=1))
    is_first_today = not has_checkin_on(db, user_id, today)
    return next_streak(current, has_yesterday, is_first_today)


def current_streak(streak_days: int, last_checkin_date: date | None, now: datetime) -> int:
    """
    顯示用：最後一次打卡不是今天或昨天，連續就已經斷了（DB 裡的數字要等下次打卡才會重設）。
    """
    if not last_checkin_date:
        return 0
    today = local_day(now)
    if last_checkin_date < today - timedelta(days=1):
        return 0
    return streak_days or 0
