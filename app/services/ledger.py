# path: app/services/ledger.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.models.territory import PointsLedger
from app.models.user import User, utcnow_naive
from app.services.capture import CaptureResult
from app.services.points import PointsBreakdown


@dataclass(frozen=True)
class CheckInEffects:
    """一次打卡對使用者造成的所有影響。算好之後一次套用，不在流程中途零散改 user。"""
    points: PointsBreakdown
    streak_days: int
    checkin_day: date
    capture: CaptureResult

    @property
    def points_delta(self) -> int:
        return self.points.total


def ledger_entry_exists(db: Session, idempotency_key: str) -> bool:
    return (
        db.query(PointsLedger.id)
        .filter(PointsLedger.idempotency_key == idempotency_key)
        .first()
    ) is not None


def add_ledger_entry(
    db: Session,
    user: User,
    delta: int,
    source: str,
    ref_id: str | None,
    idempotency_key: str,
) -> int:
    """
    改餘額 + 記一筆帳，回傳實際套用的變動。
    - 同一個 idempotency_key 只會生效一次（重複呼叫回傳 0）
    - 餘額最低到 0，扣不下去的部分不記
    - 不 commit：交易邊界由呼叫端決定
    """
    if ledger_entry_exists(db, idempotency_key):
        return 0
    current = user.points or 0
    applied = delta if delta >= 0 else -min(-delta, current)
    user.points = current + applied
    row = PointsLedger(
        user_id=user.id,
        delta=applied,
        source=source,
        ref_id=ref_id,
        idempotency_key=idempotency_key,
        created_at=utcnow_naive(),
    )
    db.add(row)
    db.flush()
    return applied


def apply_checkin_effects(db: Session, user: User, effects: CheckInEffects, check_in_id: str) -> bool:
    """同一筆打卡的效果只套用一次；已套用過就回傳 False、什麼都不改。"""
    key = f"checkin:{check_in_id}"
    if ledger_entry_exists(db, key):
        return False
    add_ledger_entry(
        db=db,
        user=user,
        delta=effects.points_delta,
        source="checkin",
        ref_id=check_in_id,
        idempotency_key=key,
    )
    user.streak_days = effects.streak_days
    user.last_checkin_date = effects.checkin_day
    db.flush()
    return True


def deduct_points(db: Session, user: User, amount: int, check_in_id: str) -> int:
    if amount <= 0:
        return 0
    return add_ledger_entry(
        db=db,
        user=user,
        delta=-amount,
        source="checkin_undo",
        ref_id=check_in_id,
        idempotency_key=f"checkin_undo:{check_in_id}",
    )
