# path: app/core/errors.py
from __future__ import annotations
from datetime import datetime


class EngineError(Exception):
    """打卡 / 佔領引擎的領域錯誤基底。router 會轉成對應的 HTTP 狀態碼。"""


class TooFarError(EngineError):
    def __init__(self, distance_meters: float, max_distance: float):
        self.distance_meters = distance_meters
        self.max_distance = max_distance
        super().__init__(f"too far from target: {distance_meters}m > {max_distance}m")


class CooldownActiveError(EngineError):
    def __init__(self, next_available_at: datetime):
        self.next_available_at = next_available_at
        super().__init__(f"check-in cooldown active until {next_available_at.isoformat()}")


class TargetNotFoundError(EngineError):
    def __init__(self, kind: str, target_id: str):
        self.kind = kind
        self.target_id = target_id
        super().__init__(f"{kind} not found: {target_id}")


class NoCheckInToUndoError(EngineError):
    def __init__(self, business_id: str):
        self.business_id = business_id
        super().__init__(f"no check-in found to undo for business {business_id}")


class QuestValidationError(EngineError):
    """整批 AI 任務建議都沒通過檢查。只在內部使用，呼叫端會改走備用模板。"""

    def __init__(self, rejected: int):
        self.rejected = rejected
        super().__init__(f"all {rejected} quest suggestions rejected")


class ConcurrencyConflictError(EngineError):
    pass
