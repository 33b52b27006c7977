# path: app/schemas/checkins.py
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional
from datetime import date, datetime, timezone


class CamelModel(BaseModel):
    # 前端用 camelCase；Python 這邊照樣寫 snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(v: datetime) -> datetime:
    # DB 裡是 UTC 無時區；輸出時補上時區，前端才不會當成當地時間
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# 打卡
class CheckinIn(CamelModel):
    business_id: str = Field(..., min_length=1, max_length=64)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    friend_ids: Optional[list[int | str]] = Field(None, max_length=100)   # 好友 id 可能是數字或字串

class PointsOut(CamelModel):
    base: int
    friend_bonus: int
    promotion_bonus: int
    streak_bonus: int
    zone_capture_bonus: int
    neighborhood_bonus: int
    quest_bonus: int
    total: int

class ZoneCaptureOut(CamelModel):
    zone_id: str
    zone_name: str
    neighborhood_name: Optional[str] = None

class NeighborhoodCaptureOut(CamelModel):
    neighborhood_name: str

class QuestRedemptionOut(CamelModel):
    quest_id: str
    business_id: str
    title: str
    short_prompt: str
    suggested_percent_off: Optional[int]
    ends_at: UtcDatetime
    points: int
    is_landmark: bool

class CheckinOut(CamelModel):
    id: str
    business_id: str
    business_name: str
    points: PointsOut
    is_first_visit: bool
    streak_days: int
    zone_capture: Optional[ZoneCaptureOut] = None
    neighborhood_capture: Optional[NeighborhoodCaptureOut] = None
    quest_redemption: Optional[QuestRedemptionOut] = None

# 撤銷
class UndoIn(CamelModel):
    business_id: str = Field(..., min_length=1, max_length=64)

class UndoOut(CamelModel):
    removed_check_in_id: str
    points_removed: int
    zone_capture_removed: bool
    neighborhood_capture_removed: bool

# 統計 / 歷史
class CheckinStatsOut(CamelModel):
    total_checkins: int
    unique_places: int
    total_points: int
    this_week: int
    zones_captured: int
    neighborhoods_captured: int

class CheckinRow(CamelModel):
    id: str
    business_id: str
    business_name: Optional[str]
    business_category: Optional[str]
    latitude: float
    longitude: float
    points_earned: int
    created_at: UtcDatetime

# /me
class MeSummary(CamelModel):
    user_id: int
    status: str
    points: int
    streak_days: int
    last_checkin_date: Optional[date] = None
    zones_captured: int
    neighborhoods_captured: int
