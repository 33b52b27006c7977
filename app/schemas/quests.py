# path: app/schemas/quests.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional

from app.schemas.checkins import CamelModel, UtcDatetime


# AI 回傳的單一任務建議：每個欄位都當成不可信輸入，型別不對整筆丟掉
class RawQuestSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    quest_id: Optional[Any] = None            # 上游給的 id 一律不用
    business_id: str = Field(..., min_length=1, max_length=64)
    type: Optional[str] = None
    title: str = Field(..., min_length=1)
    short_prompt: Optional[str] = ""
    steps: Optional[list[Any]] = None
    points: Optional[float] = None
    expires_in_minutes: Optional[float] = None
    suggested_percent_off: Optional[float] = None
    safety_note: Optional[str] = None


class QuestGenerateIn(CamelModel):
    user_lat: float = Field(..., ge=-90, le=90)
    user_lng: float = Field(..., ge=-180, le=180)
    window_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    weather_tag: Optional[str] = Field(None, max_length=32)


class QuestStep(BaseModel):
    text: str


# 這兩個維持 snake_case，和前端既有的任務卡片欄位一致
class QuestOut(BaseModel):
    quest_id: str
    business_id: str
    type: str
    title: str
    short_prompt: str
    steps: list[QuestStep]
    points: int
    expires_in_minutes: int
    suggested_percent_off: Optional[int]
    safety_note: Optional[str]
    is_landmark: bool = False


class QuestBatchOut(BaseModel):
    generated_for_window_minutes: int
    source: str                      # "ai" | "fallback"
    quests: list[QuestOut]


class ActiveQuestOut(BaseModel):
    quest_id: str
    business_id: str
    type: str
    title: str
    short_prompt: str
    steps: list[QuestStep]
    points: int
    suggested_percent_off: Optional[int]
    safety_note: Optional[str]
    starts_at: UtcDatetime
    ends_at: UtcDatetime
