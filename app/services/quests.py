# path: app/services/quests.py
"""
限時任務：候選商家 → 外部 AI 產生建議 → 護欄檢查 → 存成可兌換的任務。

AI 的輸出一律當成不可信：
  (a) business_id 不在候選名單 → 整筆丟掉（防止幻覺出來的店家）
  (b) 折扣夾到該候選的 [min, max]；沒有優惠券範圍的（地標）強制為 None
  (c) expires_in_minutes 夾到 [1, 要求的時間窗]
  (d) quest_id 一律由我們重新發，不沿用上游
整批都不合格、或上游直接失敗 → 改用固定模板產生任務，不讓請求失敗。
"""
from __future__ import annotations
import json
import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Sequence
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import QuestValidationError
from app.models.places import Business
from app.models.quest import GeneratedQuest, QuestClaim
from app.schemas.quests import RawQuestSuggestion
from app.services.geofence import haversine_distance_m

logger = logging.getLogger(__name__)

QUEST_TYPES = ("CHECK_IN", "PHOTO", "ROUTE")
QUEST_POINTS_MIN = 25
QUEST_POINTS_MAX = 100
QUEST_DEFAULT_POINTS = 50
MAX_QUESTS_PER_BATCH = 10
FALLBACK_QUEST_COUNT = 3
TITLE_MAX_LEN = 120
PROMPT_MAX_LEN = 280
STEP_MAX_LEN = 200
MAX_STEPS = 5

# payload(dict) → AI 回傳的原始文字（或已經 parse 好的 dict）
QuestGenerator = Callable[[dict], Any]

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_DAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@dataclass(frozen=True)
class Candidate:
    business_id: str
    name: str
    category: str
    distance_m: float
    min_percent_off: int | None
    max_percent_off: int | None
    is_open_now: bool
    tags: tuple[str, ...] = ()
    safety_rating: float | None = None
    description: str | None = None

    @property
    def is_landmark(self) -> bool:
        return "landmark" in self.tags

    @property
    def has_coupon_bounds(self) -> bool:
        return not (self.min_percent_off is None and self.max_percent_off is None)

    def to_payload(self) -> dict:
        return {
            "business_id": self.business_id,
            "name": self.name,
            "category": self.category,
            "distance_m": round(self.distance_m, 1),
            "min_percent_off": self.min_percent_off,
            "max_percent_off": self.max_percent_off,
            "is_open_now": self.is_open_now,
            "tags": list(self.tags),
            "safety_rating": self.safety_rating,
            "features": {"description": self.description} if self.description else None,
        }


@dataclass(frozen=True)
class ValidatedQuest:
    quest_id: str
    business_id: str
    type: str
    title: str
    short_prompt: str
    steps: tuple[str, ...]
    points: int
    expires_in_minutes: int
    suggested_percent_off: int | None
    safety_note: str | None
    is_landmark: bool = False

    def to_dict(self) -> dict:
        return {
            "quest_id": self.quest_id,
            "business_id": self.business_id,
            "type": self.type,
            "title": self.title,
            "short_prompt": self.short_prompt,
            "steps": [{"text": s} for s in self.steps],
            "points": self.points,
            "expires_in_minutes": self.expires_in_minutes,
            "suggested_percent_off": self.suggested_percent_off,
            "safety_note": self.safety_note,
            "is_landmark": self.is_landmark,
        }


@dataclass
class QuestBatch:
    generated_for_window_minutes: int
    source: str                    # "ai" | "fallback"
    quests: list[ValidatedQuest] = field(default_factory=list)


@dataclass(frozen=True)
class QuestRedemption:
    quest_id: str
    business_id: str
    title: str
    short_prompt: str
    suggested_percent_off: int | None
    ends_at: datetime
    points: int
    is_landmark: bool


# ========================
#  候選商家
# ========================

def _parse_ranges(raw: str) -> list[tuple[int, int]]:
    ranges = []
    for part in raw.split(";"):
        start, end = part.strip().split("-")
        sh, sm = (int(x) for x in start.split(":"))
        eh, em = (int(x) for x in end.split(":"))
        ranges.append((sh * 60 + sm, eh * 60 + em))
    return ranges


def is_open_now(hours_json: dict | None, day_key: str, minutes_now: int) -> bool:
    """
    hours_json 格式：{"always": true} 或 {"mon": "09:00-12:00;13:00-18:00", "sun": "CLOSED", "sat": true}
    沒資料 / 格式壞掉都當作沒開。
    """
    if not hours_json:
        return False
    if hours_json.get("always") is True:
        return True
    raw = hours_json.get(day_key)
    if raw is True:
        return True
    if not isinstance(raw, str) or raw.strip().upper() == "CLOSED":
        return False
    try:
        ranges = _parse_ranges(raw)
    except ValueError:
        logger.warning("unparsable hours %r for %s", raw, day_key)
        return False
    return any(start <= minutes_now <= end for start, end in ranges)


def build_candidates(
    businesses: Iterable[Business],
    user_lat: float,
    user_lng: float,
    now: datetime,
    tz_name: str | None = None,
) -> list[Candidate]:
    local = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
    local = local.astimezone(ZoneInfo(tz_name or settings.STREAK_TIMEZONE))
    day_key = _DAY_KEYS[local.weekday()]
    minutes_now = local.hour * 60 + local.minute

    candidates = []
    for b in businesses:
        tags = tuple(b.tags or ())
        landmark = "landmark" in tags
        candidates.append(Candidate(
            business_id=b.id,
            name=b.name,
            category=b.category,
            distance_m=haversine_distance_m(user_lat, user_lng, b.latitude, b.longitude),
            # 地標不是商家，沒有優惠券可言
            min_percent_off=None if landmark else b.min_percent_off,
            max_percent_off=None if landmark else b.max_percent_off,
            is_open_now=is_open_now(b.hours_json, day_key, minutes_now),
            tags=tags,
            safety_rating=b.safety_rating,
        ))
    return candidates


# ========================
#  護欄
# ========================

def _finite(value: float | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    return value if math.isfinite(value) else None


def clamp_percent_off(raw: float | None, candidate: Candidate) -> int | None:
    if not candidate.has_coupon_bounds:
        return None
    min_off = candidate.min_percent_off if candidate.min_percent_off is not None else 0
    max_off = candidate.max_percent_off if candidate.max_percent_off is not None else 100
    if min_off > max_off:
        # 上下限被填反就以下限為準
        max_off = min_off
    value = _finite(raw)
    if value is None:
        value = min_off
    return int(round(min(max(value, min_off), max_off)))


def clamp_expires(raw: float | None, window_minutes: int) -> int:
    window = max(1, int(window_minutes))
    value = _finite(raw)
    if value is None:
        return window
    return int(min(max(math.floor(value), 1), window))


def clamp_points(raw: float | None) -> int:
    value = _finite(raw)
    if value is None:
        value = QUEST_DEFAULT_POINTS
    return int(round(min(max(value, QUEST_POINTS_MIN), QUEST_POINTS_MAX)))


def _clean_text(value: str | None, limit: int) -> str:
    return " ".join((value or "").split())[:limit]


def _clean_steps(steps: Sequence[Any]) -> tuple[str, ...]:
    cleaned = []
    for step in steps[:MAX_STEPS]:
        text = step.get("text") if isinstance(step, dict) else step
        if isinstance(text, str) and text.strip():
            cleaned.append(_clean_text(text, STEP_MAX_LEN))
    return tuple(cleaned)


def new_quest_id() -> str:
    return f"q-{uuid.uuid4().hex}"


def validate_suggestion(
    raw: Any,
    candidates_by_id: dict[str, Candidate],
    window_minutes: int,
) -> ValidatedQuest | None:
    """單一建議過護欄；不合格回傳 None。"""
    if not isinstance(raw, dict):
        return None
    try:
        suggestion = RawQuestSuggestion.model_validate(raw)
    except ValidationError as exc:
        logger.warning("reject quest suggestion with invalid fields: %s", exc.errors(include_url=False))
        return None

    candidate = candidates_by_id.get(suggestion.business_id)
    if candidate is None:
        logger.warning("reject quest suggestion for unknown business_id %r", suggestion.business_id)
        return None

    title = _clean_text(suggestion.title, TITLE_MAX_LEN)
    if not title:
        return None

    quest_type = (suggestion.type or "").strip().upper()
    if quest_type not in QUEST_TYPES:
        quest_type = "CHECK_IN"

    return ValidatedQuest(
        quest_id=new_quest_id(),
        business_id=candidate.business_id,
        type=quest_type,
        title=title,
        short_prompt=_clean_text(suggestion.short_prompt, PROMPT_MAX_LEN),
        steps=_clean_steps(suggestion.steps or []),
        points=clamp_points(suggestion.points),
        expires_in_minutes=clamp_expires(suggestion.expires_in_minutes, window_minutes),
        suggested_percent_off=clamp_percent_off(suggestion.suggested_percent_off, candidate),
        safety_note=_clean_text(suggestion.safety_note, 255) or None,
        is_landmark=candidate.is_landmark,
    )


def validate_batch(
    suggestions: Sequence[Any],
    candidates: Sequence[Candidate],
    window_minutes: int,
) -> list[ValidatedQuest]:
    candidates_by_id = {c.business_id: c for c in candidates}
    valid = []
    # 超過上限的建議直接不看，也不算進被拒絕的數量
    examined = list(suggestions)[:MAX_QUESTS_PER_BATCH]
    for raw in examined:
        quest = validate_suggestion(raw, candidates_by_id, window_minutes)
        if quest is not None:
            valid.append(quest)
    if not valid:
        raise QuestValidationError(rejected=len(examined))
    return valid


# ========================
#  備用模板（固定、可預期）
# ========================

_COMMERCE_TEMPLATES = (
    ("PHOTO", "Explore {name}",
     "Swing by {name} and log your stop before time runs out.",
     "Pop into {name}, snap a quick photo of the storefront, and submit your visit."),
    ("CHECK_IN", "Grab & Go at {name}",
     "Try a quick bite at {name} and note your favorite item.",
     "Order something small at {name}, jot the item name, and check in."),
    ("ROUTE", "Route past {name}",
     "Walk a 5-minute loop that passes {name} and log it.",
     "Start near {name}, walk 5 minutes keeping it in sight, then record your loop."),
    ("PHOTO", "Peek into {name}",
     "Discover one detail inside {name} and share it.",
     "Step into {name}, find a unique detail (poster, flavor, art), and note it on check-in."),
)

_LANDMARK_TEMPLATES = (
    ("PHOTO", "Frame {name}",
     "Find your favorite angle on {name} and capture it.",
     "Walk around {name}, pick one viewpoint, and snap a photo."),
    ("ROUTE", "Loop around {name}",
     "Take a short walk that circles {name}.",
     "Start at {name}, walk a 5-minute loop, and log where you ended up."),
)


def _fallback_order(c: Candidate) -> tuple:
    return (not c.is_open_now, c.distance_m, c.business_id)


def fallback_quests(candidates: Sequence[Candidate], window_minutes: int) -> list[ValidatedQuest]:
    picked = sorted(candidates, key=_fallback_order)[:FALLBACK_QUEST_COUNT]
    quests = []
    for idx, c in enumerate(picked):
        templates = _LANDMARK_TEMPLATES if c.is_landmark else _COMMERCE_TEMPLATES
        quest_type, title, prompt, step = templates[idx % len(templates)]
        quests.append(ValidatedQuest(
            quest_id=new_quest_id(),
            business_id=c.business_id,
            type=quest_type,
            title=_clean_text(title.format(name=c.name), TITLE_MAX_LEN),
            short_prompt=_clean_text(prompt.format(name=c.name), PROMPT_MAX_LEN),
            steps=(_clean_text(step.format(name=c.name), STEP_MAX_LEN),),
            points=QUEST_DEFAULT_POINTS,
            expires_in_minutes=clamp_expires(None, window_minutes),
            suggested_percent_off=clamp_percent_off(None, c),
            safety_note=f"Safety score {c.safety_rating}" if c.safety_rating else "Stay aware of your surroundings.",
            is_landmark=c.is_landmark,
        ))
    return quests


# ========================
#  產生任務
# ========================

def parse_generator_output(raw: Any) -> dict | None:
    """AI 常在 JSON 外面包說明文字或 ```；抓出最外層的 {...} 再 parse。"""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return None
    match = _JSON_OBJECT_RE.search(raw)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def generate_quests(
    candidates: Sequence[Candidate],
    window_minutes: int,
    generator: QuestGenerator | None,
    *,
    now: datetime,
    weather_tag: str | None = None,
    user_lat: float | None = None,
    user_lng: float | None = None,
) -> QuestBatch:
    """永遠回傳一批任務（可能是空的：沒有任何候選時）；不會因為上游失敗而丟例外。"""
    if not candidates:
        return QuestBatch(generated_for_window_minutes=window_minutes, source="fallback")

    parsed = None
    if generator is None:
        logger.info("no quest generator configured, using fallback templates")
    else:
        payload = {
            "now_utc": now.isoformat(),
            "window_minutes": window_minutes,
            "weather_tag": weather_tag or "unknown",
            "user_location": {"lat": user_lat, "lng": user_lng},
            "candidates": [c.to_payload() for c in candidates],
        }
        try:
            parsed = parse_generator_output(generator(payload))
        except Exception:
            # 外部 AI 怎麼壞都不能讓請求失敗
            logger.warning("quest generator call failed, using fallback", exc_info=True)

    suggestions = parsed.get("quests") if parsed else None
    if isinstance(suggestions, list) and suggestions:
        try:
            quests = validate_batch(suggestions, candidates, window_minutes)
            return QuestBatch(generated_for_window_minutes=window_minutes, source="ai", quests=quests)
        except QuestValidationError as exc:
            logger.warning("%s, using fallback", exc)
    elif parsed is not None:
        logger.warning("quest generator returned no usable quests, using fallback")

    return QuestBatch(
        generated_for_window_minutes=window_minutes,
        source="fallback",
        quests=fallback_quests(candidates, window_minutes),
    )


def persist_quests(db: Session, quests: Iterable[ValidatedQuest], now: datetime) -> list[GeneratedQuest]:
    rows = []
    for q in quests:
        row = GeneratedQuest(
            quest_id=q.quest_id,
            business_id=q.business_id,
            type=q.type,
            title=q.title,
            short_prompt=q.short_prompt,
            steps_json=[{"text": s} for s in q.steps],
            points=q.points,
            suggested_percent_off=q.suggested_percent_off,
            safety_note=q.safety_note,
            starts_at=now,
            ends_at=now + timedelta(minutes=q.expires_in_minutes),
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def list_active_quests(db: Session, now: datetime, limit: int = 100) -> list[GeneratedQuest]:
    return (
        db.query(GeneratedQuest)
        .filter(GeneratedQuest.starts_at <= now, GeneratedQuest.ends_at >= now)
        .order_by(GeneratedQuest.starts_at.desc(), GeneratedQuest.id.desc())
        .limit(limit)
        .all()
    )


# ========================
#  兌換（打卡時）
# ========================

def find_redeemable_quest(db: Session, business_id: str, now: datetime) -> GeneratedQuest | None:
    return (
        db.query(GeneratedQuest)
        .filter(
            GeneratedQuest.business_id == business_id,
            GeneratedQuest.starts_at <= now,
            GeneratedQuest.ends_at >= now,
        )
        .order_by(GeneratedQuest.starts_at.desc(), GeneratedQuest.id.desc())
        .first()
    )


def redeem_quest(
    db: Session,
    *,
    user_id: int,
    business: Business,
    check_in_id: str,
    now: datetime,
) -> QuestRedemption | None:
    """
    有進行中的任務、而且這個使用者還沒兌換過 → 記一筆 claim 並回傳兌換內容。
    同一個任務第二次兌換直接回傳 None（unique(user, quest) 也會在併發時擋住）。
    """
    quest = find_redeemable_quest(db, business.id, now)
    if quest is None:
        return None
    claimed = (
        db.query(QuestClaim.id)
        .filter(QuestClaim.user_id == user_id, QuestClaim.quest_id == quest.quest_id)
        .first()
    )
    if claimed:
        return None

    db.add(QuestClaim(
        user_id=user_id,
        quest_id=quest.quest_id,
        check_in_id=check_in_id,
        points_awarded=quest.points,
        claimed_at=now,
    ))
    db.flush()
    return QuestRedemption(
        quest_id=quest.quest_id,
        business_id=quest.business_id,
        title=quest.title,
        short_prompt=quest.short_prompt,
        suggested_percent_off=quest.suggested_percent_off,
        ends_at=quest.ends_at,
        points=quest.points,
        is_landmark=business.is_landmark,
    )


def release_quest_claims(db: Session, check_in_id: str) -> int:
    """撤銷打卡時一併釋放它兌換的任務，讓重新打卡可以再兌換一次。"""
    return (
        db.query(QuestClaim)
        .filter(QuestClaim.check_in_id == check_in_id)
        .delete(synchronize_session=False)
    )
