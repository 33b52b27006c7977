# path: app/routers/quests.py
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.core.deps import get_current_user_id
from app.models.places import Business
from app.models.user import utcnow_naive
from app.schemas.quests import QuestGenerateIn, QuestBatchOut, QuestOut, ActiveQuestOut, QuestStep
from app.services.gemini import get_quest_generator
from app.services.quests import build_candidates, generate_quests, persist_quests, list_active_quests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quests", tags=["quests"])


@router.post("/generate", response_model=QuestBatchOut)
def quests_generate(
    payload: QuestGenerateIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    generator=Depends(get_quest_generator),
):
    now = utcnow_naive()
    window = payload.window_minutes or settings.QUEST_DEFAULT_WINDOW_MINUTES

    # 1) 候選：全部商家 + 地標，算距離 / 營業中
    businesses = db.query(Business).order_by(Business.id).all()
    candidates = build_candidates(businesses, payload.user_lat, payload.user_lng, now)

    # 2) AI（或備用模板）→ 護欄
    batch = generate_quests(
        candidates, window, generator,
        now=now, weather_tag=payload.weather_tag,
        user_lat=payload.user_lat, user_lng=payload.user_lng,
    )

    # 3) 存起來，打卡時才兌換得到
    persist_quests(db, batch.quests, now)
    db.commit()
    logger.info("user %s generated %d quests (source=%s, window=%s)", user_id, len(batch.quests), batch.source, window)

    return QuestBatchOut(
        generated_for_window_minutes=batch.generated_for_window_minutes,
        source=batch.source,
        quests=[QuestOut(**q.to_dict()) for q in batch.quests],
    )


@router.get("/active", response_model=list[ActiveQuestOut])
def quests_active(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    rows = list_active_quests(db, utcnow_naive())
    return [
        ActiveQuestOut(
            quest_id=r.quest_id, business_id=r.business_id, type=r.type,
            title=r.title, short_prompt=r.short_prompt,
            steps=[QuestStep(text=s.get("text", "")) for s in (r.steps_json or []) if isinstance(s, dict)],
            points=r.points, suggested_percent_off=r.suggested_percent_off,
            safety_note=r.safety_note, starts_at=r.starts_at, ends_at=r.ends_at,
        ) for r in rows
    ]
