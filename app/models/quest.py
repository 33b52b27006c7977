# path: app/models/quest.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, ForeignKey, UniqueConstraint
from app.core.db import Base, BigIntId
from app.models.user import utcnow_naive

class GeneratedQuest(Base):
    """只存「通過檢查」的任務；AI 原始輸出不落地。"""
    __tablename__ = "generated_quests"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    quest_id = Column(String(64), nullable=False, unique=True)   # 引擎自己發的 id，不沿用上游
    business_id = Column(String(36), nullable=False)
    type = Column(String(16), nullable=False, default="CHECK_IN")
    title = Column(String(120), nullable=False)
    short_prompt = Column(String(280), nullable=False, default="")
    steps_json = Column(JSON, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    suggested_percent_off = Column(Integer, nullable=True)        # 地標類沒有優惠券 → NULL
    safety_note = Column(String(255), nullable=True)
    starts_at = Column(DateTime, nullable=False, default=utcnow_naive)
    ends_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_generated_quests_business_window", "business_id", "starts_at", "ends_at"),
    )

class QuestClaim(Base):
    """已兌換任務的帳本：同一個使用者同一個任務只能兌換一次。"""
    __tablename__ = "quest_claims"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id = Column(String(64), nullable=False)
    check_in_id = Column(String(36), nullable=True)
    points_awarded = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="uq_quest_claims_user_quest"),
    )
