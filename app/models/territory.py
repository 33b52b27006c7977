# path: app/models/territory.py
import uuid
from sqlalchemy import Column, Integer, String, Date, DateTime, Float, Boolean, Index, ForeignKey, UniqueConstraint
from app.core.db import Base, BigIntId
from app.models.user import utcnow_naive

class CheckIn(Base):
    __tablename__ = "check_ins"
    # uuid：撤銷後重打不會撞到舊的帳本 key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    business_id = Column(String(36), nullable=False)
    latitude = Column(Float, nullable=False)     # 使用者回報的位置
    longitude = Column(Float, nullable=False)
    # 這次造訪本身的點數（基本 + 好友 + 促銷 + 連續 + 任務）；區域 / 街區佔領獎勵另外算
    points_earned = Column(Integer, nullable=False, default=0)
    # 打卡前使用者的連續天數 / 最後打卡日；撤銷最新一筆時拿來還原
    prev_streak_days = Column(Integer, nullable=True)
    prev_last_checkin_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        Index("idx_checkins_user_business_created", "user_id", "business_id", "created_at"),
        Index("idx_checkins_user_created", "user_id", "created_at"),
    )

class ZoneProgress(Base):
    __tablename__ = "zone_progress"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    zone_id = Column(String(36), nullable=False)
    captured = Column(Boolean, nullable=False, default=False)
    captured_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "zone_id", name="uq_zone_progress_user_zone"),
    )

class NeighborhoodProgress(Base):
    __tablename__ = "neighborhood_progress"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    neighborhood_name = Column(String(128), nullable=False)
    zones_captured = Column(Integer, nullable=False, default=0)
    total_zones = Column(Integer, nullable=False, default=0)
    fully_captured = Column(Boolean, nullable=False, default=False)
    captured_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "neighborhood_name", name="uq_neighborhood_progress_user_name"),
    )

class PointsLedger(Base):
    __tablename__ = "points_ledger"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    delta = Column(Integer, nullable=False)              # 實際套用到餘額的變動（撤銷時可能被 0 擋住）
    source = Column(String(32), nullable=False)          # 'checkin' | 'checkin_undo'
    ref_id = Column(String(36), nullable=True)           # 對應 check_ins.id
    idempotency_key = Column(String(64), nullable=False, unique=True)  # 防重入
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        Index("idx_points_user_created", "user_id", "created_at"),
    )
