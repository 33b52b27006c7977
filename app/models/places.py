# path: app/models/places.py
# 商家 / 區域 / 促銷：由其他服務維護（CRUD、幾何編輯），引擎這邊只讀
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, Index

from app.core.db import Base, BigIntId
from app.models.user import utcnow_naive

class Business(Base):
    __tablename__ = "businesses"
    id = Column(String(36), primary_key=True)
    name = Column(String(128), nullable=False)
    category = Column(String(64), nullable=False, default="other")
    address = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    tags = Column(JSON, nullable=True)                 # ["landmark", ...]
    safety_rating = Column(Float, nullable=True)
    min_percent_off = Column(Integer, nullable=True)   # 優惠券下限（%）
    max_percent_off = Column(Integer, nullable=True)   # 優惠券上限（%）
    hours_json = Column(JSON, nullable=True)           # {"mon": "09:00-17:00", "always": true, ...}
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)

    @property
    def is_landmark(self) -> bool:
        return "landmark" in (self.tags or [])

class Zone(Base):
    __tablename__ = "zones"
    id = Column(String(36), primary_key=True)
    name = Column(String(128), nullable=False)
    neighborhood_name = Column(String(128), nullable=True, index=True)
    # 封閉多邊形：[[lng, lat], ...]，第一個點會在最後重複
    boundary_coords = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)

class Promotion(Base):
    __tablename__ = "promotions"
    id = Column(BigIntId, primary_key=True, autoincrement=True)
    business_id = Column(String(36), nullable=False)
    title = Column(String(128), nullable=True)
    bonus_points = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_promotions_business_window", "business_id", "start_time", "end_time"),
    )
