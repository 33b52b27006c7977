# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    # 讀 .env
    DATABASE_URL: str = "sqlite:///./wander.db"
    JWT_SECRET: str = Field(..., description="JWT 簽章密鑰（請放長且隨機的字串）")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 20

    # 打卡：地理圍欄 + 冷卻
    CHECKIN_RADIUS_METERS: float = 50.0
    CHECKIN_COOLDOWN_HOURS: int = 24

    # 領地佔領獎勵
    ZONE_CAPTURE_POINTS: int = 25
    NEIGHBORHOOD_CAPTURE_POINTS: int = 50

    # 連續打卡：日期以這個時區的「當地日曆日」計算
    STREAK_TIMEZONE: str = "America/New_York"
    STREAK_BONUS_ENABLED: bool = False

    # 任務產生（外部 AI）
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_TIMEOUT_SECONDS: float = 30.0
    QUEST_DEFAULT_WINDOW_MINUTES: int = 120

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
