# app/core/security.py
from __future__ import annotations
import time
from datetime import datetime, timedelta, timezone
from typing import Tuple

import jwt  # PyJWT
from app.core.config import settings

ALGORITHM = "HS256"


# ---- 時間工具 ----
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- Access Token (JWT) ----
def create_access_token(
    *,
    user_id: int,
    expires_minutes: int | None = None,
) -> Tuple[str, int, datetime]:
    """
    產生 Access Token（JWT, HS256）
    回傳：(jwt_string, expires_in_seconds, expires_at_utc)
    """
    exp_minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = utcnow()
    expires_at = now + timedelta(minutes=exp_minutes)

    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)
    expires_in = int(expires_at.timestamp() - time.time())
    return token, expires_in, expires_at


def decode_access_token(token: str) -> int:
    """
    驗簽 + 檢查過期，回傳 user id（sub）。
    失敗就丟 PyJWT 的例外（ExpiredSignatureError / InvalidTokenError），由 deps 轉成 401。
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
    return int(payload["sub"])
