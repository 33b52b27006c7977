# app/main.py
import logging
from datetime import timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from app.core.config import settings
from app.core.db import engine, Base
from app.core.errors import (
    TooFarError, CooldownActiveError, TargetNotFoundError,
    NoCheckInToUndoError, ConcurrencyConflictError,
)
from app.models import user, places, territory, quest  # noqa: F401  讓 create_all 看得到所有表
from app.routers import checkins, quests, me

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Wander territory")
app.include_router(checkins.router)
app.include_router(quests.router)
app.include_router(me.router)


# ---- 領域錯誤 → HTTP ----
@app.exception_handler(TooFarError)
def too_far_handler(request: Request, exc: TooFarError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Too far from location",
            "distance": exc.distance_meters,
            "maxDistance": exc.max_distance,
        },
    )

def _utc_iso(ts):
    # DB 存的是 UTC 無時區；對外一律帶上時區
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()

@app.exception_handler(CooldownActiveError)
def cooldown_handler(request: Request, exc: CooldownActiveError):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Already checked in here recently",
            "nextAvailable": _utc_iso(exc.next_available_at),
        },
    )

@app.exception_handler(TargetNotFoundError)
def not_found_handler(request: Request, exc: TargetNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": f"{exc.kind.capitalize()} not found"},
    )

@app.exception_handler(NoCheckInToUndoError)
def nothing_to_undo_handler(request: Request, exc: NoCheckInToUndoError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "No check-in found to undo"},
    )

@app.exception_handler(ConcurrencyConflictError)
def conflict_handler(request: Request, exc: ConcurrencyConflictError):
    logger.warning("conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "Concurrent update, please retry"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}

# 啟動時自動建立 ORM 對應資料表（已存在的表會略過）
@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
