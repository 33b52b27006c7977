# path: tests/conftest.py
import os

# 設定要在 import app 之前：Settings() 在模組載入時就會讀環境變數
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-please-change"
os.environ["GEMINI_API_KEY"] = ""
os.environ["STREAK_BONUS_ENABLED"] = "false"
os.environ["STREAK_TIMEZONE"] = "America/New_York"

import pytest
from fastapi.testclient import TestClient

from app.core.db import Base, SessionLocal, engine
from app.core.security import create_access_token
from app.main import app


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _make(user_id: int) -> dict:
        token, _, _ = create_access_token(user_id=user_id)
        return {"Authorization": f"Bearer {token}"}
    return _make
