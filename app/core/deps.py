# path: app/core/deps.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer
from starlette import status
from sqlalchemy.orm import Session
from jwt import ExpiredSignatureError, InvalidTokenError

from app.core.db import get_db
from app.core.security import decode_access_token
from app.models.user import User

bearer_scheme = HTTPBearer(auto_error=True)


def get_current_user_id(token=Depends(bearer_scheme)) -> int:
    # 登入 / 發 token 是外部服務的事，引擎只驗簽拿 sub
    try:
        return decode_access_token(token.credentials)
    except ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except (InvalidTokenError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
    return user
