import uuid
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlmodel import Session

from findit.config import Settings, get_settings
from findit.models.user import User

bearer_scheme_required = HTTPBearer(auto_error=True)


def get_current_user_required(
    token: HTTPAuthorizationCredentials = Depends(bearer_scheme_required),
    settings: Settings = Depends(get_settings),
):
    try:
        payload = jwt.decode(
            token.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if "sub" not in payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


def get_db_user(session: Session, current_user) -> User:
    try:
        user_id = uuid.UUID(current_user["sub"])
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = session.get(User, user_id)

    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return user
