"""
security.py

Password hashing (bcrypt) and bearer-token handling (python-jose) plus the
FastAPI dependencies that resolve the current user.
"""
from datetime import timedelta
from typing import Optional
import logging

import bcrypt
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from cinetrack.core.config import settings
from cinetrack.core.database import get_db
from cinetrack.models import User
from cinetrack.utils.timezone import utc_now

logger = logging.getLogger(__name__)

# bcrypt silently truncates past 72 bytes; reject instead
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _secret() -> str:
    if not settings.secret_key:
        raise RuntimeError("SECRET_KEY is not configured")
    return settings.secret_key


def create_access_token(user_id: int, email: str, expires_minutes: Optional[int] = None) -> str:
    expire = utc_now() + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    payload = {"sub": str(user_id), "email": email, "exp": expire}
    return jwt.encode(payload, _secret(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, _secret(), algorithms=[settings.jwt_algorithm])


def _bearer_token(authorization: Optional[str]) -> str:
    raw = (authorization or "").strip()
    if raw.lower().startswith("bearer "):
        return raw.split(" ", 1)[1].strip()
    return ""


def _resolve_user(authorization: Optional[str], db: Session) -> Optional[User]:
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        claims = decode_access_token(token)
        user_id = int(claims.get("sub"))
    except (JWTError, TypeError, ValueError):
        logger.debug("Rejected bearer token")
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    user = _resolve_user(authorization, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def get_optional_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but anonymous callers get None instead of 401."""
    return _resolve_user(authorization, db)
