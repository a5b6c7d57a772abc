# app/security.py

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from app.config import settings

ALGORITHM = "HS256"

# Admin tokens carry "admin:<id>" as subject, creator tokens the bare numeric id
ADMIN_SUBJECT_PREFIX = "admin:"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    claims = dict(data)
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_admin_token(admin_id: int) -> str:
    return create_access_token({"sub": f"{ADMIN_SUBJECT_PREFIX}{admin_id}"})


def create_creator_token(creator_id: int) -> str:
    return create_access_token({"sub": str(creator_id)})


def decode_access_token(token: str) -> Optional[str]:
    """Token subject, or None for an invalid / expired token."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    sub = claims.get("sub")
    return str(sub) if sub is not None else None


def is_admin_subject(subject: str) -> bool:
    return subject.startswith(ADMIN_SUBJECT_PREFIX)


def admin_id_from_subject(subject: str) -> Optional[int]:
    raw = subject[len(ADMIN_SUBJECT_PREFIX):]
    return int(raw) if raw.isdigit() else None


def creator_id_from_subject(subject: str) -> Optional[int]:
    return int(subject) if subject.isdigit() else None
