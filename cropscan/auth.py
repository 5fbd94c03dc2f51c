import binascii
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .database import get_db
from .errors import AppError
from .models import Role, User

PBKDF2_ITERATIONS = 100_000
ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str, salt: Optional[bytes] = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "pbkdf2_sha256${}${}${}".format(
        iterations,
        binascii.hexlify(salt).decode("ascii"),
        binascii.hexlify(dk).decode("ascii"),
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        algo, iterations, salt_hex, hash_hex = encoded.split("$", 3)
    except (AttributeError, ValueError):
        return False
    if algo != "pbkdf2_sha256":
        return False
    salt = binascii.unhexlify(salt_hex)
    expected = binascii.unhexlify(hash_hex)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iterations))
    return hmac.compare_digest(dk, expected)


def _token_payload(user: User, token_type: str, lifetime: str) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, Role) else user.role,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(seconds=config.parse_duration(lifetime)),
    }


def create_access_token(user: User) -> str:
    payload = _token_payload(user, ACCESS, config.ACCESS_TOKEN_EXPIRES_IN)
    return jwt.encode(payload, config.access_token_secret(), algorithm=config.JWT_ALG)


def create_refresh_token(user: User) -> str:
    payload = _token_payload(user, REFRESH, config.REFRESH_TOKEN_EXPIRES_IN)
    return jwt.encode(payload, config.refresh_token_secret(), algorithm=config.JWT_ALG)


def _decode(token: str, secret: str, token_type: str) -> Dict[str, Any]:
    try:
        data = jwt.decode(token, secret, algorithms=[config.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise AppError(401, "Your token has expired. Please log in again")
    except jwt.InvalidTokenError:
        raise AppError(401, "Invalid token. Please log in again")
    if data.get("type") != token_type or not data.get("user_id"):
        raise AppError(401, "Invalid token. Please log in again")
    return data


def verify_access_token(token: str) -> Dict[str, Any]:
    return _decode(token, config.access_token_secret(), ACCESS)


def verify_refresh_token(token: str) -> Dict[str, Any]:
    return _decode(token, config.refresh_token_secret(), REFRESH)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1]
    else:
        token = authorization
    return token.strip() or None


def load_active_user(db: Session, user_id: str) -> Optional[User]:
    stmt = select(User).where(User.id == user_id, User.is_active.is_(True), User.is_deleted.is_(False))
    return db.scalars(stmt).first()


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Resolve the bearer token to the calling user or fail with 401."""
    token = bearer_token(authorization)
    if not token:
        raise AppError(401, "Access token is required")
    data = verify_access_token(token)
    if load_active_user(db, data["user_id"]) is None:
        raise AppError(401, "User not found or inactive")
    return {"id": data["user_id"], "email": data.get("email"), "role": data.get("role")}


def require_roles(*roles: Role):
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    def _guard(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in allowed:
            raise AppError(403, "Insufficient permissions")
        return user

    return _guard


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == Role.ADMIN.value
