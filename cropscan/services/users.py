"""
Account service: registration, login, profile and admin user management.

Service functions take a SQLAlchemy session plus plain values and return
JSON-ready dicts. Password hashes never leave this module.
"""
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from .. import auth
from ..database import LIKE_ESCAPE, search_pattern
from ..errors import AppError
from ..models import AdminProfile, FarmerProfile, Role, User, utcnow
from ..responses import page_meta

logger = logging.getLogger(__name__)

USER_FIELDS = ("name", "phone", "address", "photo")


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_farmer_profile(profile: Optional[FarmerProfile]) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {
        "id": profile.id,
        "user_id": profile.user_id,
        "crop_types": list(profile.crop_types or []),
        "farm_size": profile.farm_size,
        "farming_experience": profile.farming_experience,
        "farm_location": profile.farm_location,
        "soil_type": profile.soil_type,
        "irrigation_type": profile.irrigation_type,
        "created_at": _iso(profile.created_at),
        "updated_at": _iso(profile.updated_at),
    }


def serialize_admin_profile(profile: Optional[AdminProfile]) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {
        "id": profile.id,
        "user_id": profile.user_id,
        "department": profile.department,
        "designation": profile.designation,
        "created_at": _iso(profile.created_at),
        "updated_at": _iso(profile.updated_at),
    }


def serialize_user(user: User, profiles: bool = True) -> Dict[str, Any]:
    out = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "phone": user.phone,
        "role": user.role.value,
        "photo": user.photo,
        "address": user.address,
        "is_active": user.is_active,
        "need_password_change": user.need_password_change,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "last_login_at": _iso(user.last_login_at),
    }
    if profiles:
        out["farmer_profile"] = serialize_farmer_profile(user.farmer_profile)
        out["admin_profile"] = serialize_admin_profile(user.admin_profile)
    return out


def _with_profiles():
    return (selectinload(User.farmer_profile), selectinload(User.admin_profile))


def _email_taken(db: Session, email: str) -> bool:
    return db.scalar(select(func.count()).select_from(User).where(func.lower(User.email) == email.lower())) > 0


def _create_user(db: Session, data: Dict[str, Any], role: Role, profile) -> User:
    email = data["email"].strip().lower()
    if _email_taken(db, email):
        raise AppError(400, "Email already registered")
    user = User(
        email=email,
        password=auth.hash_password(data["password"]),
        role=role,
        **{k: data.get(k) for k in USER_FIELDS},
    )
    if role == Role.FARMER:
        user.farmer_profile = profile
    else:
        user.admin_profile = profile
    # user and profile are flushed in the same transaction
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s user %s", role.value, user.id)
    return user


def register_farmer(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    profile_data = dict(data.get("farmer_profile") or {})
    user = _create_user(db, data, Role.FARMER, FarmerProfile(**profile_data))
    return {"user": serialize_user(user)}


def register_admin(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    profile_data = dict(data.get("admin_profile") or {})
    user = _create_user(db, data, Role.ADMIN, AdminProfile(**profile_data))
    return {"user": serialize_user(user)}


def login(db: Session, email: str, password: str) -> Dict[str, Any]:
    stmt = (
        select(User)
        .options(*_with_profiles())
        .where(func.lower(User.email) == email.strip().lower(), User.is_active.is_(True),
               User.is_deleted.is_(False))
    )
    user = db.scalars(stmt).first()
    if user is None or not auth.verify_password(password, user.password):
        logger.warning("Failed login attempt for %s", email)
        raise AppError(401, "Invalid credentials")

    user.last_login_at = utcnow()
    db.commit()

    return {
        "user": serialize_user(user),
        "access_token": auth.create_access_token(user),
        "refresh_token": auth.create_refresh_token(user),
        "need_password_change": user.need_password_change,
    }


def refresh_access_token(db: Session, refresh_token: Optional[str]) -> Dict[str, Any]:
    if not refresh_token:
        raise AppError(401, "Refresh token is required")
    data = auth.verify_refresh_token(refresh_token)
    user = auth.load_active_user(db, data["user_id"])
    if user is None:
        raise AppError(401, "User not found or inactive")
    return {"access_token": auth.create_access_token(user)}


def _get_user(db: Session, user_id: str, active_only: bool = True) -> Optional[User]:
    stmt = select(User).options(*_with_profiles()).where(User.id == user_id, User.is_deleted.is_(False))
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    return db.scalars(stmt).first()


def get_profile(db: Session, user_id: str) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    if user is None:
        raise AppError(404, "User not found")
    return serialize_user(user)


def update_profile(db: Session, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    if user is None:
        raise AppError(404, "User not found")
    for key, value in changes.items():
        if key in USER_FIELDS:
            setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return serialize_user(user)


def change_password(db: Session, user_id: str, current_password: str, new_password: str) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    if user is None:
        raise AppError(404, "User not found")
    if not auth.verify_password(current_password, user.password):
        raise AppError(400, "Current password is incorrect")
    user.password = auth.hash_password(new_password)
    user.need_password_change = False
    db.commit()
    return {"message": "Password changed successfully"}


def deactivate(db: Session, user_id: str) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    if user is None:
        raise AppError(404, "User not found")
    user.is_active = False
    db.commit()
    return {"message": "Account deactivated successfully"}


def list_users(db: Session, page: int = 1, limit: int = 10, role: Optional[str] = None,
               search: Optional[str] = None) -> Dict[str, Any]:
    conditions = [User.is_deleted.is_(False)]
    if role:
        conditions.append(User.role == Role(role))
    if search:
        like = search_pattern(search)
        conditions.append(or_(func.lower(User.name).like(like, escape=LIKE_ESCAPE),
                              func.lower(User.email).like(like, escape=LIKE_ESCAPE)))

    total = db.scalar(select(func.count()).select_from(User).where(*conditions))
    stmt = (
        select(User)
        .options(*_with_profiles())
        .where(*conditions)
        .order_by(User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    users = db.scalars(stmt).all()
    return {"users": [serialize_user(u) for u in users], "meta": page_meta(page, limit, total)}


def get_user_by_id(db: Session, user_id: str) -> Dict[str, Any]:
    user = _get_user(db, user_id, active_only=False)
    if user is None:
        raise AppError(404, "User not found")
    return serialize_user(user)


def set_user_status(db: Session, user_id: str, is_active: bool) -> Dict[str, Any]:
    user = _get_user(db, user_id, active_only=False)
    if user is None:
        raise AppError(404, "User not found")
    user.is_active = is_active
    db.commit()
    logger.info("User %s is_active=%s", user_id, is_active)
    return serialize_user(user, profiles=False)


def soft_delete_user(db: Session, user_id: str) -> Dict[str, Any]:
    """Mark a user deleted and free their email.

    Repeating the call on a deleted user returns the stored record unchanged.
    """
    user = db.get(User, user_id)
    if user is None:
        raise AppError(404, "User not found")
    if not user.is_deleted:
        user.is_deleted = True
        user.is_active = False
        user.email = f"deleted_{int(time.time() * 1000)}_{user.email}"
        db.commit()
        logger.info("Soft deleted user %s", user_id)
    return {"id": user.id, "email": user.email, "name": user.name, "role": user.role.value,
            "is_deleted": user.is_deleted}
