import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from ..database import LIKE_ESCAPE, search_pattern
from ..errors import AppError
from ..models import AdminProfile, Role, User
from ..responses import page_meta
from .users import serialize_admin_profile, serialize_user

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "name": User.name,
    "email": User.email,
    "created_at": User.created_at,
    "last_login_at": User.last_login_at,
    "department": AdminProfile.department,
    "designation": AdminProfile.designation,
}


def _admin_base():
    return (
        select(User)
        .outerjoin(AdminProfile, AdminProfile.user_id == User.id)
        .options(selectinload(User.admin_profile))
        .where(User.role == Role.ADMIN, User.is_deleted.is_(False))
    )


def list_admins(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    stmt = _admin_base()
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    if search:
        like = search_pattern(search)
        stmt = stmt.where(or_(
            func.lower(User.name).like(like, escape=LIKE_ESCAPE),
            func.lower(User.email).like(like, escape=LIKE_ESCAPE),
            func.lower(User.phone).like(like, escape=LIKE_ESCAPE),
            func.lower(User.address).like(like, escape=LIKE_ESCAPE),
        ))

    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    column = SORT_FIELDS.get(sort_by, User.created_at)
    stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())
    admins = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    return {"admins": [serialize_user(u) for u in admins], "meta": page_meta(page, limit, total)}


def get_admin(db: Session, user_id: str) -> Dict[str, Any]:
    user = db.scalars(_admin_base().where(User.id == user_id)).first()
    if user is None:
        raise AppError(404, "Admin not found")
    return serialize_user(user)


def admins_by_department(db: Session, department: str, limit: int = 10) -> list:
    stmt = (
        _admin_base()
        .where(func.lower(AdminProfile.department) == department.strip().lower(), User.is_active.is_(True))
        .order_by(User.created_at.desc())
        .limit(limit)
    )
    return [serialize_user(u) for u in db.scalars(stmt).all()]


def admin_stats(db: Session) -> Dict[str, Any]:
    admins = db.scalars(_admin_base()).all()
    active = sum(1 for u in admins if u.is_active)
    departments: Dict[str, int] = {}
    for user in admins:
        dept = (user.admin_profile.department if user.admin_profile else None) or "Unassigned"
        departments[dept] = departments.get(dept, 0) + 1
    return {
        "total_admins": len(admins),
        "active_admins": active,
        "inactive_admins": len(admins) - active,
        "department_distribution": departments,
    }


def update_admin_profile(db: Session, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    user = db.scalars(
        _admin_base().where(User.id == user_id, User.is_active.is_(True))
    ).first()
    if user is None:
        raise AppError(404, "Admin not found")

    profile = user.admin_profile
    if profile is None:
        profile = AdminProfile()
        user.admin_profile = profile
    for key, value in changes.items():
        setattr(profile, key, value)
    db.commit()
    db.refresh(profile)
    out = serialize_admin_profile(profile)
    out["user"] = serialize_user(user, profiles=False)
    return out
