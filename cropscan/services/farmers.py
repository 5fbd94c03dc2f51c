import logging
from collections import Counter
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from ..database import LIKE_ESCAPE, search_pattern
from ..errors import AppError
from ..models import FarmerProfile, Role, User
from ..responses import page_meta
from .users import serialize_farmer_profile, serialize_user

logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {
    "name": User.name,
    "email": User.email,
    "created_at": User.created_at,
    "last_login_at": User.last_login_at,
}
PROFILE_SORT_FIELDS = {
    "farm_size": FarmerProfile.farm_size,
    "farming_experience": FarmerProfile.farming_experience,
}


def _farmer_base():
    return (
        select(User)
        .join(FarmerProfile, FarmerProfile.user_id == User.id)
        .where(User.role == Role.FARMER, User.is_deleted.is_(False))
    )


def _has_crop(profile: FarmerProfile, crop_type: str) -> bool:
    wanted = crop_type.strip().lower()
    return any(str(c).lower() == wanted for c in (profile.crop_types or []))


def update_farmer_profile(db: Session, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    user = db.scalars(
        select(User)
        .options(selectinload(User.farmer_profile))
        .where(User.id == user_id, User.role == Role.FARMER, User.is_active.is_(True),
               User.is_deleted.is_(False))
    ).first()
    if user is None or user.farmer_profile is None:
        raise AppError(404, "Farmer not found")

    profile = user.farmer_profile
    for key, value in changes.items():
        setattr(profile, key, value)
    db.commit()
    db.refresh(profile)
    out = serialize_farmer_profile(profile)
    out["user"] = serialize_user(user, profiles=False)
    return out


def list_farmers(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    crop_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    stmt = _farmer_base().options(selectinload(User.farmer_profile))
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

    column = USER_SORT_FIELDS.get(sort_by) or PROFILE_SORT_FIELDS.get(sort_by) or User.created_at
    stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())

    if crop_type:
        # crop_types is a JSON list, filtered in Python to stay portable across backends
        farmers = [u for u in db.scalars(stmt).all() if _has_crop(u.farmer_profile, crop_type)]
        total = len(farmers)
        farmers = farmers[(page - 1) * limit:(page - 1) * limit + limit]
    else:
        total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
        farmers = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()

    return {"farmers": [serialize_user(u) for u in farmers], "meta": page_meta(page, limit, total)}


def get_farmer(db: Session, user_id: str) -> Dict[str, Any]:
    user = db.scalars(
        _farmer_base().options(selectinload(User.farmer_profile)).where(User.id == user_id)
    ).first()
    if user is None:
        raise AppError(404, "Farmer not found")
    return serialize_user(user)


def farmers_by_crop(db: Session, crop_type: str, limit: int = 10) -> list:
    stmt = (
        _farmer_base()
        .options(selectinload(User.farmer_profile))
        .where(User.is_active.is_(True))
        .order_by(User.created_at.desc())
    )
    matches = [u for u in db.scalars(stmt).all() if _has_crop(u.farmer_profile, crop_type)]
    return [serialize_user(u) for u in matches[:limit]]


def farmer_stats(db: Session) -> Dict[str, Any]:
    farmers = db.scalars(_farmer_base().options(selectinload(User.farmer_profile))).all()
    active = sum(1 for u in farmers if u.is_active)
    crops, soils, irrigation = Counter(), Counter(), Counter()
    sizes, experience = [], []
    for user in farmers:
        profile = user.farmer_profile
        crops.update(str(c).lower() for c in (profile.crop_types or []))
        if profile.soil_type:
            soils[profile.soil_type] += 1
        if profile.irrigation_type:
            irrigation[profile.irrigation_type] += 1
        if profile.farm_size is not None:
            sizes.append(profile.farm_size)
        if profile.farming_experience is not None:
            experience.append(profile.farming_experience)

    return {
        "total_farmers": len(farmers),
        "active_farmers": active,
        "inactive_farmers": len(farmers) - active,
        "average_farm_size": round(sum(sizes) / len(sizes), 2) if sizes else 0,
        "average_experience": round(sum(experience) / len(experience), 2) if experience else 0,
        "crop_type_distribution": dict(crops.most_common()),
        "soil_type_distribution": dict(soils),
        "irrigation_type_distribution": dict(irrigation),
    }
