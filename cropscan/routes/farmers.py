from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..models import Role
from ..responses import MAX_LIMIT, send_response
from ..schemas import FarmerProfileUpdate, SortOrder
from ..services import farmers as farmer_service

router = APIRouter(prefix="/farmer", tags=["farmer"])

admin_only = require_roles(Role.ADMIN)

FarmerSortField = Literal["name", "email", "created_at", "last_login_at", "farm_size", "farming_experience"]


@router.patch("/")
def update_farmer_profile(req: FarmerProfileUpdate, user: Dict[str, Any] = Depends(require_roles(Role.FARMER)),
                          db: Session = Depends(get_db)):
    changes = req.model_dump(exclude_unset=True)
    result = farmer_service.update_farmer_profile(db, user["id"], changes)
    return send_response(200, "Farmer profile updated successfully", result)


@router.get("/")
def get_all_farmers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    search: Optional[str] = None,
    crop_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: FarmerSortField = "created_at",
    sort_order: SortOrder = "desc",
    _admin=Depends(admin_only),
    db: Session = Depends(get_db),
):
    result = farmer_service.list_farmers(db, page=page, limit=limit, search=search, crop_type=crop_type,
                                         is_active=is_active, sort_by=sort_by, sort_order=sort_order)
    return send_response(200, "Farmers retrieved successfully", result["farmers"], meta=result["meta"])


@router.get("/stats")
def get_farmers_stats(_admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "Farmers statistics retrieved successfully", farmer_service.farmer_stats(db))


@router.get("/crop/{crop_type}")
def get_farmers_by_crop_type(crop_type: str, limit: int = Query(10, ge=1, le=MAX_LIMIT),
                             _admin=Depends(admin_only), db: Session = Depends(get_db)):
    result = farmer_service.farmers_by_crop(db, crop_type, limit=limit)
    return send_response(200, f"Farmers with crop type '{crop_type}' retrieved successfully", result)


@router.get("/{user_id}")
def get_farmer(user_id: str, _admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "Farmer retrieved successfully", farmer_service.get_farmer(db, user_id))
