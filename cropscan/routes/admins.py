from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..models import Role
from ..responses import MAX_LIMIT, send_response
from ..schemas import AdminProfileIn, SortOrder
from ..services import admins as admin_service

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles(Role.ADMIN)

AdminSortField = Literal["name", "email", "created_at", "last_login_at", "department", "designation"]


@router.get("/stats")
def get_admins_stats(_admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "Admins statistics retrieved successfully", admin_service.admin_stats(db))


@router.get("/")
def get_all_admins(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: AdminSortField = "created_at",
    sort_order: SortOrder = "desc",
    _admin=Depends(admin_only),
    db: Session = Depends(get_db),
):
    result = admin_service.list_admins(db, page=page, limit=limit, search=search, is_active=is_active,
                                       sort_by=sort_by, sort_order=sort_order)
    return send_response(200, "Admins retrieved successfully", result["admins"], meta=result["meta"])


@router.get("/department/{department}")
def get_admins_by_department(department: str, limit: int = Query(10, ge=1, le=MAX_LIMIT),
                             _admin=Depends(admin_only), db: Session = Depends(get_db)):
    result = admin_service.admins_by_department(db, department, limit=limit)
    return send_response(200, f"Admins in '{department}' department retrieved successfully", result)


@router.get("/{user_id}")
def get_admin(user_id: str, _admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "Admin retrieved successfully", admin_service.get_admin(db, user_id))


@router.patch("/")
def update_admin_profile(req: AdminProfileIn, user: Dict[str, Any] = Depends(admin_only),
                         db: Session = Depends(get_db)):
    changes = req.model_dump(exclude_unset=True)
    result = admin_service.update_admin_profile(db, user["id"], changes)
    return send_response(200, "Admin profile updated successfully", result)
