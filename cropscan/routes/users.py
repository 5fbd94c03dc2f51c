from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_roles
from ..database import get_db
from ..models import Role
from ..responses import send_response
from ..schemas import UserStatusRequest
from ..services import users as user_service

router = APIRouter(prefix="/user", tags=["user"])

admin_only = require_roles(Role.ADMIN)


@router.get("/profile")
def get_my_profile(user: Dict[str, Any] = Depends(get_current_user), db: Session = Depends(get_db)):
    return send_response(200, "Profile retrieved successfully", user_service.get_profile(db, user["id"]))


@router.get("/{user_id}")
def get_user(user_id: str, _admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "User retrieved successfully", user_service.get_user_by_id(db, user_id))


@router.patch("/{user_id}/status")
def toggle_user_status(user_id: str, req: UserStatusRequest, _admin=Depends(admin_only),
                       db: Session = Depends(get_db)):
    result = user_service.set_user_status(db, user_id, req.is_active)
    state = "activated" if req.is_active else "deactivated"
    return send_response(200, f"User {state} successfully", result)


@router.delete("/{user_id}")
def delete_user(user_id: str, _admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(200, "User deleted successfully", user_service.soft_delete_user(db, user_id))
