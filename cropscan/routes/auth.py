from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Cookie, Depends, Query
from sqlalchemy.orm import Session

from .. import config
from ..auth import get_current_user, require_roles
from ..database import get_db
from ..models import Role
from ..responses import MAX_LIMIT, send_response
from ..schemas import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterAdminRequest,
    RegisterFarmerRequest,
    RoleName,
    UpdateProfileRequest,
)
from ..services import users as user_service

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE = "refresh_token"


@router.post("/register/farmer")
def register_farmer(req: RegisterFarmerRequest, db: Session = Depends(get_db)):
    result = user_service.register_farmer(db, req.model_dump())
    return send_response(201, "Farmer registered successfully", result)


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    result = user_service.login(db, req.email, req.password)
    response = send_response(200, "Login successful", {
        "access_token": result["access_token"],
        "need_password_change": result["need_password_change"],
    })
    response.set_cookie(
        REFRESH_COOKIE,
        result["refresh_token"],
        httponly=True,
        secure=config.is_production(),
        samesite="lax",
        max_age=config.parse_duration(config.REFRESH_TOKEN_EXPIRES_IN),
    )
    return response


@router.post("/refresh-token")
def refresh_token(
    req: Optional[RefreshRequest] = Body(None),
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    db: Session = Depends(get_db),
):
    token = refresh_cookie or (req.refresh_token if req else None)
    result = user_service.refresh_access_token(db, token)
    return send_response(200, "Access token generated successfully!", result)


@router.post("/logout")
def logout():
    response = send_response(200, "Logout successful")
    response.delete_cookie(REFRESH_COOKIE)
    return response


@router.get("/profile")
def get_my_profile(user: Dict[str, Any] = Depends(get_current_user), db: Session = Depends(get_db)):
    return send_response(200, "Profile retrieved successfully", user_service.get_profile(db, user["id"]))


@router.put("/profile")
def update_profile(req: UpdateProfileRequest, user: Dict[str, Any] = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    changes = req.model_dump(exclude_unset=True)
    return send_response(200, "Profile updated successfully", user_service.update_profile(db, user["id"], changes))


@router.post("/change-password")
def change_password(req: ChangePasswordRequest, user: Dict[str, Any] = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    result = user_service.change_password(db, user["id"], req.current_password, req.new_password)
    return send_response(200, result["message"])


@router.post("/deactivate")
def deactivate_account(user: Dict[str, Any] = Depends(get_current_user), db: Session = Depends(get_db)):
    result = user_service.deactivate(db, user["id"])
    return send_response(200, result["message"])


@router.post("/register/admin")
def register_admin(req: RegisterAdminRequest, _admin=Depends(require_roles(Role.ADMIN)),
                   db: Session = Depends(get_db)):
    result = user_service.register_admin(db, req.model_dump())
    return send_response(201, "Admin registered successfully", result)


@router.get("/users")
def get_all_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    role: Optional[RoleName] = None,
    search: Optional[str] = None,
    _admin=Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    result = user_service.list_users(db, page=page, limit=limit, role=role, search=search)
    return send_response(200, "Users retrieved successfully", result["users"], meta=result["meta"])
