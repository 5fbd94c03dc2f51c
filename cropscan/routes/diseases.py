from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_roles
from ..database import get_db
from ..models import Role
from ..responses import MAX_LIMIT, send_response
from ..schemas import DiseaseIn, DiseaseUpdate, SeverityName
from ..services import diseases as disease_service

router = APIRouter(prefix="/disease", tags=["disease"])

admin_only = require_roles(Role.ADMIN)


@router.get("/")
def get_all_diseases(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    search: Optional[str] = None,
    severity: Optional[SeverityName] = None,
    is_active: Optional[bool] = None,
    _user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = disease_service.list_diseases(db, page=page, limit=limit, search=search,
                                           severity=severity, is_active=is_active)
    return send_response(200, "Diseases retrieved successfully", result["diseases"], meta=result["meta"])


@router.get("/history/me")
def get_my_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    user: Dict[str, Any] = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = disease_service.user_history(db, user["id"], page=page, limit=limit)
    return send_response(200, "Disease history retrieved successfully", result["history"], meta=result["meta"])


@router.get("/{disease_id}")
def get_disease(disease_id: str, _user=Depends(get_current_user), db: Session = Depends(get_db)):
    return send_response(200, "Disease retrieved successfully", disease_service.get_disease(db, disease_id))


@router.post("/")
def create_disease(req: DiseaseIn, _admin=Depends(admin_only), db: Session = Depends(get_db)):
    return send_response(201, "Disease created successfully", disease_service.create_disease(db, req.model_dump()))


@router.patch("/{disease_id}")
def update_disease(disease_id: str, req: DiseaseUpdate, _admin=Depends(admin_only),
                   db: Session = Depends(get_db)):
    result = disease_service.update_disease(db, disease_id, req.model_dump(exclude_unset=True))
    return send_response(200, "Disease updated successfully", result)
