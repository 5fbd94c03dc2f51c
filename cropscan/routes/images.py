from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..auth import is_admin, require_roles
from ..database import get_db
from ..errors import AppError
from ..models import Role
from ..responses import MAX_LIMIT, send_response
from ..schemas import ImageIdsRequest, SortOrder
from ..services import images as image_service
from ..services.ml import get_ml_client
from ..services.storage import get_storage

router = APIRouter(prefix="/image", tags=["image"])

any_user = require_roles(Role.ADMIN, Role.FARMER)
admin_only = require_roles(Role.ADMIN)

ImageSortField = Literal["uploaded_at", "original_name", "size"]
StatusName = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]

CACHE_CONTROL = "public, max-age=31536000"


def _variant(name: str) -> str:
    if name not in image_service.VARIANTS:
        raise AppError(400, "Invalid image type. Use original, processed or thumbnail")
    return name


@router.post("/upload")
def upload_image(
    image: UploadFile = File(...),
    predict: bool = Query(True),
    user: Dict[str, Any] = Depends(any_user),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    ml_client=Depends(get_ml_client),
):
    data = image.file.read()
    result = image_service.upload_image(
        db, storage, ml_client, user["id"], data,
        original_name=image.filename, content_type=image.content_type, predict=predict,
    )
    return send_response(201, "Image uploaded and processed successfully", result)


@router.get("/")
def get_all_images(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    sort_by: ImageSortField = "uploaded_at",
    sort_order: SortOrder = "desc",
    search: Optional[str] = None,
    user_id: Optional[str] = None,
    processing_status: Optional[StatusName] = None,
    _admin=Depends(admin_only),
    db: Session = Depends(get_db),
):
    result = image_service.list_images(db, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order,
                                       search=search, user_id=user_id, processing_status=processing_status)
    return send_response(200, "Images retrieved successfully", result["images"], meta=result["meta"])


@router.get("/my-images")
def get_my_images(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    sort_by: ImageSortField = "uploaded_at",
    sort_order: SortOrder = "desc",
    search: Optional[str] = None,
    processing_status: Optional[StatusName] = None,
    user: Dict[str, Any] = Depends(any_user),
    db: Session = Depends(get_db),
):
    result = image_service.list_images(db, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order,
                                       search=search, user_id=user["id"], processing_status=processing_status)
    return send_response(200, "Your images retrieved successfully", result["images"], meta=result["meta"])


@router.get("/stats")
def get_image_stats(user: Dict[str, Any] = Depends(any_user), db: Session = Depends(get_db)):
    scope = None if is_admin(user) else user["id"]
    return send_response(200, "Image statistics retrieved successfully", image_service.image_stats(db, scope))


@router.get("/{image_id}")
def get_image(image_id: str, user: Dict[str, Any] = Depends(any_user), db: Session = Depends(get_db)):
    image = image_service.get_image(db, image_id, user)
    return send_response(200, "Image retrieved successfully", image_service.serialize_image(image))


@router.get("/{image_id}/serve")
@router.get("/{image_id}/serve/{variant}")
def serve_image(image_id: str, variant: str = "original", user: Dict[str, Any] = Depends(any_user),
                db: Session = Depends(get_db)):
    image = image_service.get_image(db, image_id, user)
    variant = _variant(variant)
    url = image_service.variant_url(image, variant)
    if not url:
        raise AppError(404, f"{variant} version not available")
    return RedirectResponse(url, status_code=307, headers={"Cache-Control": CACHE_CONTROL})


@router.get("/{image_id}/download")
@router.get("/{image_id}/download/{variant}")
def download_image(image_id: str, variant: str = "original", user: Dict[str, Any] = Depends(any_user),
                   db: Session = Depends(get_db)):
    image = image_service.get_image(db, image_id, user)
    url = image_service.download_url(image, _variant(variant))
    return RedirectResponse(url, status_code=307)


@router.post("/{image_id}/reprocess")
def reprocess_image(
    image_id: str,
    _admin=Depends(admin_only),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
):
    result = image_service.reprocess_image(db, storage, image_id)
    return send_response(200, "Image reprocessed successfully", result)


@router.delete("/{image_id}")
def delete_image(image_id: str, user: Dict[str, Any] = Depends(any_user), db: Session = Depends(get_db),
                 storage=Depends(get_storage)):
    result = image_service.delete_image(db, storage, image_id, user)
    return send_response(200, result["message"])


@router.delete("/")
def bulk_delete_images(req: ImageIdsRequest, user: Dict[str, Any] = Depends(any_user),
                       db: Session = Depends(get_db), storage=Depends(get_storage)):
    result = image_service.bulk_delete_images(db, storage, req.image_ids, user)
    return send_response(200, f"{result['deleted_count']} images deleted successfully", result)
