"""
Leaf image pipeline.

upload: validate -> resize variants -> push to object storage -> persist row
        -> (optional) ML prediction -> Prediction + DiseaseHistory rows.

Storage and ML collaborators are passed in so routes can inject them and tests
can swap them for fakes.
"""
import concurrent.futures
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import config
from ..database import LIKE_ESCAPE, search_pattern
from ..errors import AppError
from ..models import Image, Prediction, ProcessingStatus, Role
from ..responses import page_meta
from . import imaging
from .diseases import record_prediction, serialize_prediction
from .storage import public_id_from_url, transform_url

logger = logging.getLogger(__name__)

VARIANTS = ("original", "processed", "thumbnail")
SORT_FIELDS = {
    "uploaded_at": Image.uploaded_at,
    "original_name": Image.original_name,
    "size": Image.size,
}
TRANSFORMS = {
    "small": "w_300,h_200,c_fill",
    "medium": "w_600,h_400,c_fill",
    "large": "w_1200,h_800,c_fill",
}


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_image(image: Image, with_predictions: bool = True) -> Dict[str, Any]:
    out = {
        "id": image.id,
        "filename": image.filename,
        "original_name": image.original_name,
        "mimetype": image.mimetype,
        "size": image.size,
        "path": image.path,
        "processed_path": image.processed_path,
        "thumbnail_path": image.thumbnail_path,
        "width": image.width,
        "height": image.height,
        "processing_status": image.processing_status.value,
        "processing_error": image.processing_error,
        "uploaded_at": _iso(image.uploaded_at),
        "user_id": image.user_id,
        "user": {"id": image.user.id, "name": image.user.name, "email": image.user.email} if image.user else None,
        "urls": {
            "original": image.path,
            "processed": image.processed_path,
            "thumbnail": image.thumbnail_path,
        },
        "transformed_urls": {k: transform_url(image.path, t) for k, t in TRANSFORMS.items()},
    }
    if with_predictions:
        out["predictions"] = [serialize_prediction(p) for p in image.predictions]
    return out


def validate_upload(content_type: Optional[str], data: bytes) -> None:
    if not data:
        raise AppError(400, "Image file is required")
    if (content_type or "").lower() not in imaging.ALLOWED_MIMETYPES:
        raise AppError(400, "Supported formats: JPEG, PNG, WebP, GIF, BMP, TIFF")
    if len(data) > config.MAX_UPLOAD_BYTES:
        limit_mb = config.MAX_UPLOAD_BYTES // (1024 * 1024)
        raise AppError(400, f"File size must be less than {limit_mb}MB")


def _upload_variants(storage, payloads: Dict[str, bytes]) -> Dict[str, Dict[str, Any]]:
    """Upload all variants concurrently; on any failure destroy the ones that made it."""
    uploaded: Dict[str, Dict[str, Any]] = {}
    errors: List[Exception] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=len(payloads)) as ex:
        futures = {ex.submit(storage.upload, data, variant): variant for variant, data in payloads.items()}
        for fut in concurrent.futures.as_completed(futures):
            try:
                uploaded[futures[fut]] = fut.result()
            except Exception as e:
                logger.error("Upload of %s variant failed: %s", futures[fut], e)
                errors.append(e)
    if errors:
        _destroy_assets(storage, [u["public_id"] for u in uploaded.values()])
        raise errors[0]
    return uploaded


def _destroy_assets(storage, public_ids: List[Optional[str]]) -> None:
    for public_id in public_ids:
        if not public_id:
            continue
        try:
            storage.destroy(public_id)
        except Exception as e:
            logger.warning("Could not remove stored asset %s: %s", public_id, e)


def _image_public_ids(image: Image) -> List[Optional[str]]:
    return [public_id_from_url(image.path), public_id_from_url(image.processed_path),
            public_id_from_url(image.thumbnail_path)]


def _predict_and_record(db: Session, ml_client, image: Image, user_id: str, data: bytes) -> Dict[str, Any]:
    result = ml_client.predict(data, filename=f"image_{image.id}.jpg")
    prediction = record_prediction(db, image, user_id, result)
    return serialize_prediction(prediction)


def upload_image(
    db: Session,
    storage,
    ml_client,
    user_id: str,
    data: bytes,
    original_name: str,
    content_type: str,
    predict: bool = True,
) -> Dict[str, Any]:
    validate_upload(content_type, data)
    meta, processed, thumbnail = imaging.build_variants(data)

    ext = os.path.splitext(original_name or "")[1].lower() or ".jpg"
    filename = f"{uuid.uuid4().hex}{ext}"

    try:
        uploaded = _upload_variants(storage, {"original": data, "processed": processed, "thumbnail": thumbnail})
    except Exception:
        logger.exception("Storage upload failed for %s", original_name)
        raise AppError(500, "Failed to process and save image")

    image = Image(
        filename=filename,
        original_name=original_name or filename,
        mimetype=content_type,
        size=len(data),
        path=uploaded["original"]["url"],
        processed_path=uploaded["processed"]["url"],
        thumbnail_path=uploaded["thumbnail"]["url"],
        width=meta["width"],
        height=meta["height"],
        user_id=user_id,
        processing_status=ProcessingStatus.COMPLETED,
    )
    try:
        db.add(image)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Persisting image row failed, removing uploaded assets")
        _destroy_assets(storage, [u["public_id"] for u in uploaded.values()])
        raise AppError(500, "Failed to process and save image")
    logger.info("Stored image %s for user %s (%d bytes)", image.id, user_id, image.size)

    prediction, prediction_error = None, None
    if predict:
        try:
            prediction = _predict_and_record(db, ml_client, image, user_id, processed)
        except AppError as e:
            prediction_error = e.message
            logger.warning("Prediction skipped for image %s: %s", image.id, e.message)
        except Exception:
            db.rollback()
            prediction_error = "Failed to get disease prediction"
            logger.exception("Prediction failed for image %s", image.id)

    out = serialize_image(_load_image(db, image.id))
    out["prediction"] = prediction
    out["prediction_error"] = prediction_error
    return out


def _load_image(db: Session, image_id: str) -> Optional[Image]:
    stmt = (
        select(Image)
        .options(
            selectinload(Image.user),
            selectinload(Image.predictions).selectinload(Prediction.disease),
        )
        .where(Image.id == image_id)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def get_image(db: Session, image_id: str, user: Optional[Dict[str, Any]] = None) -> Image:
    image = _load_image(db, image_id)
    if image is None:
        raise AppError(404, "Image not found")
    if user is not None and user["role"] != Role.ADMIN.value and image.user_id != user["id"]:
        raise AppError(403, "Access denied")
    return image


def list_images(
    db: Session,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "uploaded_at",
    sort_order: str = "desc",
    search: Optional[str] = None,
    user_id: Optional[str] = None,
    processing_status: Optional[str] = None,
) -> Dict[str, Any]:
    conditions = []
    if search:
        conditions.append(func.lower(Image.original_name).like(search_pattern(search), escape=LIKE_ESCAPE))
    if user_id:
        conditions.append(Image.user_id == user_id)
    if processing_status:
        conditions.append(Image.processing_status == ProcessingStatus(processing_status))

    total = db.scalar(select(func.count()).select_from(Image).where(*conditions))
    column = SORT_FIELDS.get(sort_by, Image.uploaded_at)
    stmt = (
        select(Image)
        .options(
            selectinload(Image.user),
            selectinload(Image.predictions).selectinload(Prediction.disease),
        )
        .where(*conditions)
        .order_by(column.asc() if sort_order == "asc" else column.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    images = db.scalars(stmt).all()
    return {"images": [serialize_image(i) for i in images], "meta": page_meta(page, limit, total)}


def image_stats(db: Session, user_id: Optional[str] = None) -> Dict[str, Any]:
    conditions = [Image.user_id == user_id] if user_id else []
    total, total_size, avg_size = db.execute(
        select(func.count(Image.id), func.coalesce(func.sum(Image.size), 0), func.avg(Image.size))
        .where(*conditions)
    ).one()
    grouped = db.execute(
        select(Image.processing_status, func.count(Image.id))
        .where(*conditions)
        .group_by(Image.processing_status)
    ).all()
    return {
        "total_images": total,
        "processing_stats": [{"processing_status": s.value, "count": c} for s, c in grouped],
        "total_size": int(total_size or 0),
        "average_size": round(avg_size or 0),
    }


def variant_url(image: Image, variant: str) -> Optional[str]:
    return {
        "original": image.path,
        "processed": image.processed_path,
        "thumbnail": image.thumbnail_path,
    }.get(variant)


def download_url(image: Image, variant: str) -> str:
    url = variant_url(image, variant)
    if not url:
        raise AppError(404, f"{variant} version not available")
    prefix = "" if variant == "original" else ("thumb_" if variant == "thumbnail" else f"{variant}_")
    name = os.path.splitext(f"{prefix}{image.original_name}")[0]
    if "cloudinary.com" in url:
        return transform_url(url, f"fl_attachment:{name}")
    return url


def reprocess_image(db: Session, storage, image_id: str) -> Dict[str, Any]:
    """Rebuild processed/thumbnail variants from the stored original."""
    image = get_image(db, image_id)
    old_ids = [public_id_from_url(image.processed_path), public_id_from_url(image.thumbnail_path)]
    image.processing_status = ProcessingStatus.PROCESSING
    image.processing_error = None
    db.commit()

    try:
        original = storage.download(image.path)
        meta, processed, thumbnail = imaging.build_variants(original)
        uploaded = _upload_variants(storage, {"processed": processed, "thumbnail": thumbnail})
    except Exception as e:
        message = e.message if isinstance(e, AppError) else str(e)
        logger.error("Reprocessing image %s failed: %s", image_id, message)
        image.processing_status = ProcessingStatus.FAILED
        image.processing_error = message
        db.commit()
        raise AppError(500, "Failed to reprocess image")

    image.processed_path = uploaded["processed"]["url"]
    image.thumbnail_path = uploaded["thumbnail"]["url"]
    image.width = meta["width"]
    image.height = meta["height"]
    image.processing_status = ProcessingStatus.COMPLETED
    db.commit()
    _destroy_assets(storage, old_ids)
    return serialize_image(_load_image(db, image_id))


def delete_image(db: Session, storage, image_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    image = get_image(db, image_id, user)
    _destroy_assets(storage, _image_public_ids(image))
    db.delete(image)
    db.commit()
    logger.info("Deleted image %s", image_id)
    return {"message": "Image deleted successfully"}


def bulk_delete_images(db: Session, storage, image_ids: List[str], user: Dict[str, Any]) -> Dict[str, Any]:
    stmt = select(Image).where(Image.id.in_(image_ids))
    if user["role"] != Role.ADMIN.value:
        stmt = stmt.where(Image.user_id == user["id"])
    images = db.scalars(stmt).all()
    if not images:
        raise AppError(404, "No images found to delete")

    for image in images:
        _destroy_assets(storage, _image_public_ids(image))
        db.delete(image)
    db.commit()
    logger.info("Bulk deleted %d of %d requested images", len(images), len(image_ids))
    return {"deleted_count": len(images), "requested": len(image_ids)}
