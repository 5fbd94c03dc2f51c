import concurrent.futures
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import is_admin, require_roles
from ..database import get_db
from ..errors import AppError
from ..models import Image, Role
from ..responses import send_response
from ..schemas import BatchPredictRequest
from ..services.diseases import record_prediction, serialize_prediction
from ..services.ml import get_ml_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ml", tags=["ml"])

any_user = require_roles(Role.ADMIN, Role.FARMER)


def _source_url(image: Image) -> str:
    return image.processed_path or image.path


def _prediction_payload(image: Image, prediction, result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "image_id": image.id,
        "prediction": serialize_prediction(prediction),
        "image_info": result.get("image_info"),
        "timestamp": result.get("timestamp"),
    }


@router.get("/health")
def ml_health(_user=Depends(any_user), ml_client=Depends(get_ml_client)):
    status = ml_client.health()
    message = "ML service is healthy" if status.get("is_healthy") else "ML service is unavailable"
    return send_response(200, message, status)


@router.get("/info")
def ml_info(_user=Depends(any_user), ml_client=Depends(get_ml_client)):
    return send_response(200, "ML service information retrieved successfully", ml_client.info())


@router.post("/predict/{image_id}")
def predict_image(image_id: str, user: Dict[str, Any] = Depends(any_user), db: Session = Depends(get_db),
                  ml_client=Depends(get_ml_client)):
    image = db.get(Image, image_id)
    if image is None:
        raise AppError(404, "Image not found")
    if not is_admin(user) and image.user_id != user["id"]:
        raise AppError(403, "Access denied")

    result = ml_client.predict_from_url(_source_url(image), image.id)
    prediction = record_prediction(db, image, user["id"], result)
    return send_response(200, "Disease prediction completed successfully",
                         _prediction_payload(image, prediction, result))


@router.post("/batch-predict")
def batch_predict(req: BatchPredictRequest, user: Dict[str, Any] = Depends(any_user),
                  db: Session = Depends(get_db), ml_client=Depends(get_ml_client)):
    images = db.scalars(select(Image).where(Image.id.in_(req.image_ids))).all()
    if not images:
        raise AppError(404, "No valid images found")
    if not is_admin(user) and any(i.user_id != user["id"] for i in images):
        raise AppError(403, "Access denied to one or more images")

    # the ML calls run in parallel; the session is only touched from this thread
    by_id = {i.id: i for i in images}
    ordered = [by_id[i] for i in dict.fromkeys(req.image_ids) if i in by_id]
    outcomes = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=len(ordered)) as ex:
        futures = {ex.submit(ml_client.predict_from_url, _source_url(i), i.id): i.id for i in ordered}
        for fut in concurrent.futures.as_completed(futures):
            try:
                outcomes[futures[fut]] = (fut.result(), None)
            except AppError as e:
                outcomes[futures[fut]] = (None, e.message)
            except Exception:
                logger.exception("Batch prediction for image %s raised", futures[fut])
                outcomes[futures[fut]] = (None, "Failed to get disease prediction")

    results = []
    for image in ordered:
        result, error = outcomes[image.id]
        if error is None:
            prediction = record_prediction(db, image, user["id"], result)
            results.append({"image_id": image.id, "status": "fulfilled",
                            "data": _prediction_payload(image, prediction, result), "error": None})
        else:
            logger.warning("Batch prediction for image %s failed: %s", image.id, error)
            results.append({"image_id": image.id, "status": "rejected", "data": None, "error": error})

    successful = sum(1 for r in results if r["status"] == "fulfilled")
    summary = {"total": len(results), "successful": successful, "failed": len(results) - successful,
               "results": results}
    return send_response(200, f"Batch prediction completed: {successful}/{len(results)} successful", summary)
