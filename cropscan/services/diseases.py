"""
Disease catalog, prediction persistence and per-user detection history.

Labels coming back from the ML service look like `Tomato___Late_blight`,
`Leaf Spot Disease` or `healthy`; `match_disease` maps them onto catalog rows.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..database import LIKE_ESCAPE, search_pattern
from ..errors import AppError
from ..models import Disease, DiseaseHistory, Image, Prediction, Severity
from ..responses import page_meta

logger = logging.getLogger(__name__)

HEALTHY_NAME = "Healthy Crop"

_SEPARATORS = re.compile(r"[_\-/,]+")
_SPACES = re.compile(r"\s+")


def _iso(value):
    return value.isoformat() if value is not None else None


def normalize_label(label: str) -> str:
    text = _SEPARATORS.sub(" ", (label or "").lower())
    text = _SPACES.sub(" ", text).strip()
    if text.endswith(" disease"):
        text = text[: -len(" disease")]
    return text


def serialize_disease(disease: Optional[Disease], brief: bool = False) -> Optional[Dict[str, Any]]:
    if disease is None:
        return None
    out = {"id": disease.id, "name": disease.name, "severity": disease.severity.value}
    if brief:
        return out
    out.update({
        "scientific_name": disease.scientific_name,
        "description": disease.description,
        "symptoms": list(disease.symptoms or []),
        "causes": list(disease.causes or []),
        "treatment": disease.treatment,
        "prevention": disease.prevention,
        "crops": list(disease.crops or []),
        "is_active": disease.is_active,
        "created_at": _iso(disease.created_at),
        "updated_at": _iso(disease.updated_at),
    })
    return out


def serialize_prediction(prediction: Prediction) -> Dict[str, Any]:
    return {
        "id": prediction.id,
        "image_id": prediction.image_id,
        "predicted_class": prediction.predicted_class,
        "confidence": prediction.confidence,
        "is_healthy": prediction.is_healthy,
        "treatment": prediction.treatment,
        "processing_time": prediction.processing_time,
        "created_at": _iso(prediction.created_at),
        "disease": serialize_disease(prediction.disease, brief=True),
    }


def match_disease(candidates: Iterable[Disease], label: str, is_healthy: bool = False) -> Optional[Disease]:
    """Pick the catalog entry for a predicted label.

    Exact normalized name first, then containment in either direction
    (longest catalog name wins so "Bacterial Spot" beats "Spot").
    """
    candidates = [d for d in candidates if d.is_active]
    by_name = {normalize_label(d.name): d for d in candidates}
    if is_healthy or normalize_label(label) in ("healthy", "healthy crop"):
        return by_name.get(normalize_label(HEALTHY_NAME))

    wanted = normalize_label(label)
    if not wanted:
        return None
    if wanted in by_name:
        return by_name[wanted]
    for name in sorted(by_name, key=len, reverse=True):
        if name and (name in wanted or wanted in name) and name != normalize_label(HEALTHY_NAME):
            return by_name[name]
    return None


def record_prediction(db: Session, image: Image, user_id: str, result: Dict[str, Any]) -> Prediction:
    """Persist an ML result for `image` and log the detection for the user."""
    catalog = db.scalars(select(Disease).where(Disease.is_active.is_(True))).all()
    disease = match_disease(catalog, result["predicted_class"], result.get("is_healthy", False))

    prediction = Prediction(
        image_id=image.id,
        user_id=user_id,
        disease_id=disease.id if disease else None,
        predicted_class=result["predicted_class"],
        confidence=result.get("confidence", 0.0),
        is_healthy=result.get("is_healthy", False),
        treatment=result.get("treatment"),
        processing_time=result.get("processing_time"),
        raw_response=result.get("raw"),
    )
    prediction.disease = disease
    db.add(prediction)
    db.flush()

    if disease is not None:
        db.add(DiseaseHistory(
            user_id=user_id,
            disease_id=disease.id,
            prediction_id=prediction.id,
            image_id=image.id,
            confidence=prediction.confidence,
        ))
    else:
        logger.info("Prediction %r for image %s has no catalog match", result["predicted_class"], image.id)
    db.commit()
    return prediction


def list_diseases(db: Session, page: int = 1, limit: int = 10, search: Optional[str] = None,
                  severity: Optional[str] = None, is_active: Optional[bool] = None) -> Dict[str, Any]:
    conditions = []
    if search:
        like = search_pattern(search)
        conditions.append(or_(func.lower(Disease.name).like(like, escape=LIKE_ESCAPE),
                              func.lower(Disease.scientific_name).like(like, escape=LIKE_ESCAPE)))
    if severity:
        conditions.append(Disease.severity == Severity(severity))
    if is_active is not None:
        conditions.append(Disease.is_active.is_(is_active))

    total = db.scalar(select(func.count()).select_from(Disease).where(*conditions))
    rows = db.scalars(
        select(Disease).where(*conditions).order_by(Disease.name.asc())
        .offset((page - 1) * limit).limit(limit)
    ).all()
    return {"diseases": [serialize_disease(d) for d in rows], "meta": page_meta(page, limit, total)}


def get_disease(db: Session, disease_id: str) -> Dict[str, Any]:
    disease = db.get(Disease, disease_id)
    if disease is None:
        raise AppError(404, "Disease not found")
    return serialize_disease(disease)


def create_disease(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    data["severity"] = Severity(data.get("severity") or Severity.MEDIUM)
    disease = Disease(**data)
    db.add(disease)
    db.commit()
    logger.info("Created disease %s", disease.name)
    return serialize_disease(disease)


def update_disease(db: Session, disease_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    disease = db.get(Disease, disease_id)
    if disease is None:
        raise AppError(404, "Disease not found")
    for key, value in changes.items():
        if key == "severity":
            value = Severity(value)
        setattr(disease, key, value)
    db.commit()
    return serialize_disease(disease)


def user_history(db: Session, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    total = db.scalar(select(func.count()).select_from(DiseaseHistory).where(DiseaseHistory.user_id == user_id))
    rows: List[DiseaseHistory] = db.scalars(
        select(DiseaseHistory)
        .where(DiseaseHistory.user_id == user_id)
        .order_by(DiseaseHistory.detected_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    history = [
        {
            "id": h.id,
            "image_id": h.image_id,
            "prediction_id": h.prediction_id,
            "confidence": h.confidence,
            "detected_at": _iso(h.detected_at),
            "disease": serialize_disease(h.disease, brief=True),
        }
        for h in rows
    ]
    return {"history": history, "meta": page_meta(page, limit, total)}
