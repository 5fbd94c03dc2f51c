"""
Client for the external crop-disease prediction service.

The service exposes `GET /health`, `GET /models/info` and `POST /predict`
(multipart field `image`). This module only moves bytes and JSON; the model
lives entirely on the other side.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from .. import config
from ..errors import AppError

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT = 5.0
DOWNLOAD_TIMEOUT = 10.0


def _label_from(prediction: Dict[str, Any]) -> str:
    for key in ("disease", "class", "predicted_class", "label", "class_name"):
        value = prediction.get(key)
        if value:
            return str(value)
    return "Unknown"


def normalize_prediction(body: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the service response into the fields persisted on a Prediction."""
    prediction = body.get("prediction")
    if not isinstance(prediction, dict):
        # services that answer flat, e.g. {"disease": ..., "confidence": ...}
        prediction = body
    label = _label_from(prediction)
    try:
        confidence = float(prediction.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    # some models report percentages
    if confidence > 1.0:
        confidence = confidence / 100.0
    is_healthy = prediction.get("is_healthy")
    if is_healthy is None:
        is_healthy = "healthy" in label.lower()
    treatment = body.get("treatment")
    if treatment is None and prediction.get("remedy"):
        treatment = {"remedy": prediction.get("remedy")}
    return {
        "predicted_class": label,
        "confidence": max(0.0, min(1.0, confidence)),
        "is_healthy": bool(is_healthy),
        "treatment": treatment,
        "processing_time": body.get("processing_time_seconds"),
        "image_info": body.get("image_info"),
        "timestamp": body.get("timestamp"),
    }


class MLClient:
    def __init__(self, base_url: str = None, timeout_ms: int = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or config.ML_SERVICE_URL).rstrip("/")
        self.timeout = (timeout_ms if timeout_ms is not None else config.ML_TIMEOUT) / 1000.0
        self._transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport)

    def health(self) -> Dict[str, Any]:
        try:
            with self._client(HEALTH_TIMEOUT) as client:
                resp = client.get(f"{self.base_url}/health")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ML service health check failed: %s", e)
            return {"is_healthy": False, "error": "ML service not available", "message": str(e)}
        return {
            "is_healthy": True,
            "status": data.get("status"),
            "model_loaded": data.get("model_loaded"),
            "timestamp": data.get("timestamp"),
        }

    def info(self) -> Dict[str, Any]:
        try:
            with self._client(HEALTH_TIMEOUT) as client:
                health = client.get(f"{self.base_url}/health")
                health.raise_for_status()
                models = client.get(f"{self.base_url}/models/info")
                models.raise_for_status()
                return {"health": health.json(), "models": models.json(), "service_url": self.base_url}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ML service info unavailable: %s", e)
            return {"error": "ML service information unavailable", "service_url": self.base_url}

    def fetch_image(self, url: str) -> bytes:
        try:
            with self._client(DOWNLOAD_TIMEOUT) as client:
                resp = client.get(url, follow_redirects=True)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            logger.error("Could not download image %s: %s", url, e)
            raise AppError(502, "Failed to download image for prediction")

    def predict(self, data: bytes, filename: str = "image.jpg") -> Dict[str, Any]:
        if not self.health().get("is_healthy"):
            raise AppError(503, "ML prediction service is currently unavailable")
        try:
            with self._client(self.timeout) as client:
                resp = client.post(
                    f"{self.base_url}/predict",
                    files={"image": (filename, data, "image/jpeg")},
                )
                resp.raise_for_status()
                body = resp.json()
        except httpx.ConnectError as e:
            logger.error("ML service connection refused: %s", e)
            raise AppError(503, "ML prediction service is not running")
        except httpx.TimeoutException as e:
            logger.error("ML service timed out after %.1fs: %s", self.timeout, e)
            raise AppError(408, "ML prediction service timeout")
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("ML service error")
            raise AppError(500, "Failed to get disease prediction") from e

        if not isinstance(body, dict):
            logger.error("ML service returned a non-object body: %r", body)
            raise AppError(500, "Failed to get disease prediction")

        if not body.get("success", "prediction" in body or "disease" in body):
            raise AppError(500, "ML prediction failed")
        out = normalize_prediction(body)
        out["raw"] = body
        return out

    def predict_from_url(self, url: str, image_id: str) -> Dict[str, Any]:
        data = self.fetch_image(url)
        return self.predict(data, filename=f"image_{image_id}.jpg")


_client: Optional[MLClient] = None


def get_ml_client() -> MLClient:
    global _client
    if _client is None:
        _client = MLClient()
    return _client
