import logging
import re
from io import BytesIO
from typing import Any, Dict, Optional

import cloudinary
import cloudinary.uploader
import httpx

from .. import config
from ..errors import AppError

logger = logging.getLogger(__name__)

# .../image/upload/[v123/]<public_id>.<ext>
_PUBLIC_ID_RE = re.compile(r"/upload/(?:v\d+/)?(?P<public_id>.+?)(?:\.[A-Za-z0-9]+)?$")

DOWNLOAD_TIMEOUT = 10.0

VARIANT_FOLDERS = {
    "original": "original",
    "processed": "processed",
    "thumbnail": "thumbnails",
}


def public_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = _PUBLIC_ID_RE.search(url)
    return match.group("public_id") if match else None


def transform_url(url: str, transformation: str) -> str:
    """Insert a Cloudinary transformation right after `/upload/`."""
    if "/upload/" not in url:
        return url
    return url.replace("/upload/", f"/upload/{transformation}/", 1)


class CloudinaryStorage:
    """Thin wrapper over the Cloudinary uploader for the three image variants."""

    def __init__(self, cloud_name: str = None, api_key: str = None, api_secret: str = None,
                 folder: str = None, transport: Optional[httpx.BaseTransport] = None):
        self.folder = folder or config.CLOUDINARY_FOLDER
        self._transport = transport
        cloudinary.config(
            cloud_name=cloud_name or config.CLOUDINARY_CLOUD_NAME,
            api_key=api_key or config.CLOUDINARY_API_KEY,
            api_secret=api_secret or config.CLOUDINARY_API_SECRET,
            secure=True,
        )

    def upload(self, data: bytes, variant: str) -> Dict[str, Any]:
        folder = f"{self.folder}/{VARIANT_FOLDERS[variant]}"
        result = cloudinary.uploader.upload(
            BytesIO(data),
            folder=folder,
            resource_type="image",
            quality="auto",
        )
        logger.debug("Uploaded %s variant to %s", variant, result.get("public_id"))
        return {"url": result["secure_url"], "public_id": result["public_id"]}

    def destroy(self, public_id: str) -> bool:
        result = cloudinary.uploader.destroy(public_id, resource_type="image")
        return result.get("result") == "ok"

    def download(self, url: str) -> bytes:
        """Fetch a stored asset back by its delivery URL."""
        try:
            with httpx.Client(timeout=DOWNLOAD_TIMEOUT, transport=self._transport) as client:
                resp = client.get(url, follow_redirects=True)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            logger.error("Could not download stored asset %s: %s", url, e)
            raise AppError(502, "Failed to download stored image")


_storage: Optional[CloudinaryStorage] = None


def get_storage() -> CloudinaryStorage:
    global _storage
    if _storage is None:
        _storage = CloudinaryStorage()
    return _storage
