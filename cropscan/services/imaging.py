"""
Image variants for uploaded leaf photos.

Every upload is stored three times: the original bytes, a 512x512 "processed"
copy letterboxed on white (the size the ML service expects) and a 150x150
thumbnail cropped to fill.
"""
from io import BytesIO
from typing import Any, Dict, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import AppError

PROCESSED_SIZE = (512, 512)
THUMBNAIL_SIZE = (150, 150)
PROCESSED_QUALITY = 90
THUMBNAIL_QUALITY = 80

ALLOWED_MIMETYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/bmp",
    "image/tiff",
}


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise AppError(400, f"Invalid image file: {e}")
    return ImageOps.exif_transpose(img)


def read_metadata(data: bytes) -> Dict[str, Any]:
    img = _open(data)
    return {"width": img.width, "height": img.height, "format": img.format}


def _to_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def _flatten(img: Image.Image) -> Image.Image:
    """Composite transparency onto white and return an RGB image."""
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return img.convert("RGB")


def make_processed(data: bytes) -> bytes:
    img = _flatten(_open(data))
    fitted = ImageOps.contain(img, PROCESSED_SIZE)
    canvas = Image.new("RGB", PROCESSED_SIZE, (255, 255, 255))
    offset = ((PROCESSED_SIZE[0] - fitted.width) // 2, (PROCESSED_SIZE[1] - fitted.height) // 2)
    canvas.paste(fitted, offset)
    return _to_jpeg(canvas, PROCESSED_QUALITY)


def make_thumbnail(data: bytes) -> bytes:
    img = _flatten(_open(data))
    return _to_jpeg(ImageOps.fit(img, THUMBNAIL_SIZE), THUMBNAIL_QUALITY)


def build_variants(data: bytes) -> Tuple[Dict[str, Any], bytes, bytes]:
    """Return (metadata, processed_jpeg, thumbnail_jpeg) for raw upload bytes."""
    meta = read_metadata(data)
    return meta, make_processed(data), make_thumbnail(data)
