import os
import re
from typing import List

from dotenv import load_dotenv

load_dotenv()

APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = "0.3.0"
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cropscan.db")

ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET", "")
ACCESS_TOKEN_EXPIRES_IN = os.getenv("ACCESS_TOKEN_EXPIRES_IN", "1d")
REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "")
REFRESH_TOKEN_EXPIRES_IN = os.getenv("REFRESH_TOKEN_EXPIRES_IN", "30d")
JWT_ALG = "HS256"

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "crop-disease")

ML_SERVICE_URL = os.getenv("ML_SERVICE_URL", "http://localhost:5000").rstrip("/")
# milliseconds, kept in the same unit as the ML service docs
ML_TIMEOUT = int(os.getenv("ML_TIMEOUT", "30000"))

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def is_production() -> bool:
    return APP_ENV == "production"


def is_development() -> bool:
    return APP_ENV == "development"


def parse_duration(value: str) -> int:
    """Convert `3600`, `15m`, `12h` or `7d` into seconds."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def allowed_origins() -> List[str]:
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001")
    return [o.strip() for o in raw.split(",") if o.strip()]


def access_token_secret() -> str:
    return _require_secret("ACCESS_TOKEN_SECRET", ACCESS_TOKEN_SECRET)


def refresh_token_secret() -> str:
    return _require_secret("REFRESH_TOKEN_SECRET", REFRESH_TOKEN_SECRET)


def _require_secret(name: str, value: str) -> str:
    if value:
        return value
    if is_production():
        raise RuntimeError(f"Missing required env variable: {name}")
    # development fallback so the server boots without a .env file
    return f"please_change_this_{name.lower()}"
