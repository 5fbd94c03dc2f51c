import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .responses import error_response

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Operational error carrying the HTTP status to report to the client."""

    def __init__(self, status_code: int, message: str, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


def translate_integrity_error(exc: IntegrityError) -> AppError:
    text = str(getattr(exc, "orig", exc)).lower()
    if "foreign key" in text:
        return AppError(400, "Foreign key constraint failed")
    if "unique" in text or "duplicate" in text:
        # sqlite: "UNIQUE constraint failed: users.email"
        field = text.split(":", 1)[1].strip() if ":" in text else None
        return AppError(400, "Duplicate entry found", details={"field": field} if field else None)
    return AppError(400, "Database operation failed")


def _validation_messages(exc: RequestValidationError):
    out = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"path": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return out


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        extra = {"details": exc.details} if exc.details else {}
        return error_response(exc.status_code, exc.message, **extra)

    @app.exception_handler(IntegrityError)
    async def _integrity_error(request: Request, exc: IntegrityError):
        translated = translate_integrity_error(exc)
        logger.warning("integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        extra = {"details": translated.details} if translated.details else {}
        return error_response(translated.status_code, translated.message, **extra)

    @app.exception_handler(NoResultFound)
    async def _not_found(request: Request, exc: NoResultFound):
        return error_response(404, "Record not found")

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, "Validation Error", error_messages=_validation_messages(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return error_response(
                404,
                "API not found!",
                error={"path": request.url.path, "message": "Your requested path not found!"},
            )
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = str(exc) if config.is_development() else "Internal Server Error"
        extra = {}
        if config.is_development():
            extra = {"error": type(exc).__name__, "timestamp": datetime.now(timezone.utc).isoformat()}
        return error_response(500, message or "Internal Server Error", **extra)
