import math
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def page_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def send_response(
    status_code: int,
    message: str,
    data: Any = None,
    meta: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_messages=None,
    **extra: Any,
) -> JSONResponse:
    body = {
        "success": success,
        "status_code": status_code,
        "message": message,
        "data": data,
        "meta": meta,
        "error_messages": error_messages,
    }
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_response(status_code: int, message: str, error_messages=None, **extra: Any) -> JSONResponse:
    return send_response(status_code, message, success=False, error_messages=error_messages, **extra)
