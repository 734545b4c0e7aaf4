"""
shared/utils/responses.py
Helpers that build the {success, message, data} envelope.
"""

import math
from typing import Any, Optional, Sequence

from fastapi.responses import JSONResponse


def ok(data: Any = None, message: str = "Success") -> dict:
    return {"success": True, "message": message, "data": data}


def error_response(status_code: int, message: str, data: Optional[Any] = None, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "data": data},
        headers=headers,
    )


def paginated(items: Sequence[Any], total: int, page: int, page_size: int, **extra: Any) -> dict:
    return {
        "items": list(items),
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if page_size else 0,
        **extra,
    }
