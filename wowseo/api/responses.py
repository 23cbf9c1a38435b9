"""
Shared JSON responses of the HTTP surface.
"""

from typing import Optional

from fastapi.responses import JSONResponse


def error_response(
    status_code: int, error: str, details: Optional[str] = None
) -> JSONResponse:
    content = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)
