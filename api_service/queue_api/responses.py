"""Uniform response envelope: ``{success, message, data?, errors?}``."""

from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def envelope(
    message: str,
    data: Optional[Any] = None,
    success: bool = True,
    errors: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return body


def envelope_response(
    message: str,
    data: Optional[Any] = None,
    status_code: int = 200,
    errors: Optional[List[Dict[str, str]]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            envelope(message, data=data, success=status_code < 400, errors=errors)
        ),
    )
