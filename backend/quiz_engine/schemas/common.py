"""Shared / generic schemas."""

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error envelope for every ``QuizEngineError``.

    ``detail`` repeats ``message`` so clients written against FastAPI's
    ``HTTPException`` shape keep working.
    """

    success: bool = False
    error_code: str
    message: str
    detail: str
    details: dict[str, Any] | None = None


class SuccessResponse(BaseModel):
    """Generic success wrapper."""

    success: bool = True
    message: str = "ok"
    data: dict[str, Any] | None = None
