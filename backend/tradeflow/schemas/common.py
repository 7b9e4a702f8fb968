from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error_type: str
    details: dict[str, Any] | None = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
