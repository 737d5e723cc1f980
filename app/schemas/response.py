from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import uuid


def _rid():
    return uuid.uuid4().hex


class SuccessResponse(BaseModel):
    """Simple success response wrapper with just data, success, and request_id"""
    success: Optional[bool] = Field(default=True)
    request_id: str = Field(default_factory=_rid)
    data: Optional[Any] = None


class ErrorBody(BaseModel):
    code: str
    message: Any
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Envelope returned by every exception handler."""
    success: bool = False
    error: ErrorBody
    request_id: str = Field(default_factory=_rid)

    @classmethod
    def build(cls, code: str, message: Any, details: Optional[Any] = None) -> Dict[str, Any]:
        return cls(error=ErrorBody(code=code, message=message, details=details)).model_dump(exclude_none=True)
