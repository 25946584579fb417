"""
Pydantic models for API responses.
"""

from pydantic import BaseModel, Field
from typing import Optional


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    data_dir: str = Field(..., description="Directory holding one folder per run id")
    data_dir_exists: bool
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code for validation failures")


ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 404, 409, 412, 413, 422, 500)
}
