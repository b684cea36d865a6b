# schoolchat/models/api/envelope.py
"""
Uniform response envelope of the school API.
Every HTTP client call resolves to one of these, never to an exception.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Successful envelope: {status: "success", data, message?}."""

    status: Literal["success"] = "success"
    data: Any = None
    message: str | None = None
    cached: bool = Field(default=False, description="True for 304 Not Modified responses")
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return True


class ApiErrorResponse(BaseModel):
    """Error envelope: {status: "error", message, statusCode}."""

    status: Literal["error"] = "error"
    message: str
    status_code: int = Field(..., serialization_alias="statusCode")
    error: str | None = None
    details: Any = None

    @property
    def ok(self) -> bool:
        return False


class BlobResponse(BaseModel):
    """Binary body returned when a caller asks for response_type="blob"."""

    content: bytes
    media_type: str | None = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return True


ApiResult = ApiResponse | ApiErrorResponse | BlobResponse
