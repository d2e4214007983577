"""Error body shared by every gateway endpoint."""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of a failed operation."""
    detail: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Stable error code, e.g. FILE_NOT_BACKED_UP")
