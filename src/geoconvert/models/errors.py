"""
Pydantic models for API error bodies.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from geoconvert.core.errors import GeoConvertException


class ErrorDetail(BaseModel):
    """One offending field of a rejected request."""

    field: Optional[str] = Field(None, description="Dotted location of the field")
    message: str
    code: Optional[str] = Field(None, description="Validator error type")


class ErrorResponse(BaseModel):
    """
    Body of every error returned by the API.

    Attributes:
        error_code: Machine-readable identifier, e.g. 'UNSUPPORTED_FORMAT'
        message: Human-readable message
        details: Structured technical details
        timestamp: When the error was produced (UTC)
        request_id: Correlation id of the failed request
        suggestions: Steps the user can take
        errors: Field-level problems, for validation failures
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error_code": "UNSUPPORTED_FORMAT",
                "message": "TopoJSON can only be used as an input format",
                "details": {"format_id": "topojson"},
                "timestamp": "2025-11-10T15:30:00+00:00",
                "request_id": "550e8400-e29b-41d4-a716-446655440000",
                "suggestions": ["Check the list of supported formats"],
            }
        }
    )

    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    suggestions: Optional[List[str]] = None
    errors: Optional[List[ErrorDetail]] = None

    @classmethod
    def from_exception(
        cls, exc: GeoConvertException, request_id: Optional[str] = None
    ) -> "ErrorResponse":
        return cls(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details or None,
            request_id=request_id,
            suggestions=exc.suggestions or None,
        )

    def to_content(self) -> Dict[str, Any]:
        """JSON-ready body with unset fields left out."""
        return self.model_dump(mode="json", exclude_none=True)
