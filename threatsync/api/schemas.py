"""Pydantic schemas for the API response envelope."""

import time
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from threatsync import __version__


class ErrorDetail(BaseModel):
    """Error part of a failed response."""

    code: str = Field(..., description="HTTP status code as a string")
    message: str = Field(..., description="Human readable error message")
    details: Any = Field(None, description="Validation errors or upstream details")


class ResponseMetadata(BaseModel):
    """Metadata attached to every response."""

    timestamp: str = Field(..., description="Response time (ISO-8601, UTC)")
    processing_time_ms: float = Field(..., description="Request processing time in ms")
    version: str = Field(default=__version__, description="API version")


def build_metadata(start_time: float | None) -> ResponseMetadata:
    elapsed = (time.time() - start_time) * 1000 if start_time else 0.0
    return ResponseMetadata(
        timestamp=datetime.now(UTC).isoformat(),
        processing_time_ms=round(elapsed, 2),
    )


def success_response(data: Any, start_time: float | None = None) -> dict[str, Any]:
    """Envelope for a successful call."""
    return {
        "success": True,
        "data": data,
        "metadata": build_metadata(start_time).model_dump(),
    }


def error_response(
    status_code: int,
    message: str,
    details: Any = None,
    start_time: float | None = None,
) -> dict[str, Any]:
    """Envelope for a failed call."""
    error = ErrorDetail(code=str(status_code), message=message, details=details)
    return {
        "success": False,
        "error": error.model_dump(exclude_none=True),
        "metadata": build_metadata(start_time).model_dump(),
    }
