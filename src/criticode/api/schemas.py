# Author: Bradley R. Kinnard — the contract between client and server

"""
API schemas. Re-exports from models.py plus the error envelope.
Keep request/response definitions in one place for OpenAPI docs.
"""

from typing import Any

# re-export the core models for API use
from src.criticode.core.models import (
    AnalysisResult,
    AnalyzeRequest,
    AnalyzeResponse,
    CamelModel,
    HealthResponse,
    IdentityResponse,
    LanguagesResponse,
    MessageResponse,
    ReviewListResponse,
    ReviewResponse,
    SearchResponse,
    StatsResponse,
    UploadResponse,
)

__all__ = [
    "AnalysisResult",
    "AnalyzeRequest",
    "AnalyzeResponse",
    "HealthResponse",
    "IdentityResponse",
    "LanguagesResponse",
    "MessageResponse",
    "ReviewListResponse",
    "ReviewResponse",
    "SearchResponse",
    "StatsResponse",
    "UploadResponse",
    "ErrorResponse",
    "RateLimitErrorResponse",
    "ERROR_RESPONSES",
]


class ErrorResponse(CamelModel):
    """Every 4xx/5xx looks like this."""
    error: str  # stable category, e.g. "NotFoundError"
    message: str
    details: dict[str, Any] | None = None
    timestamp: str
    path: str
    method: str
    request_id: str | None = None
    stack: str | None = None  # dev only


class RateLimitErrorResponse(ErrorResponse):
    retry_after: int
    current_usage: int
    limit: int
    reset_time: str
    category: str


# shared `responses=` block for routers so the docs show the envelope
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    429: {"model": RateLimitErrorResponse},
    500: {"model": ErrorResponse},
}
