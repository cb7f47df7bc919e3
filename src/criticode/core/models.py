# Author: Bradley R. Kinnard — where types go to be validated

"""
Pydantic models for the review pipeline and API responses.
Python side is snake_case, the wire is camelCase because the UI already speaks it.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["Critical", "High", "Medium", "Low"]
SEVERITIES: tuple[str, ...] = ("Critical", "High", "Medium", "Low")
DEFAULT_SEVERITY: Severity = "Medium"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Finding(BaseModel):
    """Frozen so nobody edits a finding after the invoker hands it out."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class SecurityIssue(_Finding):
    severity: Severity = DEFAULT_SEVERITY
    issue: str = ""
    line: int = Field(default=0, ge=0)
    description: str = ""
    fix: str = ""
    code_example: str = ""


class PerformanceIssue(_Finding):
    issue: str = ""
    line: int = Field(default=0, ge=0)
    description: str = ""
    suggestion: str = ""
    code_example: str = ""


class BestPracticeIssue(_Finding):
    issue: str = ""
    line: int = Field(default=0, ge=0)
    description: str = ""
    suggestion: str = ""
    code_example: str = ""


class RefactoringOpportunity(_Finding):
    opportunity: str = ""
    line: int = Field(default=0, ge=0)
    description: str = ""
    benefit: str = ""
    code_example: str = ""


class AnalysisResult(CamelModel):
    """All four arrays, always. Empty means the model found nothing there."""
    security: list[SecurityIssue] = Field(default_factory=list)
    performance: list[PerformanceIssue] = Field(default_factory=list)
    best_practices: list[BestPracticeIssue] = Field(default_factory=list)
    refactoring: list[RefactoringOpportunity] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.security or self.performance or self.best_practices or self.refactoring)


class Identity(BaseModel):
    """Verified caller. None anywhere means anonymous."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: str


class Review(CamelModel):
    id: str
    owner_id: str
    code: str
    language: str
    file_name: str | None = None
    analysis: AnalysisResult
    created_at: datetime
    updated_at: datetime


class ReviewPage(CamelModel):
    reviews: list[Review]
    total: int
    page: int
    limit: int
    total_pages: int


class UserStats(CamelModel):
    total_reviews: int
    languages_used: list[str]
    recent_activity: list[Review]


# request/response models

class AnalyzeRequest(CamelModel):
    code: str
    language: str
    file_name: str | None = None


class AnalyzeResponse(CamelModel):
    message: str = "Code analysis completed successfully"
    analysis: AnalysisResult
    review_id: str | None = None
    saved: bool = False


class UploadResponse(AnalyzeResponse):
    message: str = "File uploaded and analyzed successfully"
    file_name: str
    file_size: int
    language: str


class ReviewListResponse(ReviewPage):
    message: str = "Reviews retrieved successfully"


class SearchResponse(ReviewPage):
    message: str = "Search completed successfully"
    query: str


class ReviewResponse(CamelModel):
    message: str = "Review retrieved successfully"
    review: Review


class StatsResponse(CamelModel):
    message: str = "User statistics retrieved successfully"
    stats: UserStats


class LanguagesResponse(CamelModel):
    message: str = "Language statistics retrieved successfully"
    languages: dict[str, int]


class MessageResponse(CamelModel):
    message: str
    note: str | None = None


class IdentityResponse(CamelModel):
    message: str = "User information retrieved successfully"
    user: Identity


class HealthResponse(BaseModel):
    """Pulse check. 'skipped' counts as healthy."""
    status: Literal["ok", "degraded"]
    request_id: str
    ai: Literal["configured", "not_configured"]
    database: str
    redis: str
