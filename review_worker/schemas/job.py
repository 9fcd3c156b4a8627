"""Schemas for job payloads, handler results and terminal outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from review_worker.models.job import JobStatus


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


NonBlankStr = Annotated[str, AfterValidator(_require_text)]


def _text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _option_or_default(value: Any, default: str) -> str:
    """Optional settings fall back to their default when absent, null, blank or not text."""
    if isinstance(value, str) and value.strip():
        return value
    return default


class JobPayload(BaseModel):
    """Base for per-type payloads. Unknown keys sent by producers are ignored."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    # Fields reported as "required and must be a non-empty string" on failure
    required_text_fields: ClassVar[tuple[str, ...]] = ()


class UserPreferences(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Only a string personalises the reply; anything else is dropped
    reviewerName: Optional[str] = None

    @field_validator("reviewerName", mode="before")
    @classmethod
    def _drop_non_text_name(cls, value: Any) -> Optional[str]:
        return _text_or_none(value)


class AIGenerationPayload(JobPayload):
    required_text_fields: ClassVar[tuple[str, ...]] = ("review_text",)

    review_text: NonBlankStr
    business_profile: Optional[Dict[str, Any]] = None
    custom_prompt: Optional[str] = None
    review_rating: Optional[float] = Field(default=None, ge=1, le=5)
    user_preferences: Optional[UserPreferences] = None

    @field_validator("business_profile", "user_preferences", mode="before")
    @classmethod
    def _drop_non_object(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, BaseModel)) else None

    @field_validator("custom_prompt", mode="before")
    @classmethod
    def _drop_non_text_prompt(cls, value: Any) -> Optional[str]:
        return _text_or_none(value)

    @field_validator("review_rating", mode="before")
    @classmethod
    def _drop_non_numeric_rating(cls, value: Any) -> Any:
        # numbers outside 1-5 are still rejected by the field constraints
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return None
        return None

    @property
    def reviewer_name(self) -> Optional[str]:
        if self.user_preferences and self.user_preferences.reviewerName:
            name = self.user_preferences.reviewerName.strip()
            return name or None
        return None


class ReviewProcessingPayload(JobPayload):
    required_text_fields: ClassVar[tuple[str, ...]] = ("review_text",)

    review_text: NonBlankStr
    business_category: str = "general"

    @field_validator("business_category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> str:
        return _option_or_default(value, "general")


class PromptAnalysisPayload(JobPayload):
    required_text_fields: ClassVar[tuple[str, ...]] = ("prompt_text",)

    prompt_text: NonBlankStr
    optimization_goals: str = "clarity"

    @field_validator("optimization_goals", mode="before")
    @classmethod
    def _default_goals(cls, value: Any) -> str:
        return _option_or_default(value, "clarity")


class SentimentAnalysisPayload(JobPayload):
    required_text_fields: ClassVar[tuple[str, ...]] = ("text_content",)

    text_content: NonBlankStr
    analysis_depth: str = "basic"

    @field_validator("analysis_depth", mode="before")
    @classmethod
    def _default_depth(cls, value: Any) -> str:
        return _option_or_default(value, "basic")


class CompletionMetadata(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    tokens_used: int = 0
    model_used: str


class AIGenerationResult(CompletionMetadata):
    generated_response: str
    prompt_mode: str
    review_rating: Optional[float] = None
    system_prompt_used: str


class ReviewProcessingResult(CompletionMetadata):
    sentiment: Optional[str] = None
    key_topics: List[str] = Field(default_factory=list)
    suggested_response: Optional[str] = None
    response_rating: Optional[float] = None
    business_category: str
    analysis_timestamp: datetime


class PromptAnalysisResult(CompletionMetadata):
    original_prompt: str
    optimized_prompt: Optional[str] = None
    improvements_suggested: List[str] = Field(default_factory=list)
    optimization_score: Optional[float] = None
    optimization_goals: str
    analysis_timestamp: datetime


class SentimentAnalysisResult(CompletionMetadata):
    text_analyzed: str
    sentiment_score: Optional[float] = None
    primary_emotion: Optional[str] = None
    secondary_emotions: List[str] = Field(default_factory=list)
    insights: Optional[str] = None
    analysis_depth: str
    analysis_timestamp: datetime


@dataclass(frozen=True)
class JobOutcome:
    """Terminal state for a job: a result map on success, an error string on failure."""

    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def completed(cls, result: Dict[str, Any]) -> "JobOutcome":
        return cls(status=JobStatus.COMPLETED.value, result=result)

    @classmethod
    def failed(cls, error: str) -> "JobOutcome":
        return cls(status=JobStatus.FAILED.value, error=error or "Unknown processing error")

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED.value
