"""
Pydantic models for the feedback engine.

These models define the schemas for:
- Feedback requests (assignment, submission, rubric, learner context)
- Structured feedback responses with bounded scores
- Performance snapshots and content validation results

Every score field is constrained to [0, 100], so an out-of-range value can
never leave the engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# Request Models
# ==============================================================================


class SubmissionKind(str, Enum):
    """What kind of work was submitted."""

    CODE = "code"
    WRITING = "writing"


class FeedbackTone(str, Enum):
    """Tone the learner prefers for feedback."""

    DETAILED = "detailed"
    CONCISE = "concise"
    ENCOURAGING = "encouraging"


class LearningLevel(str, Enum):
    """Self-reported learner level."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class RubricItem(BaseModel):
    """
    A single structured rubric entry.

    Rendered for the model as ``"<n>. <title> (<points> pts)"`` followed by
    indented detail bullets.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1, description="Criterion title")
    points: int = Field(..., ge=0, le=1000, description="Point weight of the criterion")
    details: tuple[str, ...] = Field(default=(), description="Detail bullets")


class LearnerContext(BaseModel):
    """Optional information about the learner's history and preferences."""

    model_config = ConfigDict(frozen=True)

    previous_submissions: int = Field(default=0, ge=0)
    average_score: float = Field(default=0.0, ge=0.0, le=100.0)
    preferred_tone: FeedbackTone = FeedbackTone.DETAILED
    learning_level: LearningLevel = LearningLevel.INTERMEDIATE


class PerformanceHints(BaseModel):
    """Caller hints; they never influence the cache key."""

    model_config = ConfigDict(frozen=True)

    use_cache: bool = Field(default=True, description="Allow reading a cached response")
    max_response_time_ms: int | None = Field(
        default=None,
        ge=1,
        description="Informational latency budget; not enforced by the engine",
    )


class FeedbackRequest(BaseModel):
    """
    One request for AI feedback on a submission.

    Immutable once constructed. Only ``assignment_id``, the submission text,
    ``domain`` and ``submission_kind`` take part in the cache key.
    """

    model_config = ConfigDict(frozen=True)

    assignment_id: str = Field(..., min_length=1, description="Assignment identity (code)")
    title: str = Field(..., min_length=1, description="Assignment title")
    requirements: tuple[str, ...] = Field(default=())
    recommendations: tuple[str, ...] = Field(default=())
    domain: str = Field(default="programming", description="Grading domain tag")
    technology: str | None = Field(default=None, description="Specific technology tag")
    rubric: tuple[RubricItem, ...] | tuple[str, ...] | None = Field(
        default=None,
        description="Structured rubric items or a flat list of rubric lines",
    )
    difficulty: LearningLevel = LearningLevel.INTERMEDIATE
    submission_kind: SubmissionKind = SubmissionKind.CODE
    submission_text: str = Field(..., description="Plain-text submission content")
    submission_title: str | None = None
    submission_url: str | None = None
    learner: LearnerContext | None = None
    hints: PerformanceHints = Field(default_factory=PerformanceHints)

    @field_validator("submission_kind", mode="before")
    @classmethod
    def accept_blog_alias(cls, v: Any) -> Any:
        """Blog posts are graded as writing."""
        if isinstance(v, str) and v.strip().lower() == "blog":
            return SubmissionKind.WRITING
        return v

    @field_validator("rubric", mode="before")
    @classmethod
    def empty_rubric_is_none(cls, v: Any) -> Any:
        """An empty rubric is the same as no rubric."""
        if isinstance(v, (list, tuple)) and not v:
            return None
        return v


# ==============================================================================
# Response Models
# ==============================================================================


class CriteriaScores(BaseModel):
    """The four named criterion scores."""

    model_config = ConfigDict(frozen=True)

    requirements_met: int = Field(..., ge=0, le=100)
    code_quality: int = Field(..., ge=0, le=100)
    best_practices: int = Field(..., ge=0, le=100)
    creativity: int = Field(..., ge=0, le=100)


class FeedbackQuality(BaseModel):
    """Self-assessed quality of the generated feedback."""

    model_config = ConfigDict(frozen=True)

    confidence: int = Field(..., ge=0, le=100)
    appropriateness: int = Field(..., ge=0, le=100)
    actionability: int = Field(..., ge=0, le=100)


class CacheInfo(BaseModel):
    """Cache metadata attached to every response."""

    model_config = ConfigDict(frozen=True)

    key: str
    hit: bool = False
    latency_ms: float = Field(default=0.0, ge=0.0)


class ModelInfo(BaseModel):
    """Which backend produced the response."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    tokens_used: int | None = Field(default=None, ge=0)


class AIFeedbackResponse(BaseModel):
    """
    Structured feedback for one submission.

    Produced once per request and owned by the caller after return.
    """

    model_config = ConfigDict(frozen=True)

    content: str = Field(..., description="Markdown feedback narrative")
    score: int = Field(..., ge=0, le=100)
    criteria_scores: CriteriaScores
    quality: FeedbackQuality
    improvement_suggestions: tuple[str, ...] = Field(..., min_length=1)
    next_steps: tuple[str, ...] = Field(default=())
    learning_resources: tuple[str, ...] = Field(default=())
    cache: CacheInfo
    generated_at: datetime = Field(default_factory=_utcnow)
    model_info: ModelInfo
    degraded: bool = Field(
        default=False,
        description="True when the model output could not be parsed and defaults were used",
    )

    def with_cache_info(self, *, hit: bool, latency_ms: float) -> "AIFeedbackResponse":
        """Return a copy carrying fresh cache metadata."""
        cache = CacheInfo(key=self.cache.key, hit=hit, latency_ms=max(latency_ms, 0.0))
        return self.model_copy(update={"cache": cache})


# ==============================================================================
# Metrics and Validation Models
# ==============================================================================


class PerformanceSnapshot(BaseModel):
    """Point-in-time view of the rolling metrics."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    avg_latency_ms: float = Field(default=0.0, ge=0.0)
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate_percent(self) -> float:
        """Hit rate expressed as a percentage."""
        return self.hit_rate * 100


class ValidationResult(BaseModel):
    """Outcome of checking a submission against assignment requirements."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    missing_requirements: tuple[str, ...] = Field(default=())
    suggestions: tuple[str, ...] = Field(default=())
