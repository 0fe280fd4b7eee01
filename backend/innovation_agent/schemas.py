"""Data models shared by the generator, the pipeline and the API."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SOLUTIONS_PER_PROBLEM = 3
MAX_SCORE = 100
TITLE_PREVIEW_LENGTH = 100


class ProblemStatus(str, Enum):
    """Lifecycle of a submitted problem."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentType(str, Enum):
    """Category tag assigned to every solution."""

    TECHNOLOGY = "technology"
    BIOTECHNOLOGY = "biotechnology"
    SOCIAL_INNOVATION = "social_innovation"
    POLICY = "policy"
    BUSINESS_MODEL = "business_model"


class FallbackReason(str, Enum):
    """Why the deterministic solution set was served."""

    MISSING_CREDENTIALS = "missing_credentials"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    INVALID_RESPONSE = "invalid_response"


def _clamp_score(value: float) -> int:
    return max(0, min(MAX_SCORE, round(value)))


class GeneratedSolution(BaseModel):
    """One proposal as produced by the model or the fallback catalogue.

    Field names follow the stored schema; the camelCase aliases match the
    JSON the model is asked to return.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    feasibility_score: int = Field(..., alias="feasibilityScore", ge=0, le=MAX_SCORE)
    cost_estimate: str = Field(..., alias="costEstimate", min_length=1)
    sustainability_score: int = Field(..., alias="sustainabilityScore", ge=0, le=MAX_SCORE)
    innovation_score: int = Field(..., alias="innovationScore", ge=0, le=MAX_SCORE)
    agent_type: AgentType = Field(..., alias="agentType")
    research_sources: list[str] = Field(default_factory=list, alias="researchSources")

    @field_validator(
        "feasibility_score", "sustainability_score", "innovation_score", mode="before",
    )
    @classmethod
    def clamp_scores(cls, value: object) -> object:
        """Pull numeric scores into the 0-100 range."""
        if isinstance(value, bool):
            return value
        if isinstance(value, int | float):
            return _clamp_score(value)
        if isinstance(value, str):
            try:
                return _clamp_score(float(value))
            except ValueError:
                return value
        return value

    @field_validator("cost_estimate", mode="before")
    @classmethod
    def stringify_cost(cls, value: object) -> object:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value


class LiteratureReview(BaseModel):
    """Research context returned alongside a generation result. Never stored."""

    model_config = ConfigDict(populate_by_name=True)

    search_terms: list[str] = Field(default_factory=list, alias="searchTerms")
    key_findings: str = Field("", alias="keyFindings")
    research_sources: list[str] = Field(default_factory=list, alias="researchSources")


class GenerationResult(BaseModel):
    """What the solution generator hands back to its callers."""

    model_config = ConfigDict(populate_by_name=True)

    solutions: list[GeneratedSolution] = Field(
        ..., min_length=SOLUTIONS_PER_PROBLEM, max_length=SOLUTIONS_PER_PROBLEM,
    )
    literature_review: LiteratureReview | None = Field(None, alias="literatureReview")
    source: Literal["openai", "fallback"]
    note: str | None = None
    fallback_reason: FallbackReason | None = Field(None, alias="fallbackReason")

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class Problem(BaseModel):
    """A user-submitted challenge tracked through its status lifecycle."""

    id: str
    user_id: str
    title: str
    description: str
    category: str | None = None
    status: ProblemStatus = ProblemStatus.PENDING
    created_at: datetime
    updated_at: datetime


class Solution(BaseModel):
    """A persisted proposal owned by a problem."""

    id: str
    problem_id: str
    user_id: str
    title: str
    description: str
    feasibility_score: int = Field(..., ge=0, le=MAX_SCORE)
    cost_estimate: str
    sustainability_score: int = Field(..., ge=0, le=MAX_SCORE)
    innovation_score: int = Field(..., ge=0, le=MAX_SCORE)
    agent_type: AgentType
    research_sources: list[str] = Field(default_factory=list)
    created_at: datetime


class SubmissionOutcome(BaseModel):
    """Result of one run of the submission pipeline."""

    success: bool
    problem: Problem | None = None
    solutions: list[Solution] = Field(default_factory=list)
    literature_review: LiteratureReview | None = None
    source: Literal["openai", "fallback"] | None = None
    note: str | None = None
    fallback_reason: FallbackReason | None = None
    error: str | None = None


def default_title(description: str) -> str:
    """Derive a problem title from its description."""
    if len(description) > TITLE_PREVIEW_LENGTH:
        return description[:TITLE_PREVIEW_LENGTH] + "..."
    return description
