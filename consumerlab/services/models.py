"""
Pydantic models for ConsumerLab services.

These models provide type-safe, validated data structures for:
- Synthetic consumer personas (Persona) and their demographic input
- Product concepts and per-persona preference records
- Analysis summaries and per-concept roll-ups
- Background job records and their polled status views

All models use Pydantic v2. Wire names are camelCase; Python attributes are
snake_case and either form is accepted on input.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Ordinal vocabulary shared by the four persona "level" attributes
LEVELS = ["Low", "Medium", "High", "Very High"]

AGE_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+))?\s*\+?\s*$")

# Width assumed for open-ended ranges such as "65+"
OPEN_AGE_RANGE_SPAN = 10


def parse_age_range(age_range: str) -> Tuple[int, int]:
    """
    Parse an age range label into inclusive bounds.

    "25-34" -> (25, 34); "65+" -> (65, 75).

    Raises:
        ValueError: If the label is not a recognizable range
    """
    match = AGE_RANGE_PATTERN.match(age_range or "")
    if not match:
        raise ValueError(f"Invalid age range: {age_range!r}")

    low = int(match.group(1))
    high = int(match.group(2)) if match.group(2) else low + OPEN_AGE_RANGE_SPAN
    if high < low:
        raise ValueError(f"Invalid age range: {age_range!r} (upper bound below lower bound)")
    return low, high


class CamelModel(BaseModel):
    """Base model with camelCase wire aliases."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


# ============================================================================
# Demographic Input
# ============================================================================

class UploadedFile(CamelModel):
    """A research document attached to a profile generation request."""
    name: str = Field(..., description="Original file name")
    content: str = Field(default="", description="Extracted text content")
    type: str = Field(default="", description="MIME type or extension")


class DemographicInput(CamelModel):
    """
    Demographic constraints for persona recruitment.

    Every category list is required to be non-empty at submission time;
    the check lives in JobService so the API can answer with a 400.
    """
    age_ranges: List[str] = Field(default_factory=list, examples=[["25-34", "35-44"]])
    genders: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    income_ranges: List[str] = Field(default_factory=list)
    education_levels: List[str] = Field(default_factory=list)
    consumer_count: Optional[int] = Field(None, ge=1, description="Requested panel size")

    # Slider bounds (override the range labels in provider prompts)
    age_min: Optional[int] = Field(None, ge=0)
    age_max: Optional[int] = Field(None, ge=0)
    income_min: Optional[int] = Field(None, ge=0)
    income_max: Optional[int] = Field(None, ge=0)

    additional_context: Optional[str] = None
    uploaded_files: List[UploadedFile] = Field(default_factory=list)

    def missing_categories(self) -> List[str]:
        """Names (wire form) of required category lists that are empty."""
        required = {
            "ageRanges": self.age_ranges,
            "genders": self.genders,
            "locations": self.locations,
            "incomeRanges": self.income_ranges,
            "educationLevels": self.education_levels,
        }
        return [name for name, values in required.items() if not values]

    def age_bounds(self) -> List[Tuple[int, int]]:
        """Inclusive (low, high) bounds for every requested age range."""
        if self.age_ranges:
            return [parse_age_range(r) for r in self.age_ranges]
        if self.age_min is not None and self.age_max is not None:
            return [(self.age_min, self.age_max)]
        return []


# ============================================================================
# Personas, Concepts, Preference Records
# ============================================================================

class Persona(CamelModel):
    """
    Synthetic consumer profile.

    Only id, name, age and gender are required; provider output that lacks
    one of them fails validation and is dropped by the orchestrator.
    """
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    age: int = Field(..., gt=0)
    gender: str = Field(..., min_length=1)
    location: str = ""
    income: str = ""
    education: str = ""
    lifestyle: str = ""
    interests: List[str] = Field(default_factory=list)
    shopping_behavior: str = ""
    tech_savviness: str = ""
    environmental_awareness: str = ""
    brand_loyalty: str = ""
    price_sensitivity: str = Field(
        default="",
        validation_alias=AliasChoices("priceSensitivity", "pricesensitivity", "price_sensitivity"),
        serialization_alias="priceSensitivity",
    )

    @field_validator("interests", mode="before")
    @classmethod
    def _split_interests(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class Concept(CamelModel):
    """A product concept submitted for evaluation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""


class PreferenceRecord(CamelModel):
    """One persona's reaction to one concept, scores on a 1-10 scale."""
    model_config = ConfigDict(frozen=True)

    profile_id: str = Field(..., min_length=1)
    concept_id: str = Field(..., min_length=1)
    preference: int = Field(..., ge=1, le=10)
    innovativeness: int = Field(..., ge=1, le=10)
    differentiation: int = Field(..., ge=1, le=10)
    reasoning: str = ""

    @field_validator("preference", "innovativeness", "differentiation", mode="before")
    @classmethod
    def _round_score(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(round(value))
        if isinstance(value, str):
            try:
                return int(round(float(value)))
            except ValueError:
                return value
        return value


# ============================================================================
# Aggregates
# ============================================================================

class AnalysisSummary(CamelModel):
    """Summary statistics derived from a preference record set."""
    average_preference: float
    average_innovativeness: float
    average_differentiation: float
    top_performing_concept: str = Field(
        ...,
        validation_alias=AliasChoices(
            "topPerformingConcept", "topPerformingConceptTitle", "top_performing_concept"
        ),
        serialization_alias="topPerformingConcept",
        description="Title of the concept with the highest mean preference",
    )
    insights: List[str] = Field(default_factory=list)


class ConceptScore(CamelModel):
    """Per-concept roll-up of preference records."""
    concept_id: str
    title: str
    average_preference: float
    average_innovativeness: float
    average_differentiation: float
    overall_score: float = Field(..., description="Mean of the three dimension averages")
    responses: int = Field(..., ge=1)


class DemographicFilters(CamelModel):
    """Subset selector for filtered roll-ups; an empty list means no constraint."""
    age_ranges: List[str] = Field(default_factory=list)
    genders: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    income_ranges: List[str] = Field(default_factory=list)
    education_levels: List[str] = Field(default_factory=list)
    tech_savviness: List[str] = Field(default_factory=list)
    environmental_awareness: List[str] = Field(default_factory=list)
    brand_loyalty: List[str] = Field(default_factory=list)
    price_sensitivity: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)


class FilteredSummary(CamelModel):
    """Summary over the records of personas matching a DemographicFilters."""
    summary: AnalysisSummary
    concept_scores: List[ConceptScore] = Field(default_factory=list, description="Best first")
    matching_profiles: int
    matching_analyses: int


# ============================================================================
# Job Records
# ============================================================================

class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    PROFILES = "profiles"
    ANALYSIS = "analysis"


class ProfileSet(CamelModel):
    """Result payload of a completed profile generation job."""
    profiles: List[Persona]
    count: int


class AnalysisResult(CamelModel):
    """Result payload of a completed preference analysis job."""
    analyses: List[PreferenceRecord]
    summary: AnalysisSummary
    total_analyses: int


JobResult = Union[ProfileSet, AnalysisResult]


class Job(CamelModel):
    """
    Background job record.

    Created in `processing`; moves exactly once to `completed` (with result)
    or `failed` (with error). Owned by a JobStore.
    """
    id: str
    kind: JobKind
    status: JobStatus = JobStatus.PROCESSING
    created_at: float = Field(..., description="Unix timestamp of submission")
    result: Optional[JobResult] = None
    error: Optional[str] = None


class JobStatusView(CamelModel):
    """What a poll returns for a job."""
    job_id: str
    status: JobStatus
    result: Optional[JobResult] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusView":
        return cls(job_id=job.id, status=job.status, result=job.result, error=job.error)

    def to_response(self) -> Dict[str, Any]:
        """Flatten into the poll response body (result fields inlined)."""
        if self.status == JobStatus.COMPLETED and self.result is not None:
            return {"status": self.status.value, **self.result.model_dump(mode="json", by_alias=True)}
        if self.status == JobStatus.FAILED:
            return {"status": self.status.value, "error": self.error}
        return {"status": self.status.value}
