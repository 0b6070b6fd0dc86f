"""
API Request and Response Models.

Pydantic models for FastAPI request/response validation and
automatic OpenAPI documentation generation. Domain payloads (personas,
concepts, records) reuse the service models so the wire format is the
same everywhere.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, List
from datetime import datetime

from ..services.models import (
    Concept,
    DemographicFilters,
    DemographicInput,
    FilteredSummary,
    JobStatus,
    Persona,
    PreferenceRecord,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Job Submission Models
# ============================================================================

class ProfileGenerationRequest(ApiModel):
    """
    Request model for persona panel recruitment.

    `count` falls back to `demographics.consumerCount`, then the
    configured default.
    """
    demographics: DemographicInput
    count: Optional[int] = Field(None, description="Number of personas to generate")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "demographics": {
                    "ageRanges": ["25-34"],
                    "genders": ["Female"],
                    "locations": ["Urban"],
                    "incomeRanges": ["$50,000-$75,000"],
                    "educationLevels": ["Bachelor's Degree"],
                    "consumerCount": 20
                }
            }
        },
    )


class AnalysisRequest(ApiModel):
    """Request model for concept preference analysis."""
    profiles: List[Persona] = Field(default_factory=list)
    concepts: List[Concept] = Field(default_factory=list)


class JobSubmitResponse(ApiModel):
    """Returned immediately by every submit endpoint."""
    job_id: str = Field(..., description="Id to poll with")
    status: JobStatus = Field(default=JobStatus.PROCESSING)
    message: str = Field(default="")


class JobCancelResponse(ApiModel):
    job_id: str
    cancelled: bool = Field(..., description="False if the job had already finished")


# ============================================================================
# Filtered Summary Models
# ============================================================================

class SummaryRequest(ApiModel):
    """Recompute a summary over the personas matching `filters`."""
    profiles: List[Persona] = Field(default_factory=list)
    concepts: List[Concept] = Field(default_factory=list)
    analyses: List[PreferenceRecord] = Field(default_factory=list)
    filters: DemographicFilters = Field(default_factory=DemographicFilters)
    insights: List[str] = Field(default_factory=list)


class SummaryResponse(FilteredSummary):
    """Averages, top concept and ranking over the matching personas."""


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=datetime.now)
    services: Dict[str, str] = Field(
        default_factory=dict,
        description="Status of dependent services (completion provider, job store)"
    )


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    timestamp: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Job not found: job_1718000000000_ab12cd34e",
                "detail": "The job id is unknown or the job has expired",
                "timestamp": "2025-01-18T12:00:00Z"
            }
        }
    )
