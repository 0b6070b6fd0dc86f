"""
Services layer for ConsumerLab.

Provides clean separation between provider access (CompletionProvider),
batch orchestration (profile generation, preference analysis), job
control (JobService, JobStore) and aggregation.
"""

from .models import (
    DemographicInput,
    UploadedFile,
    Persona,
    Concept,
    PreferenceRecord,
    AnalysisSummary,
    ConceptScore,
    DemographicFilters,
    FilteredSummary,
    JobStatus,
    JobKind,
    ProfileSet,
    AnalysisResult,
    Job,
    JobStatusView,
)

from .response_parser import extract_json_payload, parse_structured_response
from .completion_service import (
    CompletionProvider,
    OpenAICompletionProvider,
    ConcurrencyLimitedProvider,
    get_completion_provider,
)
from .batch_orchestrator import (
    CancellationToken,
    ConversationLog,
    ModelRotationPolicy,
    ProfileGenerationOrchestrator,
    PreferenceAnalysisOrchestrator,
)
from .mock_data_service import MockDataService
from .aggregation_service import AggregationService
from .job_store import JobStore, InMemoryJobStore
from .job_service import JobService

__all__ = [
    # Models
    'DemographicInput',
    'UploadedFile',
    'Persona',
    'Concept',
    'PreferenceRecord',
    'AnalysisSummary',
    'ConceptScore',
    'DemographicFilters',
    'FilteredSummary',
    'JobStatus',
    'JobKind',
    'ProfileSet',
    'AnalysisResult',
    'Job',
    'JobStatusView',
    # Parsing
    'extract_json_payload',
    'parse_structured_response',
    # Providers
    'CompletionProvider',
    'OpenAICompletionProvider',
    'ConcurrencyLimitedProvider',
    'get_completion_provider',
    # Orchestration
    'CancellationToken',
    'ConversationLog',
    'ModelRotationPolicy',
    'ProfileGenerationOrchestrator',
    'PreferenceAnalysisOrchestrator',
    # Services
    'MockDataService',
    'AggregationService',
    'JobStore',
    'InMemoryJobStore',
    'JobService',
]
