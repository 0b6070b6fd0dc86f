"""
Error taxonomy for ConsumerLab.

Per-chunk errors (ProviderError, ParseError) are absorbed by the batch
orchestrators. Job-level errors end up as a failed job status; they never
escape a background job as raw exceptions.
"""

from typing import Optional


class ConsumerLabError(Exception):
    """Base class for all ConsumerLab errors."""


class InvalidInputError(ConsumerLabError):
    """Raised at submission time when the request payload is malformed or empty."""


class ProviderError(ConsumerLabError):
    """Raised when a single completion request fails (network, auth, rate limit, empty reply)."""

    def __init__(self, message: str, model: Optional[str] = None):
        self.model = model
        super().__init__(f"[{model}] {message}" if model else message)


class ParseError(ConsumerLabError):
    """Raised when provider output is not valid structured data after unwrapping."""

    def __init__(self, message: str, raw_content: str = ""):
        self.raw_content = raw_content
        super().__init__(message)


class GenerationFailedError(ConsumerLabError):
    """Raised when an orchestration run produced zero usable records."""


class JobNotFoundError(ConsumerLabError):
    """Raised when polling an unknown or evicted job id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobCancelledError(ConsumerLabError):
    """Raised inside an orchestration loop once its cancellation token is set."""

    def __init__(self, message: str = "Job cancelled"):
        super().__init__(message)


class NoDataError(ConsumerLabError):
    """Raised when aggregating over an empty record set."""
