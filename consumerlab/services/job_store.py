"""
JobStore - ownership of background job records.

The store is the only state shared between request handlers, running jobs
and the TTL sweeper. Status changes go through `transition`, a
compare-and-set that only succeeds while a job is still processing.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .models import Job, JobResult, JobStatus

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Keyed storage for Job records."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        """Return the job, or None if unknown or evicted."""

    @abstractmethod
    def set(self, job: Job) -> None:
        """Insert or replace a job record."""

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Remove a job; True if it existed."""

    @abstractmethod
    def sweep(self, max_age_seconds: float, now: Optional[float] = None) -> List[str]:
        """Evict jobs created more than `max_age_seconds` ago; return evicted ids."""

    @abstractmethod
    def transition(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[JobResult] = None,
        error: Optional[str] = None
    ) -> bool:
        """
        Move a processing job to a terminal status.

        Returns:
            False if the job is gone or already terminal; nothing is written
        """


class InMemoryJobStore(JobStore):
    """Process-local JobStore guarded by a lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def set(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def sweep(self, max_age_seconds: float, now: Optional[float] = None) -> List[str]:
        now = self.clock() if now is None else now
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if now - job.created_at > max_age_seconds
            ]
            for job_id in expired:
                del self._jobs[job_id]

        if expired:
            logger.info(f"Evicted {len(expired)} expired jobs")
        return expired

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[JobResult] = None,
        error: Optional[str] = None
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return False
            self._jobs[job_id] = job.model_copy(
                update={"status": status, "result": result, "error": error}
            )
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs
