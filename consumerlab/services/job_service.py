"""
JobService - background job control for panel recruitment and analysis.

Submissions validate synchronously, register a `processing` job and
schedule the work as an asyncio task, returning the job id immediately.
Clients poll for the outcome. Every exception raised inside a job ends up
as a `failed` status with the message captured; nothing escapes the task.

Policy:
- USE_MOCK_DATA skips the completion provider entirely.
- FALLBACK_TO_MOCK_DATA substitutes deterministic data when an
  orchestration yields zero usable records.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

import logfire

from ..core.config import Config
from ..core.exceptions import (
    GenerationFailedError,
    InvalidInputError,
    JobCancelledError,
    JobNotFoundError,
)
from .aggregation_service import AggregationService
from .batch_orchestrator import (
    CancellationToken,
    PreferenceAnalysisOrchestrator,
    ProfileGenerationOrchestrator,
)
from .completion_service import CompletionProvider, get_completion_provider
from .job_store import InMemoryJobStore, JobStore
from .mock_data_service import MockDataService
from .models import (
    AnalysisResult,
    Concept,
    DemographicInput,
    Job,
    JobKind,
    JobStatus,
    JobStatusView,
    Persona,
    ProfileSet,
)

logger = logging.getLogger(__name__)


JOB_ID_PREFIXES = {
    JobKind.PROFILES: "job",
    JobKind.ANALYSIS: "analysis",
}


class JobService:
    """
    Owns job submission, polling, cancellation and expiry.

    Submit methods must be called from inside a running event loop.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        provider: Optional[CompletionProvider] = None,
        profile_orchestrator: Optional[ProfileGenerationOrchestrator] = None,
        analysis_orchestrator: Optional[PreferenceAnalysisOrchestrator] = None,
        mock_service: Optional[MockDataService] = None,
        aggregation: Optional[AggregationService] = None,
        use_mock_data: Optional[bool] = None,
        fallback_to_mock: Optional[bool] = None,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize the service.

        Args:
            store: Job record storage (defaults to a new InMemoryJobStore)
            provider: Completion provider used to build default orchestrators
            profile_orchestrator: Panel generator (built from `provider` if omitted)
            analysis_orchestrator: Concept scorer (built from `provider` if omitted)
            mock_service: Deterministic fallback generator
            aggregation: Summary calculator
            use_mock_data: Never call the provider (defaults to Config.USE_MOCK_DATA)
            fallback_to_mock: Substitute mock data on zero yield
                (defaults to Config.FALLBACK_TO_MOCK_DATA)
            ttl_seconds: Job retention (defaults to Config.JOB_TTL_SECONDS)
            clock: Time source for ids and expiry
        """
        self.clock = clock or time.time
        self.store = store or InMemoryJobStore(clock=self.clock)

        if profile_orchestrator is None or analysis_orchestrator is None:
            provider = provider or get_completion_provider()
        self.profile_orchestrator = profile_orchestrator or ProfileGenerationOrchestrator(provider)
        self.analysis_orchestrator = analysis_orchestrator or PreferenceAnalysisOrchestrator(provider)

        self.mock_service = mock_service or MockDataService()
        self.aggregation = aggregation or AggregationService()
        self.use_mock_data = Config.USE_MOCK_DATA if use_mock_data is None else use_mock_data
        self.fallback_to_mock = Config.FALLBACK_TO_MOCK_DATA if fallback_to_mock is None else fallback_to_mock
        self.ttl_seconds = ttl_seconds or Config.JOB_TTL_SECONDS

        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_profile_generation(
        self,
        demographics: DemographicInput,
        count: Optional[int] = None
    ) -> str:
        """
        Start recruiting a persona panel.

        Args:
            demographics: Category constraints; every list must be non-empty
            count: Panel size (defaults to demographics.consumer_count, then
                Config.DEFAULT_PROFILE_COUNT)

        Returns:
            The new job id

        Raises:
            InvalidInputError: If a category is empty, an age range is
                malformed or the count is out of range
        """
        missing = demographics.missing_categories()
        if missing:
            raise InvalidInputError(
                f"Missing required demographic categories: {', '.join(missing)}"
            )

        try:
            demographics.age_bounds()
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        if count is None:
            count = demographics.consumer_count or Config.DEFAULT_PROFILE_COUNT
        if count < 1 or count > Config.MAX_PROFILE_COUNT:
            raise InvalidInputError(
                f"Profile count must be between 1 and {Config.MAX_PROFILE_COUNT}, got {count}"
            )

        job_id = self._register(JobKind.PROFILES)
        token = self._tokens[job_id]
        self._schedule(job_id, self._run_profile_generation(job_id, demographics, count, token))
        logger.info(f"Submitted profile generation job {job_id} for {count} profiles")
        return job_id

    def submit_analysis(self, profiles: List[Persona], concepts: List[Concept]) -> str:
        """
        Start scoring every persona against every concept.

        Raises:
            InvalidInputError: If either list is empty
        """
        if not profiles:
            raise InvalidInputError("At least one profile is required")
        if not concepts:
            raise InvalidInputError("At least one concept is required")

        job_id = self._register(JobKind.ANALYSIS)
        token = self._tokens[job_id]
        self._schedule(job_id, self._run_analysis(job_id, list(profiles), list(concepts), token))
        logger.info(
            f"Submitted analysis job {job_id} for {len(profiles)} profiles x {len(concepts)} concepts"
        )
        return job_id

    def _new_job_id(self, kind: JobKind) -> str:
        while True:
            job_id = f"{JOB_ID_PREFIXES[kind]}_{int(self.clock() * 1000)}_{uuid.uuid4().hex[:9]}"
            if self.store.get(job_id) is None:
                return job_id

    def _register(self, kind: JobKind) -> str:
        job_id = self._new_job_id(kind)
        self.store.set(Job(id=job_id, kind=kind, created_at=self.clock()))
        self._tokens[job_id] = CancellationToken()
        return job_id

    def _schedule(self, job_id: str, coro) -> None:
        task = asyncio.create_task(coro, name=job_id)
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._forget(job_id))

    def _forget(self, job_id: str) -> None:
        self._tasks.pop(job_id, None)
        self._tokens.pop(job_id, None)

    # =========================================================================
    # Job bodies
    # =========================================================================

    async def _run_profile_generation(
        self,
        job_id: str,
        demographics: DemographicInput,
        count: int,
        token: CancellationToken
    ) -> None:
        with logfire.span("profile_generation_job", job_id=job_id, count=count):
            try:
                profiles = await self._generate_profiles(demographics, count, token)
                self._complete(job_id, ProfileSet(profiles=profiles, count=len(profiles)))
            except JobCancelledError as e:
                self._fail(job_id, str(e))
            except asyncio.CancelledError:
                self._fail(job_id, str(JobCancelledError()))
                raise
            except Exception as e:
                logger.error(f"Profile generation job {job_id} failed: {e}", exc_info=True)
                self._fail(job_id, str(e))

    async def _generate_profiles(
        self,
        demographics: DemographicInput,
        count: int,
        token: CancellationToken
    ) -> List[Persona]:
        if self.use_mock_data:
            return self.mock_service.generate_profiles(demographics, count)

        try:
            return await self.profile_orchestrator.generate(demographics, count, token)
        except GenerationFailedError as e:
            if not self.fallback_to_mock:
                raise
            logger.warning(f"{e}; falling back to mock profiles")
            return self.mock_service.generate_profiles(demographics, count)

    async def _run_analysis(
        self,
        job_id: str,
        profiles: List[Persona],
        concepts: List[Concept],
        token: CancellationToken
    ) -> None:
        with logfire.span("analysis_job", job_id=job_id, profiles=len(profiles), concepts=len(concepts)):
            try:
                result = await self._analyze(profiles, concepts, token)
                self._complete(job_id, result)
            except JobCancelledError as e:
                self._fail(job_id, str(e))
            except asyncio.CancelledError:
                self._fail(job_id, str(JobCancelledError()))
                raise
            except Exception as e:
                logger.error(f"Analysis job {job_id} failed: {e}", exc_info=True)
                self._fail(job_id, str(e))

    async def _analyze(
        self,
        profiles: List[Persona],
        concepts: List[Concept],
        token: CancellationToken
    ) -> AnalysisResult:
        use_mock = self.use_mock_data
        analyses = None

        if not use_mock:
            try:
                analyses = await self.analysis_orchestrator.analyze(profiles, concepts, token)
            except GenerationFailedError as e:
                if not self.fallback_to_mock:
                    raise
                logger.warning(f"{e}; falling back to mock analyses")
                use_mock = True

        if use_mock:
            analyses = self.mock_service.generate_analyses(profiles, concepts)
            insights = self.mock_service.generate_insights(profiles, concepts, analyses)
        else:
            token.raise_if_cancelled()
            insights = await self.analysis_orchestrator.generate_insights(profiles, concepts, analyses)

        summary = self.aggregation.summarize(concepts, analyses, insights)
        return AnalysisResult(analyses=analyses, summary=summary, total_analyses=len(analyses))

    def _complete(self, job_id: str, result) -> None:
        if not self.store.transition(job_id, JobStatus.COMPLETED, result=result):
            logger.info(f"Job {job_id} finished after eviction or cancellation; result discarded")
            return
        logger.info(f"Job {job_id} completed")

    def _fail(self, job_id: str, error: str) -> None:
        if self.store.transition(job_id, JobStatus.FAILED, error=error):
            logger.info(f"Job {job_id} failed: {error}")

    # =========================================================================
    # Polling and control
    # =========================================================================

    def poll(self, job_id: str, kind: Optional[JobKind] = None) -> JobStatusView:
        """
        Current status of a job.

        Args:
            job_id: Id returned at submission
            kind: If given, jobs of any other kind are treated as unknown

        Raises:
            JobNotFoundError: If the id is unknown or the job was evicted
        """
        job = self.store.get(job_id)
        if job is None or (kind is not None and job.kind != kind):
            raise JobNotFoundError(job_id)
        return JobStatusView.from_job(job)

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running job.

        The job stops at its next provider-call boundary and fails with
        "Job cancelled".

        Returns:
            False if the job already finished

        Raises:
            JobNotFoundError: If the id is unknown or the job was evicted
        """
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        token = self._tokens.get(job_id)
        if job.status != JobStatus.PROCESSING or token is None:
            return False

        token.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatusView:
        """
        Wait for a job to leave `processing`.

        Raises:
            JobNotFoundError: If the id is unknown or the job was evicted
            asyncio.TimeoutError: If `timeout` elapses first
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return self.poll(job_id)

    # =========================================================================
    # Expiry
    # =========================================================================

    def sweep(self) -> int:
        """Evict jobs older than the TTL and stop any still running; returns evictions."""
        evicted = self.store.sweep(self.ttl_seconds, now=self.clock())
        for job_id in evicted:
            token = self._tokens.get(job_id)
            if token is not None:
                token.cancel()
            task = self._tasks.get(job_id)
            if task is not None and not task.done():
                task.cancel()
        return len(evicted)

    async def run_sweeper(self, interval: Optional[float] = None) -> None:
        """Sweep forever at a fixed interval."""
        interval = interval or Config.JOB_SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Job sweep failed: {e}", exc_info=True)

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval), name="job_sweeper")

    async def shutdown(self) -> None:
        """Cancel the sweeper and every outstanding job task."""
        tasks = list(self._tasks.values())
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Job service stopped ({len(tasks)} tasks cancelled)")
