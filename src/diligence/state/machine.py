"""Job and iteration state machine.

Owns every transition of a ResearchJob:

    pending ──start_iteration──▶ running ──(completed ≥ max_iterations)──▶ completed
       │                            │
       └──────cancel_job────────────┴──▶ cancelled
                                    └──(failed ≥ max_failed, none completed)──▶ failed

Each transition runs under the job's asyncio.Lock as load → mutate → save,
so concurrent starts never share an iteration number and a cancel racing a
completion resolves to whichever acquired the lock first. Terminal jobs
accept no further transitions, and iterations still running when a job
ends are closed as failed.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from diligence.core.config import JobDefaultsConfig
from diligence.core.errors import EnhancedError, ErrorClassifier, ErrorContext
from diligence.core.exceptions import (
    AlreadyExistsError,
    InvalidStateError,
    IterationNotFoundError,
    JobNotFoundError,
)
from diligence.core.logging import get_logger
from diligence.core.models import (
    ConsolidatedAnalysis,
    DataQualityReport,
    Iteration,
    JobStatus,
    JobType,
    ResearchJob,
    parse_findings,
)
from diligence.state.base import StateBackend
from diligence.state.memory import InMemoryStateBackend

_logger = get_logger("state_machine")


def _error_context(job: ResearchJob, iteration_number: int | None = None) -> ErrorContext:
    return ErrorContext(
        job_id=job.job_id,
        job_type=job.job_type.value,
        company_name=job.company_name,
        iteration=iteration_number,
        user_id=job.user_id,
    )


class JobStateMachine:
    """Serialised job and iteration transitions over a StateBackend.

    Args:
        backend: Storage for jobs; in-memory if omitted.
        defaults: Defaults for max_iterations and the exhaustion policy.
        classifier: Used to classify raw errors passed to fail_iteration().
    """

    def __init__(
        self,
        backend: StateBackend | None = None,
        defaults: JobDefaultsConfig | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.backend = backend if backend is not None else InMemoryStateBackend()
        self.defaults = defaults if defaults is not None else JobDefaultsConfig()
        self._classifier = classifier if classifier is not None else ErrorClassifier()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    async def _require(self, job_id: str) -> ResearchJob:
        job = await self.backend.load(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @asynccontextmanager
    async def _transaction(self, job_id: str) -> AsyncIterator[ResearchJob]:
        """Load a job under its lock and save it if the block succeeds."""
        async with self._lock_for(job_id):
            job = await self._require(job_id)
            yield job
            if job.is_terminal and job.running_iterations():
                self._close_running_iterations(job)
            await self.backend.save(job)

    def _close_running_iterations(self, job: ResearchJob) -> None:
        """Fail iterations still running when the job turned terminal."""
        error = self._classifier.classify(
            f"Job {job.status.value} while the iteration was still running",
            _error_context(job),
        )
        job.abandon_running_iterations(error)

    @staticmethod
    def _require_active(job: ResearchJob, action: str) -> None:
        if job.is_terminal:
            raise InvalidStateError(
                f"Cannot {action}: job {job.job_id} is already terminal ({job.status.value})"
            )

    @staticmethod
    def _require_running_iteration(job: ResearchJob, iteration_number: int) -> Iteration:
        iteration = job.get_iteration(iteration_number)
        if iteration is None:
            raise IterationNotFoundError(job.job_id, iteration_number)
        if iteration.is_finished:
            raise InvalidStateError(
                f"Iteration {iteration_number} of job {job.job_id} is already "
                f"{iteration.status.value}"
            )
        return iteration

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------

    async def start_job(
        self,
        job_type: JobType | str,
        company_name: str,
        user_id: str | None = None,
        max_iterations: int | None = None,
        max_failed_iterations: int | None = None,
    ) -> str:
        """Create a pending job and return its id.

        Raises:
            ValueError: If company_name is blank or job_type is unknown.
        """
        if not company_name.strip():
            raise ValueError("company_name must not be blank")

        job = ResearchJob(
            job_id=str(uuid.uuid4()),
            user_id=user_id,
            company_name=company_name.strip(),
            job_type=JobType(job_type),
            max_iterations=max_iterations or self.defaults.max_iterations,
            max_failed_iterations=(
                max_failed_iterations or self.defaults.max_failed_iterations
            ),
        )
        await self.backend.save(job)

        _logger.info(
            "job_started",
            job_id=job.job_id,
            job_type=job.job_type.value,
            company_name=job.company_name,
            max_iterations=job.max_iterations,
        )
        return job.job_id

    async def cancel_job(self, job_id: str) -> ResearchJob:
        """Cancel a pending or running job.

        Raises:
            InvalidStateError: If the job is already terminal.
        """
        async with self._transaction(job_id) as job:
            self._require_active(job, "cancel")
            job.mark_job_cancelled()
        return job.model_copy(deep=True)

    async def complete_job(self, job_id: str) -> ResearchJob:
        """Finish a job early with the iterations completed so far.

        Raises:
            InvalidStateError: If the job is terminal or has no completed iteration.
        """
        async with self._transaction(job_id) as job:
            self._require_active(job, "complete job")
            if not job.completed_iterations():
                raise InvalidStateError(
                    f"Cannot complete job {job_id}: no iteration has completed"
                )
            job.mark_job_completed()
        return job.model_copy(deep=True)

    async def fail_job(self, job_id: str, message: str) -> ResearchJob:
        """Fail a pending or running job outright."""
        async with self._transaction(job_id) as job:
            self._require_active(job, "fail job")
            job.mark_job_failed(message)
        return job.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Iterations
    # -------------------------------------------------------------------------

    async def start_iteration(self, job_id: str) -> int:
        """Allocate the next iteration number; moves pending jobs to running.

        Raises:
            InvalidStateError: If the job is terminal.
            DuplicateIterationError: If the stored counter is behind the
                iterations already on the job.
        """
        async with self._transaction(job_id) as job:
            self._require_active(job, "start iteration")
            iteration = job.mark_iteration_started()
        return iteration.iteration_number

    async def complete_iteration(
        self,
        job_id: str,
        iteration_number: int,
        findings: Any,
        confidence: float,
        completeness: float,
        quality_report: DataQualityReport | None = None,
    ) -> ResearchJob:
        """Record a finished iteration and advance progress.

        Args:
            job_id: Job the iteration belongs to.
            iteration_number: Number returned by start_iteration().
            findings: Findings model, a dict (job_type defaults to the
                job's), or None.
            confidence: Confidence score in [0, 1].
            completeness: Data completeness in [0, 100].
            quality_report: Optional quality report for the result.

        Raises:
            ValueError: If a score is out of range.
            InvalidStateError: If the job is terminal or the iteration finished.
            IterationNotFoundError: If the iteration does not exist.
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        if not 0.0 <= completeness <= 100.0:
            raise ValueError(f"completeness must be within [0, 100], got {completeness}")

        async with self._transaction(job_id) as job:
            self._require_active(job, "complete iteration")
            iteration = self._require_running_iteration(job, iteration_number)
            job.mark_iteration_completed(
                iteration,
                self._coerce_findings(job, findings),
                confidence,
                completeness,
                quality_report,
            )
        return job.model_copy(deep=True)

    async def fail_iteration(
        self,
        job_id: str,
        iteration_number: int,
        error: EnhancedError | BaseException | str,
    ) -> ResearchJob:
        """Record a failed iteration.

        Raw exceptions and messages are classified first. The job itself
        fails only when the exhaustion policy is met.
        """
        async with self._transaction(job_id) as job:
            self._require_active(job, "fail iteration")
            iteration = self._require_running_iteration(job, iteration_number)
            if not isinstance(error, EnhancedError):
                error = self._classifier.classify(error, _error_context(job, iteration_number))
            job.mark_iteration_failed(iteration, error)
        return job.model_copy(deep=True)

    @staticmethod
    def _coerce_findings(job: ResearchJob, findings: Any) -> Any:
        if findings is None or not isinstance(findings, dict):
            return findings
        return parse_findings({"job_type": job.job_type.value, **findings})

    # -------------------------------------------------------------------------
    # Consolidation write-back
    # -------------------------------------------------------------------------

    async def store_consolidation(
        self,
        job_id: str,
        analysis: ConsolidatedAnalysis,
        replace: bool = False,
    ) -> ResearchJob:
        """Write a consolidation onto a job in one step.

        Raises:
            AlreadyExistsError: If one exists and replace is False.
        """
        async with self._transaction(job_id) as job:
            if job.consolidation is not None and not replace:
                raise AlreadyExistsError(
                    f"Job {job_id} already has a consolidation; pass force=True to replace it"
                )
            job.set_consolidation(analysis)
        return job.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_job(self, job_id: str) -> ResearchJob:
        """Snapshot of a job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        return await self._require(job_id)

    async def completed_iterations(self, job_id: str) -> list[Iteration]:
        """Snapshot of a job's completed iterations, oldest first."""
        job = await self._require(job_id)
        return job.completed_iterations()

    async def list_jobs(
        self,
        user_id: str | None = None,
        status: JobStatus | None = None,
    ) -> list[ResearchJob]:
        """Jobs, newest first, optionally filtered by owner and status."""
        jobs = await self.backend.list_jobs()
        if user_id is not None:
            jobs = [j for j in jobs if j.user_id == user_id]
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)


__all__ = ["JobStateMachine"]
