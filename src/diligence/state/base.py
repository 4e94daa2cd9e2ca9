"""Abstract base for job state backends."""

from abc import ABC, abstractmethod

from diligence.core.models import ResearchJob


class StateBackend(ABC):
    """Abstract base class for research job storage.

    The host application supplies the real persistence engine; the state
    machine only needs these four operations.
    """

    @abstractmethod
    async def load(self, job_id: str) -> ResearchJob | None:
        """Load a job.

        Args:
            job_id: Unique job identifier

        Returns:
            ResearchJob if found, None otherwise
        """
        ...

    @abstractmethod
    async def save(self, job: ResearchJob) -> None:
        """Save a job, replacing any stored version.

        Args:
            job: Job state to persist
        """
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Delete a job.

        Args:
            job_id: Unique job identifier

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def list_jobs(self) -> list[ResearchJob]:
        """List all stored jobs.

        Returns:
            List of all research jobs
        """
        ...
