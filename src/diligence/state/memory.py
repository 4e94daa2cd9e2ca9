"""In-memory state backend.

Stores jobs in a dict without any I/O. Used by tests and by hosts that
embed the research core without their own persistence.
"""

from diligence.core.models import ResearchJob
from diligence.state.base import StateBackend


class InMemoryStateBackend(StateBackend):
    """In-memory state backend.

    Stores and returns deep copies, so callers can never mutate stored
    state without going through save().
    """

    def __init__(self) -> None:
        self.jobs: dict[str, ResearchJob] = {}

    async def load(self, job_id: str) -> ResearchJob | None:
        job = self.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def save(self, job: ResearchJob) -> None:
        self.jobs[job.job_id] = job.model_copy(deep=True)

    async def delete(self, job_id: str) -> bool:
        if job_id in self.jobs:
            del self.jobs[job_id]
            return True
        return False

    async def list_jobs(self) -> list[ResearchJob]:
        return [job.model_copy(deep=True) for job in self.jobs.values()]
