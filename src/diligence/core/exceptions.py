"""Exception hierarchy for the diligence research core.

All diligence exceptions inherit from DiligenceError, enabling callers
to catch broad (DiligenceError) or narrow (e.g., AlreadyExistsError).
Provider failures are never raised through this hierarchy; they are
classified and absorbed by the failure handler instead.
"""

from __future__ import annotations


class DiligenceError(Exception):
    """Base exception for all diligence errors."""


class StateError(DiligenceError):
    """Raised for operations that are not valid in the current state.

    Always surfaced to the caller and never retried.
    """


class InvalidStateError(StateError):
    """Raised on an illegal job or iteration transition.

    Examples: starting an iteration on a cancelled job, cancelling a job
    that already completed, completing an iteration twice.
    """


class JobNotFoundError(StateError):
    """Raised when a job id is unknown to the state backend."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class IterationNotFoundError(StateError):
    """Raised when an iteration number does not exist on a job."""

    def __init__(self, job_id: str, iteration_number: int) -> None:
        super().__init__(f"Iteration {iteration_number} not found on job {job_id}")
        self.job_id = job_id
        self.iteration_number = iteration_number


class InsufficientDataError(StateError):
    """Raised when consolidation is requested with fewer than two completed iterations."""

    def __init__(self, job_id: str, completed: int, required: int) -> None:
        super().__init__(
            f"Job {job_id} has {completed} completed iteration(s); "
            f"consolidation needs at least {required}"
        )
        self.job_id = job_id
        self.completed = completed
        self.required = required


class AlreadyExistsError(StateError):
    """Raised when a consolidation exists and the caller did not pass force=True."""


class ConflictError(DiligenceError):
    """Raised when concurrent operations collide.

    The caller should retry the whole operation.
    """


class ConsolidationConflictError(ConflictError):
    """Raised when a consolidation is already in flight for the same job."""


class DuplicateIterationError(ConflictError):
    """Raised when an iteration number would be assigned twice on one job."""


__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "ConsolidationConflictError",
    "DiligenceError",
    "DuplicateIterationError",
    "InsufficientDataError",
    "InvalidStateError",
    "IterationNotFoundError",
    "JobNotFoundError",
    "StateError",
]
