"""Tests for diligence.state.machine module."""

import asyncio

import pytest

from diligence.core.config import JobDefaultsConfig
from diligence.core.errors import ErrorCategory
from diligence.core.exceptions import (
    DuplicateIterationError,
    InvalidStateError,
    IterationNotFoundError,
    JobNotFoundError,
)
from diligence.core.models import (
    IterationStatus,
    JobStatus,
    JobType,
    LegalFindings,
    ResearchJob,
)
from diligence.state import InMemoryStateBackend, JobStateMachine
from tests.helpers import legal_findings, make_finding


@pytest.fixture
def machine() -> JobStateMachine:
    return JobStateMachine()


async def _complete(machine, job_id, confidence=0.7, completeness=60.0, findings=None):
    number = await machine.start_iteration(job_id)
    return await machine.complete_iteration(
        job_id, number, findings or legal_findings(), confidence, completeness
    )


class TestStartJob:
    """Tests for job creation."""

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, machine):
        job_id = await machine.start_job("legal_research", "  Acme Pvt Ltd ", user_id="u1")
        job = await machine.get_job(job_id)

        assert job.status == JobStatus.PENDING
        assert job.job_type == JobType.LEGAL_RESEARCH
        assert job.company_name == "Acme Pvt Ltd"
        assert job.progress == 0
        assert job.max_iterations == 3

    @pytest.mark.asyncio
    async def test_defaults_from_config(self):
        machine = JobStateMachine(defaults=JobDefaultsConfig(max_iterations=5))
        job_id = await machine.start_job(JobType.NEGATIVE_NEWS, "Acme Pvt Ltd")

        assert (await machine.get_job(job_id)).max_iterations == 5

    @pytest.mark.asyncio
    async def test_blank_company_rejected(self, machine):
        with pytest.raises(ValueError, match="company_name"):
            await machine.start_job("legal_research", "   ")

    @pytest.mark.asyncio
    async def test_unknown_job_type_rejected(self, machine):
        with pytest.raises(ValueError):
            await machine.start_job("astrology", "Acme Pvt Ltd")

    @pytest.mark.asyncio
    async def test_unknown_job(self, machine):
        with pytest.raises(JobNotFoundError):
            await machine.get_job("missing")


class TestIterations:
    """Tests for iteration numbering and completion."""

    @pytest.mark.asyncio
    async def test_first_iteration_starts_job(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        number = await machine.start_iteration(job_id)
        job = await machine.get_job(job_id)

        assert number == 1
        assert job.status == JobStatus.RUNNING
        assert job.started_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_starts_get_distinct_numbers(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=10)

        numbers = await asyncio.gather(*(machine.start_iteration(job_id) for _ in range(8)))

        assert sorted(numbers) == list(range(1, 9))
        job = await machine.get_job(job_id)
        assert len(job.iterations) == 8

    @pytest.mark.asyncio
    async def test_numbers_never_reused_after_failure(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        first = await machine.start_iteration(job_id)
        await machine.fail_iteration(job_id, first, "rate limit exceeded")

        assert await machine.start_iteration(job_id) == 2

    @pytest.mark.asyncio
    async def test_stale_iteration_counter_rejected(self):
        backend = InMemoryStateBackend()
        machine = JobStateMachine(backend)
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        await machine.start_iteration(job_id)
        stored = await backend.load(job_id)
        stored.last_iteration_number = 0
        await backend.save(stored)

        with pytest.raises(DuplicateIterationError):
            await machine.start_iteration(job_id)

        assert [i.iteration_number for i in (await machine.get_job(job_id)).iterations] == [1]

    @pytest.mark.asyncio
    async def test_complete_iteration_records_scores(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        job = await _complete(machine, job_id, confidence=0.8, completeness=75)
        iteration = job.get_iteration(1)

        assert iteration.status == IterationStatus.COMPLETED
        assert iteration.confidence_score == 0.8
        assert iteration.data_completeness_score == 75
        assert iteration.completed_at is not None

    @pytest.mark.asyncio
    async def test_dict_findings_take_job_type(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        number = await machine.start_iteration(job_id)
        job = await machine.complete_iteration(
            job_id, number, {"litigation": [{"title": "Pending suit"}]}, 0.5, 50
        )

        findings = job.get_iteration(number).findings
        assert isinstance(findings, LegalFindings)
        assert findings.litigation[0].title == "Pending suit"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("confidence", "completeness"), [(1.5, 50), (-0.1, 50), (0.5, 101)])
    async def test_scores_out_of_range(self, machine, confidence, completeness):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        number = await machine.start_iteration(job_id)

        with pytest.raises(ValueError):
            await machine.complete_iteration(job_id, number, None, confidence, completeness)

    @pytest.mark.asyncio
    async def test_complete_twice_rejected(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        await _complete(machine, job_id)

        with pytest.raises(InvalidStateError):
            await machine.complete_iteration(job_id, 1, None, 0.5, 50)

    @pytest.mark.asyncio
    async def test_unknown_iteration(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")

        with pytest.raises(IterationNotFoundError):
            await machine.complete_iteration(job_id, 7, None, 0.5, 50)

    @pytest.mark.asyncio
    async def test_high_severity_flags_attention(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        findings = legal_findings(
            litigation=[make_finding("Criminal complaint filed", severity="critical")]
        )
        job = await _complete(machine, job_id, findings=findings)

        assert job.requires_attention


class TestProgress:
    """Progress is monotonic, capped at 99 while running, and 100 on completion."""

    @pytest.mark.asyncio
    async def test_progress_tracks_completed_share(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=4)

        job = await _complete(machine, job_id)
        assert job.progress == 25
        job = await _complete(machine, job_id)
        assert job.progress == 50

    def test_progress_capped_below_completion(self):
        job = ResearchJob(
            job_id="job-1",
            company_name="Acme Pvt Ltd",
            job_type=JobType.LEGAL_RESEARCH,
            max_iterations=100,
        )
        for _ in range(99):
            job.mark_iteration_completed(job.mark_iteration_started(), None, 0.5, 50)

        assert job.status == JobStatus.RUNNING
        assert job.progress == 99

        job.mark_iteration_completed(job.mark_iteration_started(), None, 0.5, 50)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100

    @pytest.mark.asyncio
    async def test_failure_never_lowers_progress(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=3)
        await _complete(machine, job_id)
        number = await machine.start_iteration(job_id)
        job = await machine.fail_iteration(job_id, number, "Request timed out")

        assert job.progress == 33

    @pytest.mark.asyncio
    async def test_reaching_max_iterations_completes(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=2)
        await _complete(machine, job_id)
        job = await _complete(machine, job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.completed_at is not None


class TestFailures:
    """Tests for iteration failure and job exhaustion."""

    @pytest.mark.asyncio
    async def test_string_errors_are_classified(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        number = await machine.start_iteration(job_id)
        job = await machine.fail_iteration(job_id, number, "429 Too Many Requests")
        iteration = job.get_iteration(number)

        assert iteration.status == IterationStatus.FAILED
        assert iteration.error.category == ErrorCategory.RATE_LIMIT
        assert iteration.error.context["company_name"] == "Acme Pvt Ltd"
        assert job.status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_exhaustion_fails_job(self, machine):
        job_id = await machine.start_job(
            "legal_research", "Acme Pvt Ltd", max_failed_iterations=2
        )
        for _ in range(2):
            number = await machine.start_iteration(job_id)
            job = await machine.fail_iteration(job_id, number, ConnectionError("reset"))

        assert job.status == JobStatus.FAILED
        assert "No successful iterations after 2 failed attempt(s)" in job.error_message

    @pytest.mark.asyncio
    async def test_completed_iteration_prevents_exhaustion(self, machine):
        job_id = await machine.start_job(
            "legal_research", "Acme Pvt Ltd", max_iterations=5, max_failed_iterations=2
        )
        await _complete(machine, job_id)
        for _ in range(3):
            number = await machine.start_iteration(job_id)
            job = await machine.fail_iteration(job_id, number, "Request timed out")

        assert job.status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_fail_job(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        job = await machine.fail_job(job_id, "Provider credentials revoked")

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Provider credentials revoked"


class TestTerminalStates:
    """Terminal jobs accept no further transitions."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        await machine.start_iteration(job_id)

        job = await machine.cancel_job(job_id)

        assert job.status == JobStatus.CANCELLED
        assert job.get_iteration(1).status == IterationStatus.FAILED
        assert job.get_iteration(1).completed_at is not None
        assert job.get_iteration(1).error.category == ErrorCategory.UNKNOWN
        assert not job.running_iterations()

    @pytest.mark.asyncio
    async def test_no_iteration_after_cancel(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        await machine.cancel_job(job_id)

        with pytest.raises(InvalidStateError, match="already terminal"):
            await machine.start_iteration(job_id)

    @pytest.mark.asyncio
    async def test_cannot_cancel_completed_job(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=1)
        await _complete(machine, job_id)

        with pytest.raises(InvalidStateError):
            await machine.cancel_job(job_id)

    @pytest.mark.asyncio
    async def test_in_flight_iteration_rejected_after_cancel(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        number = await machine.start_iteration(job_id)
        await machine.cancel_job(job_id)

        with pytest.raises(InvalidStateError):
            await machine.complete_iteration(job_id, number, None, 0.5, 50)

    @pytest.mark.asyncio
    async def test_complete_job_needs_a_completed_iteration(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        await machine.start_iteration(job_id)

        with pytest.raises(InvalidStateError, match="no iteration has completed"):
            await machine.complete_job(job_id)

    @pytest.mark.asyncio
    async def test_complete_job_early(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=5)
        await _complete(machine, job_id)

        job = await machine.complete_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100

    @pytest.mark.asyncio
    async def test_complete_job_early_closes_running_iteration(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=5)
        await _complete(machine, job_id)
        await machine.start_iteration(job_id)

        job = await machine.complete_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.get_iteration(1).status == IterationStatus.COMPLETED
        assert job.get_iteration(2).status == IterationStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_racing_completion_resolves_once(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd", max_iterations=1)
        number = await machine.start_iteration(job_id)

        results = await asyncio.gather(
            machine.cancel_job(job_id),
            machine.complete_iteration(job_id, number, None, 0.5, 50),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, BaseException)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateError)
        job = await machine.get_job(job_id)
        assert job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED)


class TestReads:
    """Tests for listing and snapshots."""

    @pytest.mark.asyncio
    async def test_list_jobs_filters(self, machine):
        first = await machine.start_job("legal_research", "Acme Pvt Ltd", user_id="u1")
        second = await machine.start_job("negative_news", "Beta Ltd", user_id="u2")
        await machine.cancel_job(second)

        assert [j.job_id for j in await machine.list_jobs(user_id="u1")] == [first]
        cancelled = await machine.list_jobs(status=JobStatus.CANCELLED)
        assert [j.job_id for j in cancelled] == [second]
        assert len(await machine.list_jobs()) == 2

    @pytest.mark.asyncio
    async def test_snapshots_are_detached(self, machine):
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")
        job = await machine.get_job(job_id)
        job.status = JobStatus.CANCELLED

        assert (await machine.get_job(job_id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_backend_delete(self):
        backend = InMemoryStateBackend()
        machine = JobStateMachine(backend)
        job_id = await machine.start_job("legal_research", "Acme Pvt Ltd")

        assert await backend.delete(job_id)
        assert not await backend.delete(job_id)
        with pytest.raises(JobNotFoundError):
            await machine.get_job(job_id)
