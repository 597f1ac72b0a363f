"""Fallback polling loop for job status.

Derives job progress from the stateless GET /jobs/{jobId} query when push
delivery cannot be assumed reliable. The backend only returns an
append-only log of progress entries on this channel, so the percentage is
estimated from the entry count against the job type's expected step count.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from arkdash.api.client import ArkApiClient
from arkdash.core.config import get_settings
from arkdash.core.exceptions import ApiError, PollError
from arkdash.core.logging import get_logger
from arkdash.models.job import JobId, JobStatus, JobType, ProgressReport

logger = get_logger(__name__)

# Estimates never reach 100 before the server says the job is complete
RUNNING_PROGRESS_CEILING = 99

ReportCallback = Callable[[ProgressReport], None]


def estimate_progress(
    entry_count: int,
    status: JobStatus,
    last_known: int,
    expected_steps: int,
) -> int:
    """Heuristic progress percentage for a polled job.

    Args:
        entry_count: Progress entries the server has logged so far.
        status: Job status reported alongside the entries.
        last_known: Previous estimate for this job.
        expected_steps: Entries a complete run of this job type produces.

    Returns:
        100 when completed, ``last_known`` for failed/cancelled jobs,
        otherwise the completed-step ratio clamped to [0, 99].
    """
    if status is JobStatus.COMPLETED:
        return 100
    if status.is_terminal:
        return last_known
    if expected_steps <= 0:
        return min(last_known, RUNNING_PROGRESS_CEILING)

    steps = min(max(entry_count, 0), expected_steps)
    percent = round(steps / expected_steps * 100)
    return max(0, min(RUNNING_PROGRESS_CEILING, percent))


@dataclass
class _PollState:
    """Per-job polling state."""

    task: asyncio.Task | None
    expected_steps: int
    last_progress: int = 0
    last_message: str = ""


class JobPoller:
    """Timer-driven status queries, one asyncio task per job.

    Example:
        >>> poller = JobPoller(api)
        >>> poller.start_polling("J1", tracker_callback, interval=2.0)
        >>> poller.stop_polling("J1")
    """

    def __init__(
        self,
        api: ArkApiClient,
        *,
        interval: float | None = None,
        default_expected_steps: int | None = None,
    ) -> None:
        settings = get_settings()
        self._api = api
        self._interval = interval or settings.job_poll_interval
        self._default_steps = default_expected_steps or settings.job_default_expected_steps
        self._jobs: dict[JobId, _PollState] = {}

    @property
    def active_jobs(self) -> list[JobId]:
        return list(self._jobs)

    def is_polling(self, job_id: JobId) -> bool:
        return job_id in self._jobs

    def _expected_steps(self, job_type: JobType | None) -> int:
        if job_type is None:
            return self._default_steps
        return job_type.expected_steps

    def start_polling(
        self,
        job_id: JobId,
        on_report: ReportCallback,
        interval: float | None = None,
        *,
        job_type: JobType | None = None,
    ) -> None:
        """Begin querying the job's status every ``interval`` seconds.

        Restarting an already-polled job replaces its timer.
        """
        self.stop_polling(job_id)

        state = _PollState(task=None, expected_steps=self._expected_steps(job_type))
        self._jobs[job_id] = state
        state.task = asyncio.get_running_loop().create_task(
            self._poll_loop(job_id, state, on_report, interval or self._interval)
        )
        logger.debug(
            "job_polling_started",
            job_id=job_id,
            interval_seconds=interval or self._interval,
            expected_steps=state.expected_steps,
        )

    def stop_polling(self, job_id: JobId) -> bool:
        """Cancel the job's timer. Idempotent.

        Returns:
            True if a timer was running.
        """
        state = self._jobs.pop(job_id, None)
        if state is None:
            return False
        if state.task is not None:
            state.task.cancel()
        logger.debug("job_polling_stopped", job_id=job_id)
        return True

    def stop_all(self) -> None:
        """Cancel every poll timer."""
        for job_id in list(self._jobs):
            self.stop_polling(job_id)

    async def poll_once(self, job_id: JobId) -> ProgressReport:
        """Run a single status query and translate it into a report.

        Raises:
            PollError: If the query fails or the response has no job.
        """
        state = self._jobs.get(job_id) or _PollState(task=None, expected_steps=self._default_steps)

        try:
            response = await self._api.get_job_status(job_id)
        except ApiError as e:
            raise PollError(job_id, e.message) from e

        if not response.success or response.job is None:
            raise PollError(job_id, response.message or "response carried no job")

        job = response.job
        progress = estimate_progress(
            len(job.progress),
            job.status,
            state.last_progress,
            state.expected_steps,
        )
        if job.progress:
            message = job.progress[-1].message
        else:
            message = job.error or state.last_message

        state.last_progress = progress
        state.last_message = message

        return ProgressReport(
            job_id=job_id,
            status=job.status,
            progress=progress,
            message=message,
            error=job.error,
        )

    async def _poll_loop(
        self,
        job_id: JobId,
        state: _PollState,
        on_report: ReportCallback,
        interval: float,
    ) -> None:
        while True:
            await asyncio.sleep(interval)

            try:
                report = await self.poll_once(job_id)
            except PollError as e:
                logger.warning("job_poll_failed", job_id=job_id, error=e.message)
                continue
            except Exception:
                logger.warning("job_poll_failed", job_id=job_id, exc_info=True)
                continue

            # Stopped while the request was in flight
            if self._jobs.get(job_id) is not state:
                return

            logger.debug(
                "job_status_polled",
                job_id=job_id,
                status=report.status.value,
                progress=report.progress,
            )
            try:
                on_report(report)
            except Exception:
                logger.exception("job_report_handler_failed", job_id=job_id)
