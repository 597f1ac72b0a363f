"""Job Tracker for long-running background jobs.

Follows one or more server-side jobs through two independent, unreliable
channels and exposes a single reconciled value per job:
- Push: the job-progress topic on the shared ChannelManager
- Poll: a JobPoller timer against GET /jobs/{jobId}

Once a job reaches a terminal status both channels are stopped in the same
tick and exactly one success/failure notification is fired.

If the push channel is degraded (probe failed) or drops mid-job, tracking
continues on polling alone. On reconnect the tracker re-subscribes the push
topic for every job that is still running.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache
from typing import Any, Protocol

import structlog

from arkdash.api.client import ArkApiClient
from arkdash.core.exceptions import ApiError, JobFailedError, StaleReportDiscarded
from arkdash.core.logging import get_logger
from arkdash.models.job import (
    JobId,
    JobStatus,
    JobType,
    ProgressReport,
    ReconciledJob,
    ReportSource,
)
from arkdash.realtime.channel_manager import (
    ChannelManager,
    ConnectionState,
    get_channel_manager,
)
from arkdash.realtime.topics import Topic, TopicMessage
from arkdash.services.job_tracking.poller import JobPoller
from arkdash.services.job_tracking.reconciler import reconcile

logger = get_logger(__name__)

# Finished jobs kept for get()/describe(); oldest dropped first
MAX_FINISHED_JOBS = 256

JobListener = Callable[[ReconciledJob], None]


# =============================================================================
# Terminal notifications
# =============================================================================


class JobNotifier(Protocol):
    """Receives the one terminal side effect per job."""

    def job_succeeded(self, job: ReconciledJob) -> None: ...

    def job_failed(self, job: ReconciledJob, error: JobFailedError) -> None: ...


class LoggingNotifier:
    """Default notifier: terminal outcomes go to the log."""

    def job_succeeded(self, job: ReconciledJob) -> None:
        logger.info("job_succeeded", job_id=job.job_id, message=job.message)

    def job_failed(self, job: ReconciledJob, error: JobFailedError) -> None:
        logger.error(
            "job_failed",
            job_id=job.job_id,
            status=job.status.value,
            error=error.error,
        )


# =============================================================================
# Tracker
# =============================================================================


class JobTracker:
    """Reconciles push and poll progress for tracked jobs.

    Example:
        >>> tracker = JobTracker(api, channel, notifier)
        >>> job = await tracker.start_job(JobType.CLUSTER_CREATE, cluster_config)
        >>> tracker.add_listener(render_progress)
        >>> tracker.describe(job.job_id)
        'Installing servers (40%)'
    """

    def __init__(
        self,
        api: ArkApiClient | None = None,
        channel: ChannelManager | None = None,
        notifier: JobNotifier | None = None,
        *,
        poller: JobPoller | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._api = api or ArkApiClient()
        self._channel = channel or get_channel_manager()
        self._notifier = notifier or LoggingNotifier()
        self._poller = poller or JobPoller(self._api, interval=poll_interval)
        self._jobs: dict[JobId, ReconciledJob] = {}
        self._finished: dict[JobId, ReconciledJob] = {}
        self._listeners: list[JobListener] = []
        self._channel.add_state_listener(self._on_connection_state)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def active_jobs(self) -> list[JobId]:
        return list(self._jobs)

    @property
    def poller(self) -> JobPoller:
        return self._poller

    def is_tracking(self, job_id: JobId) -> bool:
        return job_id in self._jobs

    def get(self, job_id: JobId) -> ReconciledJob | None:
        """Current value for an active job, or the final value of a finished one."""
        return self._jobs.get(job_id) or self._finished.get(job_id)

    def describe(self, job_id: JobId) -> str:
        """Human-readable progress line for the UI."""
        job = self.get(job_id)
        if job is None:
            return f"Job {job_id} is not tracked"
        if job.status is JobStatus.COMPLETED:
            return f"{job.message or 'Completed'} (100%)"
        if job.status is JobStatus.FAILED:
            return f"Failed: {job.error or job.message or 'Unknown error'}"
        if job.status is JobStatus.CANCELLED:
            return f"Cancelled{': ' + job.message if job.message else ''}"
        return f"{job.message or 'Working'} ({job.progress}%)"

    # =========================================================================
    # Observers
    # =========================================================================

    def add_listener(self, listener: JobListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: JobListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, job: ReconciledJob) -> None:
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception:
                logger.exception("job_listener_failed", job_id=job.job_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        *,
        poll_interval: float | None = None,
    ) -> ReconciledJob:
        """Start a job through the API and begin tracking it.

        Raises:
            ApiError: If the request fails or the backend refuses the job.
        """
        response = await self._api.start_job(job_type, payload)
        if not response.success or not response.job_id:
            raise ApiError(response.message or "Backend refused to start the job")
        return self.track(
            response.job_id,
            job_type=job_type,
            poll_interval=poll_interval,
            message=response.message or "",
        )

    def track(
        self,
        job_id: JobId,
        *,
        job_type: JobType | None = None,
        poll_interval: float | None = None,
        message: str = "",
    ) -> ReconciledJob:
        """Begin tracking a job on both channels.

        Tracking an already-tracked job returns its current value.
        """
        existing = self._jobs.get(job_id)
        if existing is not None:
            return existing

        self._finished.pop(job_id, None)
        job = ReconciledJob(job_id=job_id, message=message)
        self._jobs[job_id] = job

        pushed = self._subscribe(job_id)
        self._poller.start_polling(
            job_id,
            self._on_poll_report,
            poll_interval,
            job_type=job_type,
        )

        logger.info(
            "job_tracking_started",
            job_id=job_id,
            job_type=job_type.value if job_type else None,
            push=pushed,
            degraded=self._channel.degraded,
        )
        self._notify(job)
        return job

    def cancel(self, job_id: JobId) -> bool:
        """Stop tracking a job before it finishes.

        Both channels stop synchronously, so no late report can change it.

        Returns:
            True if the job was being tracked.
        """
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        self._stop_channels(job_id)
        logger.info("job_tracking_cancelled", job_id=job_id, progress=job.progress)
        return True

    def teardown(self) -> Any:
        """Stop every job, every timer and the push connection in one pass.

        Returns:
            The channel close task (see ChannelManager.disconnect).
        """
        for job_id in list(self._jobs):
            self.cancel(job_id)
        self._poller.stop_all()
        self._channel.remove_state_listener(self._on_connection_state)
        logger.info("job_tracker_teardown", finished=len(self._finished))
        self._finished.clear()
        return self._channel.disconnect()

    def _subscribe(self, job_id: JobId) -> bool:
        return self._channel.subscribe(Topic.job_progress(job_id), self._on_push_message)

    def _stop_channels(self, job_id: JobId) -> None:
        self._poller.stop_polling(job_id)
        self._channel.unsubscribe(Topic.job_progress(job_id))

    # =========================================================================
    # Report intake
    # =========================================================================

    def _on_push_message(self, message: TopicMessage) -> None:
        if isinstance(message, ProgressReport):
            self.apply_report(message, ReportSource.PUSH)

    def _on_poll_report(self, report: ProgressReport) -> None:
        self.apply_report(report, ReportSource.POLL)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is not ConnectionState.CONNECTED:
            return
        # A fresh socket knows nothing of earlier start signals
        resubscribed = [job_id for job_id in list(self._jobs) if self._subscribe(job_id)]
        if resubscribed:
            logger.info("job_topics_resubscribed", job_ids=resubscribed)

    def apply_report(
        self,
        report: ProgressReport,
        source: ReportSource,
    ) -> ReconciledJob | None:
        """Reconcile one report from either channel.

        Returns:
            The job's value after the report, or None if it is not tracked.
        """
        current = self._jobs.get(report.job_id)
        if current is None:
            logger.debug(
                "report_for_untracked_job",
                job_id=report.job_id,
                source=source.value,
            )
            return self._finished.get(report.job_id)

        with structlog.contextvars.bound_contextvars(job_id=report.job_id):
            try:
                updated = reconcile(current, report, source)
            except StaleReportDiscarded as e:
                logger.debug(
                    "stale_report_discarded",
                    source=source.value,
                    reason=e.reason,
                )
                return current

            if updated.is_terminal:
                self._finish(updated)
            else:
                self._jobs[report.job_id] = updated

            if not updated.same_value(current):
                self._notify(updated)

            if updated.is_terminal:
                self._fire_terminal(updated)

        return updated

    def _finish(self, job: ReconciledJob) -> None:
        self._jobs.pop(job.job_id, None)
        self._finished[job.job_id] = job
        while len(self._finished) > MAX_FINISHED_JOBS:
            del self._finished[next(iter(self._finished))]
        self._stop_channels(job.job_id)
        logger.info(
            "job_terminal",
            status=job.status.value,
            progress=job.progress,
            source=job.last_source.value if job.last_source else None,
        )

    def _fire_terminal(self, job: ReconciledJob) -> None:
        try:
            if job.status is JobStatus.COMPLETED:
                self._notifier.job_succeeded(job)
            else:
                self._notifier.job_failed(
                    job,
                    JobFailedError(job.job_id, job.error, status=job.status.value),
                )
        except Exception:
            logger.exception("terminal_notification_failed", job_id=job.job_id)


@lru_cache(maxsize=1)
def get_job_tracker() -> JobTracker:
    """Get the process-wide job tracker.

    Returns:
        JobTracker bound to the shared channel manager.
    """
    return JobTracker()
