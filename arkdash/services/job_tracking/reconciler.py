"""Reconciliation of push and poll progress reports.

Both channels feed the same pure function, so the merged value does not
depend on which channel delivered a report:

1. Terminal jobs are immutable: any further report is discarded.
2. A terminal report is adopted whole (completed forces 100; failed and
   cancelled keep the highest progress seen).
3. A running report is adopted when its progress is not lower than the
   current value. A lower report only refreshes bookkeeping, and only
   when it carries a different message. Otherwise it is discarded.

Whichever channel reports the terminal state first wins.
"""

from datetime import UTC, datetime

from arkdash.core.exceptions import StaleReportDiscarded
from arkdash.models.job import (
    JobStatus,
    ProgressReport,
    ReconciledJob,
    ReportSource,
)


def reconcile(
    current: ReconciledJob,
    report: ProgressReport,
    source: ReportSource,
    now: datetime | None = None,
) -> ReconciledJob:
    """Merge one report into the current reconciled value.

    Args:
        current: Current value for the job.
        report: Incoming report from either channel.
        source: Channel that produced the report.
        now: Timestamp for bookkeeping (defaults to utcnow).

    Returns:
        The new reconciled value.

    Raises:
        StaleReportDiscarded: If the report must not change the value.
    """
    if report.job_id != current.job_id:
        raise StaleReportDiscarded(
            current.job_id, f"report addressed to job {report.job_id}"
        )

    if current.is_terminal:
        raise StaleReportDiscarded(
            current.job_id, f"job already {current.status.value}"
        )

    now = now or datetime.now(UTC)

    if report.status.is_terminal:
        if report.status is JobStatus.COMPLETED:
            progress = 100
        else:
            progress = max(current.progress, report.progress)
        return current.model_copy(
            update={
                "status": report.status,
                "progress": progress,
                "message": report.message or current.message,
                "step": report.step or current.step,
                "error": report.error,
                "last_source": source,
                "updated_at": now,
            }
        )

    if report.progress >= current.progress:
        return current.model_copy(
            update={
                "progress": report.progress,
                "message": report.message or current.message,
                "step": report.step or current.step,
                "last_source": source,
                "updated_at": now,
            }
        )

    if report.message and report.message != current.message:
        return current.model_copy(update={"last_source": source, "updated_at": now})

    raise StaleReportDiscarded(
        current.job_id,
        f"progress {report.progress} below current {current.progress}",
    )
