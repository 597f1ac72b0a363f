"""Tests for the pure reconcile function."""

from datetime import UTC, datetime

import pytest

from arkdash.core.exceptions import StaleReportDiscarded
from arkdash.models.job import JobStatus, ProgressReport, ReconciledJob, ReportSource
from arkdash.services.job_tracking.reconciler import reconcile

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def report(progress: int = 0, status: str = "running", message: str = "", **kwargs):
    return ProgressReport(job_id="J1", status=status, progress=progress, message=message, **kwargs)


@pytest.fixture
def running():
    """A job at 40%."""
    return ReconciledJob(job_id="J1", progress=40, message="Installing servers")


class TestRunningReports:
    """Tests for non-terminal reports."""

    def test_higher_progress_adopted(self, running):
        """Forward progress replaces value and records the source."""
        result = reconcile(running, report(60, message="Writing config"), ReportSource.PUSH, NOW)

        assert result.progress == 60
        assert result.message == "Writing config"
        assert result.last_source is ReportSource.PUSH
        assert result.updated_at == NOW

    def test_empty_message_keeps_previous(self, running):
        """A report without a message does not blank the display."""
        result = reconcile(running, report(60), ReportSource.POLL, NOW)

        assert result.message == "Installing servers"

    def test_lower_progress_discarded(self, running):
        """Progress never moves backwards."""
        with pytest.raises(StaleReportDiscarded) as exc_info:
            reconcile(running, report(20, message="Installing servers"), ReportSource.POLL, NOW)

        assert exc_info.value.code == "STALE_REPORT"

    def test_lower_progress_with_new_message_only_touches_bookkeeping(self, running):
        """A lagging channel's new message refreshes source and time only."""
        result = reconcile(running, report(20, message="Validating"), ReportSource.POLL, NOW)

        assert result.progress == 40
        assert result.message == "Installing servers"
        assert result.last_source is ReportSource.POLL
        assert result.updated_at == NOW

    def test_idempotent(self, running):
        """Applying the same report twice yields the same value."""
        once = reconcile(running, report(60, message="x"), ReportSource.PUSH, NOW)
        twice = reconcile(once, report(60, message="x"), ReportSource.PUSH, NOW)

        assert twice == once

    def test_other_job_rejected(self, running):
        other = ProgressReport(job_id="J2", progress=90)

        with pytest.raises(StaleReportDiscarded):
            reconcile(running, other, ReportSource.PUSH, NOW)


class TestTerminalReports:
    """Tests for terminal transitions."""

    def test_completed_forces_100(self, running):
        result = reconcile(running, report(80, status="completed"), ReportSource.POLL, NOW)

        assert result.status is JobStatus.COMPLETED
        assert result.progress == 100

    def test_failed_keeps_highest_progress(self, running):
        """A failure report with lower progress does not roll back."""
        result = reconcile(
            running,
            report(0, status="failed", error="Disk full"),
            ReportSource.PUSH,
            NOW,
        )

        assert result.status is JobStatus.FAILED
        assert result.progress == 40
        assert result.error == "Disk full"

    def test_cancelled_is_terminal(self, running):
        result = reconcile(running, report(40, status="cancelled"), ReportSource.POLL, NOW)

        assert result.status is JobStatus.CANCELLED
        assert result.is_terminal

    def test_terminal_is_immutable(self, running):
        """Nothing changes a finished job."""
        done = reconcile(running, report(100, status="completed"), ReportSource.PUSH, NOW)

        with pytest.raises(StaleReportDiscarded):
            reconcile(done, report(100, status="failed"), ReportSource.POLL, NOW)
        with pytest.raises(StaleReportDiscarded):
            reconcile(done, report(100, status="completed"), ReportSource.POLL, NOW)

    @pytest.mark.parametrize(
        "first,second",
        [
            (ReportSource.PUSH, ReportSource.POLL),
            (ReportSource.POLL, ReportSource.PUSH),
        ],
    )
    def test_terminal_race_first_wins(self, running, first, second):
        """Whichever channel reports terminal first decides the outcome."""
        completed = report(100, status="completed", message="Cluster ready")
        failed = report(40, status="failed", error="timeout")

        result = reconcile(running, completed, first, NOW)
        with pytest.raises(StaleReportDiscarded):
            reconcile(result, failed, second, NOW)

        assert result.status is JobStatus.COMPLETED
        assert result.last_source is first

    def test_interleaved_channels_converge(self, running):
        """Push and poll interleavings end at the same value."""
        push = [report(60, message="a"), report(80, message="b")]
        poll = [report(40, message="Installing servers"), report(60, message="a")]

        def apply(sequence):
            job = running
            for source, item in sequence:
                try:
                    job = reconcile(job, item, source, NOW)
                except StaleReportDiscarded:
                    pass
            return job

        a = apply(
            [(ReportSource.PUSH, r) for r in push] + [(ReportSource.POLL, r) for r in poll]
        )
        b = apply(
            [(ReportSource.POLL, r) for r in poll] + [(ReportSource.PUSH, r) for r in push]
        )

        assert a.progress == b.progress == 80
        assert a.message == b.message == "b"
