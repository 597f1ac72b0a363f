"""Services module - job tracking and log streaming."""

from arkdash.services.job_tracking import (
    JobNotifier,
    JobPoller,
    JobTracker,
    LoggingNotifier,
    get_job_tracker,
    reconcile,
)
from arkdash.services.log_stream import LogStreamService

__all__ = [
    # Job tracking
    "JobNotifier",
    "JobPoller",
    "JobTracker",
    "LoggingNotifier",
    "get_job_tracker",
    "reconcile",
    # Log streams
    "LogStreamService",
]
