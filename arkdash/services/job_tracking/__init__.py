"""Job tracking service module for long-running background jobs.

This module provides:
- JobPoller: Fallback status polling with step-count progress estimates
- reconcile: Pure merge of push and poll reports into one value
- JobTracker: Wires both channels together and fires terminal notifications
"""

from arkdash.services.job_tracking.poller import (
    RUNNING_PROGRESS_CEILING,
    JobPoller,
    estimate_progress,
)
from arkdash.services.job_tracking.reconciler import reconcile
from arkdash.services.job_tracking.tracker import (
    JobNotifier,
    JobTracker,
    LoggingNotifier,
    get_job_tracker,
)

__all__ = [
    "RUNNING_PROGRESS_CEILING",
    "JobNotifier",
    "JobPoller",
    "JobTracker",
    "LoggingNotifier",
    "estimate_progress",
    "get_job_tracker",
    "reconcile",
]
