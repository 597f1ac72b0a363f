"""Pydantic models module."""

from arkdash.models.job import (
    EXPECTED_STEPS,
    JobId,
    JobProgressEntry,
    JobRecord,
    JobStartResponse,
    JobStatus,
    JobStatusResponse,
    JobType,
    ProgressReport,
    ReconciledJob,
    ReportSource,
)
from arkdash.models.logs import LogLevel, LogMessage

__all__ = [
    # Job models
    "EXPECTED_STEPS",
    "JobId",
    "JobProgressEntry",
    "JobRecord",
    "JobStartResponse",
    "JobStatus",
    "JobStatusResponse",
    "JobType",
    "ProgressReport",
    "ReconciledJob",
    "ReportSource",
    # Log models
    "LogLevel",
    "LogMessage",
]
