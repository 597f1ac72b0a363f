"""Job progress models for background job tracking."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

JobId = str


class JobStatus(str, Enum):
    """Background job status.

    States:
    - RUNNING: Job accepted and making progress
    - COMPLETED: Job finished successfully
    - FAILED: Job failed on the server
    - CANCELLED: Job cancelled by user or system
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are valid."""
        return self is not JobStatus.RUNNING

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """Normalise a wire status. Pre-start states count as running."""
        if isinstance(value, JobStatus):
            return value
        text = str(value or "").strip().lower()
        if text in ("pending", "queued", "processing", "started", ""):
            return cls.RUNNING
        if text == "canceled":
            return cls.CANCELLED
        return cls(text)


class ReportSource(str, Enum):
    """Channel that produced a progress report."""

    PUSH = "push"
    POLL = "poll"


class JobType(str, Enum):
    """Type of background job started through the API."""

    CLUSTER_CREATE = "cluster-create"

    @property
    def expected_steps(self) -> int:
        """Progress entries the server logs for this job type."""
        return EXPECTED_STEPS[self]


# validation, directory creation, server installation, config creation, finalization
EXPECTED_STEPS: dict[JobType, int] = {
    JobType.CLUSTER_CREATE: 5,
}


def _coerce_progress(value: Any) -> int:
    """Round and clamp a wire progress value to 0..100."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"progress must be numeric, got {value!r}") from None
    return max(0, min(100, round(number)))


class ProgressReport(BaseModel):
    """A single progress observation from either channel."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: JobId = Field(..., alias="jobId", min_length=1)
    status: JobStatus = Field(default=JobStatus.RUNNING)
    progress: int = Field(default=0, ge=0, le=100)
    message: str = Field(default="")
    step: str | None = None
    error: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> JobStatus:
        return JobStatus.parse(value)

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> int:
        return _coerce_progress(value)

    @field_validator("message", mode="before")
    @classmethod
    def _default_message(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ReconciledJob(BaseModel):
    """The externally observed state of one tracked job.

    Produced only by the reconciliation function; immutable.
    """

    model_config = ConfigDict(frozen=True)

    job_id: JobId
    status: JobStatus = JobStatus.RUNNING
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    step: str | None = None
    error: str | None = None
    last_source: ReportSource | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a terminal status."""
        return self.status.is_terminal

    def same_value(self, other: "ReconciledJob") -> bool:
        """Compare observable fields, ignoring source and timestamp bookkeeping."""
        bookkeeping = {"last_source", "updated_at"}
        return self.model_dump(exclude=bookkeeping) == other.model_dump(exclude=bookkeeping)


# =============================================================================
# HTTP API shapes
# =============================================================================


class JobProgressEntry(BaseModel):
    """One step in the server's append-only progress log."""

    message: str = ""
    timestamp: str | None = None


class JobRecord(BaseModel):
    """Job as returned by the status endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    id: JobId
    status: JobStatus = JobStatus.RUNNING
    progress: list[JobProgressEntry] = Field(default_factory=list)
    error: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> JobStatus:
        return JobStatus.parse(value)

    @field_validator("progress", mode="before")
    @classmethod
    def _progress_log(cls, value: Any) -> list[Any]:
        # Mock backends report a bare percentage here; there is no step log then.
        if not isinstance(value, list):
            return []
        return value


class JobStatusResponse(BaseModel):
    """Response of GET /jobs/{jobId}."""

    success: bool = False
    job: JobRecord | None = None
    message: str | None = None


class JobStartResponse(BaseModel):
    """Response of POST /jobs."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    job_id: JobId | None = Field(default=None, alias="jobId")
    message: str | None = None
