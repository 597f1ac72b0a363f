"""Custom exception classes for the dashboard client.

Transport-level errors (connection, probe, protocol, poll) are delivered to
error listeners rather than raised out of the public subscribe/poll APIs.
JobFailedError is the one class surfaced to the end user.
"""

from typing import Any


class ArkDashError(Exception):
    """Base client exception with a machine-readable code."""

    def __init__(
        self,
        message: str,
        code: str = "ARKDASH_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for logs and listeners."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# =============================================================================
# Push Channel Errors
# =============================================================================


class ChannelConnectionError(ArkDashError):
    """Handshake or transport failure on the push channel."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        code: str = "CONNECTION_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"endpoint": endpoint} if endpoint else None,
        )


class ReconnectExhaustedError(ChannelConnectionError):
    """Raised when the reconnect ceiling is reached without success."""

    def __init__(self, attempts: int, endpoint: str | None = None) -> None:
        self.attempts = attempts
        super().__init__(
            f"Gave up reconnecting after {attempts} attempts",
            endpoint=endpoint,
            code="RECONNECT_EXHAUSTED",
        )


class ProbeUnavailableError(ArkDashError):
    """Pre-connect reachability probe failed; push is skipped."""

    def __init__(self, endpoint: str, reason: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(
            f"Backend at {endpoint} is not reachable{': ' + reason if reason else ''}",
            code="PROBE_UNAVAILABLE",
            details={"endpoint": endpoint},
        )


class ProtocolError(ArkDashError):
    """A push message could not be translated into its typed shape."""

    def __init__(self, event: str, reason: str) -> None:
        self.event = event
        super().__init__(
            f"Malformed '{event}' message: {reason}",
            code="PROTOCOL_ERROR",
            details={"event": event},
        )


# =============================================================================
# HTTP / Polling Errors
# =============================================================================


class ApiError(ArkDashError):
    """HTTP API request failed or was refused by the backend."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(
            message,
            code="API_ERROR",
            details={"status_code": status_code} if status_code else None,
        )


class PollError(ArkDashError):
    """A single poll cycle failed. The loop continues."""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        super().__init__(
            f"Polling job {job_id} failed: {reason}",
            code="POLL_ERROR",
            details={"job_id": job_id},
        )


# =============================================================================
# Job Errors
# =============================================================================


class JobFailedError(ArkDashError):
    """The server reported a terminal failure for a job."""

    def __init__(self, job_id: str, error: str | None = None, status: str = "failed") -> None:
        self.job_id = job_id
        self.error = error
        self.status = status
        super().__init__(
            f"Job {job_id} {status}: {error or 'Unknown error'}",
            code="JOB_FAILED",
            details={"job_id": job_id, "status": status},
        )


class StaleReportDiscarded(ArkDashError):
    """Internal: a progress report was dropped by reconciliation."""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(
            f"Discarded report for job {job_id}: {reason}",
            code="STALE_REPORT",
            details={"job_id": job_id},
        )
