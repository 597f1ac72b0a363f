"""Async HTTP client for the dashboard backend.

Only the endpoints the job-tracking core consumes live here:

- POST /jobs            start a background job
- GET  /jobs/{jobId}    poll job status
- GET  /health          reachability probe
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from arkdash.core.config import get_settings
from arkdash.core.exceptions import ApiError
from arkdash.core.logging import get_logger
from arkdash.models.job import JobId, JobStartResponse, JobStatusResponse, JobType

logger = get_logger(__name__)


class ArkApiClient:
    """Thin async wrapper around the backend REST API.

    Example:
        >>> async with ArkApiClient("http://localhost:4000", token) as api:
        ...     started = await api.start_job(JobType.CLUSTER_CREATE, config)
        ...     status = await api.get_job_status(started.job_id)
    """

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.auth_token = settings.auth_token if auth_token is None else auth_token
        self.timeout = timeout or settings.http_timeout
        self.jobs_path = settings.jobs_path
        self.health_path = settings.health_path
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ArkApiClient:
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating if necessary."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.auth_token:
                headers["Authorization"] = f"Bearer {self.auth_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Issue a request and decode the JSON body.

        Raises:
            ApiError: On transport failure, non-2xx status or a non-JSON body.
        """
        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", method=method, path=path, error=str(e))
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            logger.warning(
                "api_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ApiError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ApiError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise ApiError(f"{method} {path} returned an unexpected body")
        return body

    @staticmethod
    def _parse(model: type[BaseModel], body: dict[str, Any], path: str) -> Any:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise ApiError(f"{path} returned a malformed body: {e}") from e

    async def start_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
    ) -> JobStartResponse:
        """Start a background job.

        Args:
            job_type: Kind of job to start.
            payload: Job-specific configuration (e.g. cluster definition).

        Returns:
            Parsed start response; check `success` and `job_id`.
        """
        body = await self._request(
            "POST",
            self.jobs_path,
            json={"type": job_type.value, **payload},
        )
        result: JobStartResponse = self._parse(JobStartResponse, body, self.jobs_path)
        logger.info(
            "job_start_requested",
            job_type=job_type.value,
            job_id=result.job_id,
            success=result.success,
        )
        return result

    async def get_job_status(self, job_id: JobId) -> JobStatusResponse:
        """Query the status of a background job.

        Args:
            job_id: Identifier returned by start_job.

        Returns:
            Parsed status response.
        """
        path = f"{self.jobs_path}/{job_id}"
        body = await self._request("GET", path)
        return self._parse(JobStatusResponse, body, path)

    async def check_health(self, timeout: float | None = None) -> bool:
        """Lightweight reachability probe.

        Not an authentication check: any 2xx counts as reachable.

        Args:
            timeout: Override for the request timeout (seconds).

        Returns:
            True if /health answered successfully in time.
        """
        try:
            response = await self._get_client().get(
                self.health_path,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("health_probe_failed", base_url=self.base_url, error=str(e))
            return False
        return response.is_success
