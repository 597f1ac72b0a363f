"""Tests for the backend REST client."""

import json

import httpx
import pytest

from arkdash.api.client import ArkApiClient
from arkdash.core.exceptions import ApiError
from arkdash.models.job import JobStatus, JobType


def make_client(handler, token: str = "tok") -> ArkApiClient:
    return ArkApiClient(
        "http://backend.test",
        token,
        transport=httpx.MockTransport(handler),
    )


class TestStartJob:
    """Tests for POST /jobs."""

    @pytest.mark.asyncio
    async def test_posts_type_and_payload_with_bearer_token(self):
        """The job type is merged into the JSON body."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "jobId": "J1"})

        async with make_client(handler) as api:
            result = await api.start_job(JobType.CLUSTER_CREATE, {"name": "island"})

        assert result.success is True
        assert result.job_id == "J1"
        assert seen == {
            "method": "POST",
            "path": "/jobs",
            "auth": "Bearer tok",
            "body": {"type": "cluster-create", "name": "island"},
        }

    @pytest.mark.asyncio
    async def test_error_status_raises_api_error(self):
        """Non-2xx responses surface as ApiError with the status code."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Unauthorized"})

        async with make_client(handler) as api:
            with pytest.raises(ApiError) as exc_info:
                await api.start_job(JobType.CLUSTER_CREATE, {})

        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "API_ERROR"


class TestGetJobStatus:
    """Tests for GET /jobs/{jobId}."""

    @pytest.mark.asyncio
    async def test_parses_progress_log(self):
        """The progress log and status are parsed into a JobRecord."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/jobs/J1"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "job": {
                        "id": "J1",
                        "status": "running",
                        "progress": [
                            {"message": "Validating", "timestamp": "t1"},
                            {"message": "Creating directories", "timestamp": "t2"},
                        ],
                    },
                },
            )

        async with make_client(handler) as api:
            response = await api.get_job_status("J1")

        assert response.job.status is JobStatus.RUNNING
        assert [e.message for e in response.job.progress] == [
            "Validating",
            "Creating directories",
        ]

    @pytest.mark.asyncio
    async def test_numeric_progress_treated_as_empty_log(self):
        """Backends that report a bare percentage yield no step log."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"success": True, "job": {"id": "J1", "status": "completed", "progress": 100}},
            )

        async with make_client(handler) as api:
            response = await api.get_job_status("J1")

        assert response.job.progress == []
        assert response.job.status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        """An HTML error page is not mistaken for a status."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        async with make_client(handler) as api:
            with pytest.raises(ApiError):
                await api.get_job_status("J1")

    @pytest.mark.asyncio
    async def test_malformed_job_raises(self):
        """Schema violations are wrapped in ApiError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, "job": {"status": "running"}})

        async with make_client(handler) as api:
            with pytest.raises(ApiError):
                await api.get_job_status("J1")

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self):
        """Network errors are wrapped in ApiError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as api:
            with pytest.raises(ApiError):
                await api.get_job_status("J1")


class TestCheckHealth:
    """Tests for the reachability probe."""

    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/health"
            return httpx.Response(200, json={"status": "ok"})

        async with make_client(handler) as api:
            assert await api.check_health(timeout=5.0) is True

    @pytest.mark.asyncio
    async def test_timeout_is_unreachable(self):
        """A timed-out probe reports False instead of raising."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as api:
            assert await api.check_health(timeout=5.0) is False

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self):
        """Anonymous clients omit the Authorization header."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            return httpx.Response(204)

        async with make_client(handler, token="") as api:
            assert await api.check_health() is True
