# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""REST API client for the Postforge server."""
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, NoReturn

import httpx

from postforge.core.types import Category, DeployAction, ReviewAction, Template
from postforge.server.models.requests import (
    CreateJobRequest,
    DeployRequest,
    EditContentRequest,
    ReviewRequest,
)
from postforge.server.models.responses import (
    ActionResponse,
    CreateJobResponse,
    CronRunResponse,
    JobDetailResponse,
    JobListResponse,
)


DEFAULT_BASE_URL = "http://127.0.0.1:8430"


class PostforgeClientError(Exception):
    """Base exception for API client errors."""

    pass


class ServerUnreachableError(PostforgeClientError):
    """Raised when server cannot be reached."""

    pass


class JobNotFoundError(PostforgeClientError):
    """Raised when a job is not found (404)."""

    pass


class InvalidRequestError(PostforgeClientError):
    """Raised when request validation fails or the job is in the wrong state (400/422)."""

    pass


class UnauthorizedError(PostforgeClientError):
    """Raised when the cron secret is missing or wrong (401)."""

    pass


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


def _raise_for_error(response: httpx.Response, job_id: str | None = None) -> NoReturn:
    """Convert an error response into a client exception.

    Raises:
        JobNotFoundError: On 404.
        UnauthorizedError: On 401.
        InvalidRequestError: On 400/422.
        httpx.HTTPStatusError: For other non-2xx status codes.
    """
    if response.status_code == 404:
        raise JobNotFoundError(f"Job {job_id} not found" if job_id else _error_message(response))
    if response.status_code == 401:
        raise UnauthorizedError("Unauthorized: check POSTFORGE_CRON_SECRET")
    if response.status_code in (400, 422):
        raise InvalidRequestError(_error_message(response))
    response.raise_for_status()
    raise PostforgeClientError(f"Unexpected response: HTTP {response.status_code}")


class PostforgeClient:
    """HTTP client for the Postforge REST API.

    Example:
        >>> client = PostforgeClient()
        >>> job = await client.create_job("Python asyncio")
        >>> await client.submit_review(job.id, ReviewAction.APPROVE)
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL):
        """Initialize API client.

        Args:
            base_url: Base URL of the Postforge server.
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(30.0, connect=5.0)

    @asynccontextmanager
    async def _http_client(
        self, timeout: httpx.Timeout | None = None
    ) -> AsyncIterator[httpx.AsyncClient]:
        """Context manager for HTTP client with connection error handling.

        Yields:
            Configured httpx.AsyncClient instance.

        Raises:
            ServerUnreachableError: If server cannot be reached.
        """
        try:
            async with httpx.AsyncClient(timeout=timeout or self._timeout) as client:
                yield client
        except httpx.ConnectError as e:
            raise ServerUnreachableError(
                f"Cannot connect to Postforge server at {self.base_url}. "
                f"Is the server running? Try: postforge server"
            ) from e

    async def create_job(
        self,
        topic: str,
        category: Category = Category.TECH,
        template: Template | None = None,
        target_reader: str | None = None,
        keywords: list[str] | None = None,
    ) -> CreateJobResponse:
        """Create a job and start it.

        Args:
            topic: Post topic.
            category: Post category.
            template: Post template.
            target_reader: Optional audience hint.
            keywords: Optional keywords.

        Returns:
            CreateJobResponse with the job id and stream URL.

        Raises:
            InvalidRequestError: If request validation fails.
            ServerUnreachableError: If server is not running.
        """
        request = CreateJobRequest(
            topic=topic,
            category=category,
            template=template,
            target_reader=target_reader,
            keywords=keywords or [],
        )

        async with self._http_client() as client:
            response = await client.post(
                f"{self.base_url}/api/jobs",
                json=request.model_dump(mode="json", exclude_none=True),
            )

            if response.status_code in (200, 201):
                return CreateJobResponse.model_validate(response.json())
            _raise_for_error(response)

    async def get_job(self, job_id: str) -> JobDetailResponse:
        """Get a job with its progress log.

        Raises:
            JobNotFoundError: If job doesn't exist.
            ServerUnreachableError: If server is not running.
        """
        async with self._http_client() as client:
            response = await client.get(f"{self.base_url}/api/jobs/{job_id}")

            if response.status_code == 200:
                return JobDetailResponse.model_validate(response.json())
            _raise_for_error(response, job_id)

    async def list_jobs(
        self,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobListResponse:
        """List jobs newest first.

        Args:
            status: Optional status filter.
            page: 1-based page number.
            limit: Page size.

        Raises:
            ServerUnreachableError: If server is not running.
        """
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status

        async with self._http_client() as client:
            response = await client.get(f"{self.base_url}/api/jobs", params=params)

            if response.status_code == 200:
                return JobListResponse.model_validate(response.json())
            _raise_for_error(response)

    async def submit_review(
        self,
        job_id: str,
        action: ReviewAction,
        feedback: str | None = None,
    ) -> ActionResponse:
        """Submit a human review decision.

        Raises:
            JobNotFoundError: If job doesn't exist.
            InvalidRequestError: If the job is not awaiting review or feedback is missing.
            ServerUnreachableError: If server is not running.
        """
        request = ReviewRequest(action=action, feedback=feedback)

        async with self._http_client() as client:
            response = await client.post(
                f"{self.base_url}/api/jobs/{job_id}/review",
                json=request.model_dump(mode="json", exclude_none=True),
            )

            if response.status_code == 200:
                return ActionResponse.model_validate(response.json())
            _raise_for_error(response, job_id)

    async def edit_content(
        self,
        job_id: str,
        final_content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ActionResponse:
        """Replace the final content of a job awaiting review.

        Raises:
            JobNotFoundError: If job doesn't exist.
            InvalidRequestError: If the job is not awaiting review or the content is blank.
            ServerUnreachableError: If server is not running.
        """
        request = EditContentRequest(final_content=final_content, metadata=metadata)

        async with self._http_client() as client:
            response = await client.patch(
                f"{self.base_url}/api/jobs/{job_id}/content",
                json=request.model_dump(mode="json", exclude_none=True),
            )

            if response.status_code == 200:
                return ActionResponse.model_validate(response.json())
            _raise_for_error(response, job_id)

    async def decide_deploy(self, job_id: str, action: DeployAction) -> ActionResponse:
        """Approve or reject deploying a job.

        Raises:
            JobNotFoundError: If job doesn't exist.
            InvalidRequestError: If the job is not pending deploy.
            ServerUnreachableError: If server is not running.
        """
        request = DeployRequest(action=action)

        async with self._http_client() as client:
            response = await client.post(
                f"{self.base_url}/api/jobs/{job_id}/deploy",
                json=request.model_dump(mode="json"),
            )

            if response.status_code == 200:
                return ActionResponse.model_validate(response.json())
            _raise_for_error(response, job_id)

    async def trigger_cron(self, secret: str | None = None) -> CronRunResponse:
        """Run every due schedule once.

        Args:
            secret: Cron secret sent as a bearer token.

        Raises:
            UnauthorizedError: If the secret is missing or wrong.
            ServerUnreachableError: If server is not running.
        """
        headers = {"Authorization": f"Bearer {secret}"} if secret else {}

        async with self._http_client() as client:
            response = await client.post(f"{self.base_url}/api/cron", headers=headers)

            if response.status_code == 200:
                return CronRunResponse.model_validate(response.json())
            _raise_for_error(response)

    async def stream_job(self, job_id: str) -> AsyncIterator[dict[str, Any]]:
        """Follow a job's Server-Sent Events until the server closes the stream.

        Yields:
            Decoded event payloads (camelCase keys, ``type`` discriminator).

        Raises:
            JobNotFoundError: If job doesn't exist.
            ServerUnreachableError: If server is not running.
        """
        timeout = httpx.Timeout(30.0, connect=5.0, read=None)
        async with (
            self._http_client(timeout) as client,
            client.stream("GET", f"{self.base_url}/api/jobs/{job_id}/stream") as response,
        ):
            if response.status_code != 200:
                await response.aread()
                _raise_for_error(response, job_id)
            async for line in response.aiter_lines():
                if line.startswith("data: "):
                    yield json.loads(line[len("data: ") :])
