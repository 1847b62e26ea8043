"""HTTP client for the external generation service."""

from typing import Any
from uuid import UUID

import httpx

from storyjobs.models.job import JobType
from storyjobs.services.exceptions import (
    GenerationAuthError,
    GenerationNetworkError,
    GenerationNotConfiguredError,
    GenerationRateLimitError,
    GenerationValidationError,
)


class GenerationClient:
    """Client that runs one unit of generation work per job.

    The service exposes one endpoint per job type: ``POST {base_url}/{type}``
    with ``{"job_id", "input_data"}`` and answers with the raw result object
    that the job type's formatter turns into ``result_data``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize generation client.

        Args:
            base_url: Service root (from GENERATION_SERVICE_URL env var)
            api_key: Bearer token (from GENERATION_API_KEY env var, optional)
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def generate(
        self, job_type: JobType, job_id: UUID, input_data: dict[str, Any]
    ) -> dict[str, Any]:
        """Run the generation for one job and return the service's result object.

        Args:
            job_type: Selects the service endpoint
            job_id: Sent along for idempotency and tracing on the service side
            input_data: Job payload, forwarded verbatim

        Returns:
            Result object as returned by the service

        Raises:
            TransientError: Network timeout, rate limit (429), service errors (5xx)
            PermanentError: Invalid API key (401), forbidden (403), other 4xx,
                malformed response, or service not configured
        """
        if not self.is_configured:
            raise GenerationNotConfiguredError(
                "Generation service is not configured. Set GENERATION_SERVICE_URL in .env file."
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/{job_type.value}",
                    headers=self.headers,
                    json={"job_id": str(job_id), "input_data": input_data},
                )

                # Error classification
                if response.status_code == 429:
                    raise GenerationRateLimitError(f"Rate limit exceeded: {response.text}")
                elif response.status_code >= 500:
                    raise GenerationNetworkError(
                        f"Service unavailable ({response.status_code}): {response.text}"
                    )
                elif response.status_code in (401, 403):
                    raise GenerationAuthError(
                        f"Access denied ({response.status_code}). "
                        "Check GENERATION_API_KEY configuration in .env file."
                    )
                elif response.status_code >= 400:
                    raise GenerationValidationError(
                        f"Request rejected ({response.status_code}): {response.text}"
                    )

                try:
                    result = response.json()
                except ValueError as e:
                    raise GenerationValidationError(f"Malformed response: {e}")

        except httpx.TimeoutException as e:
            raise GenerationNetworkError(f"Request timeout after {self.timeout}s: {str(e)}")
        except httpx.HTTPError as e:
            raise GenerationNetworkError(f"Network error: {str(e)}")

        if not isinstance(result, dict):
            raise GenerationValidationError(
                f"Malformed response: expected object, got {type(result).__name__}"
            )
        return result
