"""
Shared async HTTP plumbing for the Google REST APIs (Sheets, Gmail, OAuth).
One httpx client per service, retry with exponential backoff on 429/5xx and
transport errors, and a single place that turns Google error payloads into
exceptions.
"""

import asyncio

import httpx

from complaint_desk.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleAPIError(Exception):
    """Base exception for Google API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleHTTPService:
    """Base class: owns the client, the retry loop and response handling."""

    service_name = "google"
    error_class: type[GoogleAPIError] = GoogleAPIError
    error_messages: dict[str, str] = {}

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        f"{self.service_name} API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise self.error_class(
                        f"{self.service_name} API unreachable: {e}", error_code="network"
                    ) from e
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    f"{self.service_name} API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError(f"{self.service_name} API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate an API response.

        Args:
            response: HTTP response
            operation: Operation name for logging

        Returns:
            dict: Parsed response data

        Raises:
            GoogleAPIError subclass: If the response carries an error
        """
        logger.debug(
            f"{self.service_name} API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(
                    f"Failed to parse {self.service_name} API {operation} response", error=str(e)
                )
                raise self.error_class(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"{self.service_name} API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise self.error_class(
                f"{self.service_name} API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        if not isinstance(error_data, dict):
            error_data = {}
        error_info = error_data.get("error", {})
        if isinstance(error_info, dict):
            error_code = str(error_info.get("code", response.status_code))
            error_message = error_info.get("message", f"Unknown {self.service_name} API error")
        else:
            # OAuth token endpoint: {"error": "invalid_grant", "error_description": ...}
            error_code = str(error_info)
            error_message = error_data.get("error_description", error_code)

        logger.error(
            f"{self.service_name} API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message[:200],
        )
        raise self.error_class(
            self.error_messages.get(error_code, f"{self.service_name} error: {error_message}"),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )
