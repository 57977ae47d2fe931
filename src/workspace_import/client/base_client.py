"""Base HTTP client for external project-management APIs.

This module provides a base async HTTP client with connection pooling,
request-interval throttling, bounded retries, and structured logging.
"""

import asyncio
import time
from typing import Any
from urllib.parse import urljoin

import httpx

from workspace_import.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from workspace_import.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    truncate_payload,
)
from workspace_import.utils.retry import call_with_retry, retry_after_seconds

logger = get_logger(__name__)

_CLIENT_ERRORS: dict[int, tuple[type[APIError], str]] = {
    403: (AuthorizationError, "Authorization failed"),
    404: (NotFoundError, "Resource not found"),
}


class BaseAPIClient:
    """Base async HTTP client with throttling, retries and error mapping.

    This client provides:
    - Connection pooling
    - A minimum interval between two requests
    - Retries with exponential backoff for transient failures
    - Mapping of HTTP error statuses onto typed exceptions
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        verify_ssl: bool = True,
        timeout: int = 30,
        request_interval_ms: int = 200,
        max_connections: int | None = None,
        max_keepalive_connections: int | None = None,
        retry_attempts: int = 3,
        retry_backoff_min: float = 1.0,
        retry_backoff_max: float = 30.0,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Base URL for API requests
            token: Authentication token
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            request_interval_ms: Minimum interval between requests in milliseconds
            max_connections: Maximum number of connections in pool (default: 20)
            max_keepalive_connections: Maximum keep-alive connections (default: 10)
            retry_attempts: Total attempts for transient failures
            retry_backoff_min: Minimum backoff between attempts in seconds
            retry_backoff_max: Maximum backoff between attempts in seconds
            log_payloads: Enable response payload logging at DEBUG level
            max_payload_size: Maximum payload size (chars) to log before truncation
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify_ssl = verify_ssl

        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size

        self.retry_attempts = retry_attempts
        self.retry_backoff_min = retry_backoff_min
        self.retry_backoff_max = retry_backoff_max

        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0
        self._min_request_interval = request_interval_ms / 1000.0

        if max_connections is None:
            max_connections = 20
        if max_keepalive_connections is None:
            max_keepalive_connections = 10

        self.client = httpx.AsyncClient(
            headers=self._build_headers(),
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            verify=verify_ssl,
            follow_redirects=True,
            transport=transport,
        )

        logger.debug(
            "client_initialized",
            base_url=self.base_url,
            request_interval_ms=request_interval_ms,
            max_connections=max_connections,
        )

    def _build_headers(self) -> dict[str, str]:
        """Build HTTP headers for requests."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def _build_url(self, endpoint: str) -> str:
        endpoint = endpoint.lstrip("/")
        return urljoin(f"{self.base_url}/", endpoint)

    async def _rate_limit_wait(self) -> None:
        """Wait until the minimum request interval has elapsed."""
        if self._min_request_interval > 0:
            async with self._rate_limit_lock:
                now = time.monotonic()
                time_since_last = now - self._last_request_time

                if time_since_last < self._min_request_interval:
                    await asyncio.sleep(self._min_request_interval - time_since_last)

                self._last_request_time = time.monotonic()

    def _error_message(self, error_data: Any) -> str:
        """Extract a human-readable message from an error body.

        Subclasses override this for provider-specific error envelopes.
        """
        if isinstance(error_data, dict):
            return str(error_data.get("message", error_data.get("detail", "Unknown error")))
        return "Unknown error"

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the typed exception for an error response.

        Raises:
            AuthenticationError: For 401 responses
            AuthorizationError: For 403 responses
            NotFoundError: For 404 responses
            RateLimitError: For 429 responses, with the Retry-After hint
            ServerError: For 5xx responses
            APIError: For other error responses
        """
        status_code = response.status_code

        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.text}

        detail = self._error_message(body)
        if not isinstance(body, dict):
            body = {"detail": detail, "_raw": body}

        if status_code == 429:
            raise RateLimitError(
                message="Rate limit exceeded",
                status_code=status_code,
                response=body,
                retry_after=retry_after_seconds(response.headers.get("Retry-After")),
            )

        if status_code == 401:
            error_type, message = AuthenticationError, "Authentication failed"
        elif status_code >= 500:
            error_type, message = ServerError, f"Server error: {detail}"
        else:
            error_type, prefix = _CLIENT_ERRORS.get(status_code, (APIError, "API error"))
            message = f"{prefix}: {detail}"

        raise error_type(message=message, status_code=status_code, response=body)

    async def _send(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Perform one HTTP request without retries.

        Raises:
            NetworkError: For network-related errors and timeouts
            Various APIError subclasses: For API errors
        """
        url = self._build_url(endpoint)

        await self._rate_limit_wait()

        start_time = time.monotonic()

        try:
            response = await self.client.request(method=method, url=url, params=params)
        except httpx.TimeoutException as e:
            logger.warning("timeout_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {str(e)}") from e
        except httpx.TransportError as e:
            logger.warning("network_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {str(e)}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if response.status_code >= 400:
            self._handle_error_response(response)

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise ServerError(
                message=f"Invalid JSON in response from {endpoint}",
                status_code=response.status_code,
            ) from e

        if self.log_payloads:
            logger.debug(
                "api_response_payload",
                method=method,
                url=url,
                status_code=response.status_code,
                payload=truncate_payload(sanitize_payload(data), self.max_payload_size),
                payload_size=len(response.content),
            )

        return data

    async def request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make an HTTP request with throttling, retries and error handling.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            params: Query parameters

        Returns:
            Response JSON data

        Raises:
            SourceUnavailableError: When transient failures exhaust the retries
            AuthenticationError, AuthorizationError, NotFoundError: Never retried
        """
        return await call_with_retry(
            lambda: self._send(method, endpoint, params),
            max_attempts=self.retry_attempts,
            min_wait=self.retry_backoff_min,
            max_wait=self.retry_backoff_max,
            description=f"{method} {endpoint}",
        )

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make a GET request."""
        return await self.request("GET", endpoint, params=params)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
