"""Base HTTP client for the platform API.

Provides the request, retry and error handling shared by the certificate
authority client and the quota reporting client.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, cast

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()


class PlatformClientError(Exception):
    """Base exception for platform client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PlatformConnectionError(PlatformClientError):
    """Raised when the platform cannot be reached."""


class PlatformAuthError(PlatformClientError):
    """Raised when the platform rejects the token."""


class PlatformAPIError(PlatformClientError):
    """Raised when the platform answers with a structured error."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, status_code=status_code)

    def __str__(self) -> str:
        return f"failed with code {self.status_code}: {self.message}"


class BasePlatformClient(ABC):
    """Abstract base class for platform HTTP clients.

    Sends the bearer token on every request, retries connection errors and
    timeouts, and maps error statuses to exceptions.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = 5,
        retries: int = 3,
    ) -> None:
        """Initialize the base client.

        Args:
            base_url: Base URL of the platform API.
            token: Bearer token.
            timeout: Request timeout in seconds.
            retries: Number of attempts on transport errors.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._retries = retries
        self._client: httpx.Client | None = None

    def _build_client(self, **kwargs: Any) -> httpx.Client:
        """Build an httpx client with the platform headers."""
        return httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Authorization": f"Bearer {self._token}"},
            **kwargs,
        )

    @property
    @abstractmethod
    def client_name(self) -> str:
        """Return the client name for logging."""

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def __enter__(self) -> BasePlatformClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit - close client."""
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.debug(f"{self.client_name} client closed")

    def _make_retry_request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Raises:
            PlatformConnectionError: If every attempt failed at transport level.
        """

        @retry(
            retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        def _request() -> httpx.Response:
            return self.client.request(method, path, **kwargs)

        try:
            return _request()
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error(
                f"{self.client_name} connection failed",
                error=str(e),
                url=f"{self.base_url}{path}",
            )
            raise PlatformConnectionError(f"Failed to connect to {self.client_name}: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map an error response to an exception.

        Raises:
            PlatformAuthError: On 401 and 403.
            PlatformAPIError: On any other 4xx or 5xx status.
        """
        if response.status_code in (401, 403):
            raise PlatformAuthError(
                _error_message(response) or f"{self.client_name} authentication failed",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise PlatformAPIError(response.status_code, _error_message(response))


def _error_message(response: httpx.Response) -> str:
    """Extract the message of a ``{"error": "..."}`` body, or the raw text."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return cast(str, body["error"])
    return response.text
