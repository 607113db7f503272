"""GitHub REST API client for GitHub App operations.

This module provides an async wrapper around the GitHub API for:
- Exchanging an app assertion for an installation access token
- Listing repository contents
- Fetching file contents
- Adding labels to issues

Includes rate limiting and retry logic for API resilience. A client is
bound to exactly one bearer credential: either the app assertion or one
installation token. Callers create a new client per dispatch.
"""

import asyncio
import base64
import binascii
import random
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from tfbridge.errors import ProviderAPIError

logger = structlog.get_logger(__name__)

USER_AGENT = "tfbridge/1.0"
API_VERSION = "2022-11-28"
# Files over 1 MB come back from the contents API without inline content
RAW_MEDIA_TYPE = "application/vnd.github.raw"


class RateLimitError(ProviderAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    It implements:

    - Automatic retry with exponential backoff for transient failures
    - Rate limit handling by respecting X-RateLimit-* headers
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        token: Bearer credential (app JWT or installation token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghs_xxx") as client:
        ...     await client.add_labels("octo/infra", 7, ["needs-response"])
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: Bearer credential for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": USER_AGENT,
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff delay with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def _parse_int_header(headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError with information about when to retry."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "github_rate_limit_exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            limit=self._parse_int_header(response.headers, "x-ratelimit-limit"),
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.request.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, ...).
            path: API path (e.g., /repos/owner/repo/contents).
            json_data: Optional JSON body for the request.
            params: Optional query parameters.
            headers: Optional headers merged over the client defaults.

        Returns:
            The HTTP response from GitHub.

        Raises:
            ProviderAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    params=params,
                    headers=headers,
                )
            except httpx.TimeoutException as exc:
                last_exception = exc
                error_kind = "timeout"
            except httpx.RequestError as exc:
                last_exception = exc
                error_kind = "transport"
            else:
                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers, "x-ratelimit-remaining"
                    )
                    if remaining == 0:
                        self._raise_rate_limit(response)

                if response.status_code == 429:
                    self._raise_rate_limit(response)

                if (
                    response.status_code in self.RETRYABLE_STATUS_CODES
                    and attempt < self.max_retries
                ):
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "github_retryable_status",
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                        path=path,
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(
                        "github_api_error",
                        status_code=response.status_code,
                        path=path,
                        method=method,
                        response_body=error_body[:500],
                    )
                    raise ProviderAPIError(
                        message=f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                    )

                return response

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "github_request_failed_retrying",
                    error_kind=error_kind,
                    error=str(last_exception),
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    path=path,
                )
                await asyncio.sleep(delay)

        logger.error(
            "github_request_retries_exhausted",
            path=path,
            method=method,
            max_retries=self.max_retries,
            last_error=str(last_exception),
        )
        raise ProviderAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        """Decode a successful response body as JSON.

        Raises:
            ProviderAPIError: If the body is not JSON.
        """
        try:
            return response.json()
        except ValueError as exc:
            logger.error(
                "github_invalid_json",
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                response_body=response.text[:500],
            )
            raise ProviderAPIError(
                message=f"GitHub API returned a non-JSON body: {exc}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            ) from exc

    async def create_installation_token(self, installation_id: int) -> Dict[str, Any]:
        """Exchange the app assertion for an installation access token.

        The client must be authenticated with the app JWT, not with an
        installation token.

        Args:
            installation_id: The installation to scope the token to.

        Returns:
            Token data with "token" and "expires_at" fields.

        Raises:
            ProviderAPIError: If the request fails.
        """
        path = f"/app/installations/{installation_id}/access_tokens"

        logger.info("creating_installation_token", installation_id=installation_id)

        response = await self._request(method="POST", path=path)
        return self._decode_json(response)

    async def list_contents(
        self,
        repo: str,
        path: str = "",
        ref: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List the entries of a repository directory.

        Args:
            repo: Repository full name ("owner/name").
            path: Directory path relative to the root; empty for the root.
            ref: Optional commit, branch or tag to read.

        Returns:
            Contents API entries (name, path, type, download_url, ...).

        Raises:
            ProviderAPIError: If the request fails or the path is a file.
        """
        api_path = self._contents_path(repo, path)

        logger.debug("listing_repository_contents", repo=repo, path=path, ref=ref)

        response = await self._request(
            method="GET",
            path=api_path,
            params={"ref": ref} if ref else None,
        )
        result = self._decode_json(response)
        if not isinstance(result, list):
            raise ProviderAPIError(
                message=f"Expected a directory listing for '{path}' in {repo}",
                status_code=response.status_code,
                request_url=str(response.url),
            )
        return result

    async def get_file_content(
        self,
        repo: str,
        path: str,
        ref: Optional[str] = None,
    ) -> bytes:
        """Fetch and decode the content of one repository file.

        Files too large for inline content (``encoding: "none"``) are
        fetched again with the raw media type.

        Args:
            repo: Repository full name ("owner/name").
            path: File path relative to the repository root.
            ref: Optional commit, branch or tag to read.

        Returns:
            The raw file bytes.

        Raises:
            ProviderAPIError: If the request fails or the content cannot
                be decoded.
        """
        api_path = self._contents_path(repo, path)

        logger.debug("fetching_file_content", repo=repo, path=path, ref=ref)

        response = await self._request(
            method="GET",
            path=api_path,
            params={"ref": ref} if ref else None,
        )
        data = self._decode_json(response)
        if not isinstance(data, dict) or data.get("type") not in (None, "file"):
            raise ProviderAPIError(
                message=f"Expected file content for '{path}' in {repo}",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        encoding = data.get("encoding", "base64")
        content = data.get("content") or ""
        if encoding == "none":
            logger.debug("fetching_raw_file_content", repo=repo, path=path, size=data.get("size"))
            raw_response = await self._request(
                method="GET",
                path=api_path,
                params={"ref": ref} if ref else None,
                headers={"Accept": RAW_MEDIA_TYPE},
            )
            return raw_response.content
        if encoding != "base64":
            raise ProviderAPIError(
                message=f"Unsupported content encoding '{encoding}' for '{path}'",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        try:
            return base64.b64decode(content)
        except (binascii.Error, ValueError) as exc:
            raise ProviderAPIError(
                message=f"Could not decode content of '{path}': {exc}",
                status_code=response.status_code,
                request_url=str(response.url),
            ) from exc

    async def add_labels(
        self,
        repo: str,
        issue_number: int,
        labels: List[str],
    ) -> List[Dict[str, Any]]:
        """Add labels to an issue.

        Args:
            repo: Repository full name ("owner/name").
            issue_number: Issue number to label.
            labels: Label names to add.

        Returns:
            List of all labels on the issue after adding.

        Raises:
            ProviderAPIError: If the request fails.
        """
        path = f"/repos/{repo}/issues/{issue_number}/labels"

        logger.info(
            "adding_labels_to_issue",
            repo=repo,
            issue_number=issue_number,
            labels=labels,
        )

        response = await self._request(
            method="POST",
            path=path,
            json_data={"labels": labels},
        )

        result = self._decode_json(response)
        logger.info(
            "labels_added",
            repo=repo,
            issue_number=issue_number,
            total_labels=len(result),
        )
        return result

    @staticmethod
    def _contents_path(repo: str, path: str) -> str:
        path = path.strip("/")
        if not path:
            return f"/repos/{repo}/contents"
        return f"/repos/{repo}/contents/{quote(path)}"


def parse_github_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as returned by GitHub ("...Z")."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
