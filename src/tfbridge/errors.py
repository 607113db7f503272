"""Error taxonomy for the webhook bridge.

Only failures raised while checking the webhook signature are visible to
the sender (as a 401). Everything raised after that point is internal and
is observed through logs and metrics.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    pass


class AuthenticationError(BridgeError):
    """Raised when the app cannot prove its identity to GitHub.

    Covers a missing or malformed signing key and failed installation
    token exchanges.
    """

    pass


class PayloadError(BridgeError):
    """Raised when a webhook body cannot be decoded as a JSON object."""

    pass


class ProviderAPIError(BridgeError):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class StagingIOError(BridgeError):
    """Raised when staged files cannot be written to local storage."""

    pass


class HarvestLimitError(StagingIOError):
    """Raised when a harvest exceeds a configured depth or size limit."""

    def __init__(self, limit: str, value: int, maximum: int):
        self.limit = limit
        self.value = value
        self.maximum = maximum
        super().__init__(f"Harvest {limit} {value} exceeds configured maximum {maximum}")


class UploadError(BridgeError):
    """Raised when the ingestion service rejects or never receives a harvest.

    Attributes:
        status_code: HTTP status code, if a response was received.
        response_body: Truncated response body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)
