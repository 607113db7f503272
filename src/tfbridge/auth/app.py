"""GitHub App authentication.

GitHub App auth flow:
1. Mint a JWT (the identity assertion) signed with the app's private key
2. Exchange the JWT for a short-lived installation access token
3. Use the installation token for API calls scoped to that installation

A fresh assertion is minted for every dispatch and every installation token
lives inside exactly one DispatchContext. Nothing is cached across
dispatches, so a token obtained for one installation can never be presented
on behalf of another.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import jwt
import structlog
from cryptography.exceptions import UnsupportedAlgorithm

from tfbridge.errors import AuthenticationError, ProviderAPIError
from tfbridge.github.client import GitHubClient, parse_github_timestamp

logger = structlog.get_logger(__name__)

ASSERTION_ALGORITHM = "RS256"

# GitHub installation tokens expire after one hour
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass(frozen=True)
class IdentityAssertion:
    """A signed app JWT.

    Attributes:
        issuer: GitHub App id.
        issued_at: Unix timestamp of the iat claim.
        expires_at: Unix timestamp of the exp claim.
        token: The encoded JWT.
    """

    issuer: str
    issued_at: int
    expires_at: int
    token: str

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


@dataclass(frozen=True)
class InstallationToken:
    """Bearer credential scoped to one installation.

    Attributes:
        token: Opaque bearer value.
        installation_id: Installation the token is scoped to.
        expires_at: Expiry reported by GitHub.
    """

    token: str
    installation_id: int
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class DispatchContext:
    """Per-dispatch authentication state.

    Carries the installation token and a GitHub client bound to it. The
    context is created for one delivery and closed at its end.

    Example:
        >>> async with await authenticator.open_context(42) as ctx:
        ...     await ctx.client.add_labels("octo/infra", 7, ["needs-response"])
    """

    def __init__(self, token: InstallationToken, client: GitHubClient):
        self.token = token
        self.client = client

    @property
    def installation_id(self) -> int:
        return self.token.installation_id

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "DispatchContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class AppAuthenticator:
    """Mints app assertions and exchanges them for installation tokens.

    Attributes:
        app_id: GitHub App id (JWT issuer).
        base_url: GitHub API base URL.
        assertion_ttl: Assertion lifetime in seconds.
        clock_skew: Seconds to backdate the iat claim.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        base_url: str = "https://api.github.com",
        assertion_ttl: int = 180,
        clock_skew: int = 30,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self._private_key = private_key
        self.base_url = base_url
        self.assertion_ttl = assertion_ttl
        self.clock_skew = clock_skew
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

    def mint_assertion(self) -> IdentityAssertion:
        """Create and sign a new app JWT.

        Returns:
            A freshly signed IdentityAssertion.

        Raises:
            AuthenticationError: If the app id or key is missing, or the
                key cannot be used for RS256 signing.
        """
        if not self.app_id:
            raise AuthenticationError("GitHub App identifier is not configured")
        if not self._private_key:
            raise AuthenticationError("GitHub App private key is not configured")

        now = int(self._clock())
        issued_at = now - self.clock_skew
        expires_at = now + self.assertion_ttl

        claims = {
            "iat": issued_at,
            "exp": expires_at,
            "iss": self.app_id,
        }

        try:
            token = jwt.encode(claims, self._private_key, algorithm=ASSERTION_ALGORITHM)
        except (
            jwt.PyJWTError,
            UnsupportedAlgorithm,
            AttributeError,
            TypeError,
            ValueError,
        ) as exc:
            logger.error("app_assertion_signing_failed", error=str(exc))
            raise AuthenticationError(f"Could not sign app assertion: {exc}") from exc

        return IdentityAssertion(
            issuer=self.app_id,
            issued_at=issued_at,
            expires_at=expires_at,
            token=token,
        )

    def _client_for(self, token: str) -> GitHubClient:
        return GitHubClient(
            token=token,
            base_url=self.base_url,
            max_retries=self.max_retries,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def authenticate(self, installation_id: int) -> InstallationToken:
        """Obtain an installation token for one installation.

        Args:
            installation_id: Installation id from the webhook payload.

        Returns:
            An InstallationToken scoped to installation_id.

        Raises:
            AuthenticationError: If signing or the token exchange fails.
        """
        assertion = self.mint_assertion()

        async with self._client_for(assertion.token) as app_client:
            try:
                data = await app_client.create_installation_token(installation_id)
            except ProviderAPIError as exc:
                logger.error(
                    "installation_token_exchange_failed",
                    installation_id=installation_id,
                    status_code=exc.status_code,
                    error=str(exc),
                )
                raise AuthenticationError(
                    f"Token exchange failed for installation {installation_id}: {exc}"
                ) from exc

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError(
                f"Token exchange for installation {installation_id} returned no token"
            )

        expires_at = parse_github_timestamp(data.get("expires_at")) or (
            datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
        )

        logger.info(
            "installation_token_obtained",
            installation_id=installation_id,
            expires_at=expires_at.isoformat(),
        )

        return InstallationToken(
            token=token,
            installation_id=installation_id,
            expires_at=expires_at,
        )

    async def open_context(self, installation_id: int) -> DispatchContext:
        """Authenticate and build the context for one dispatch.

        Args:
            installation_id: Installation id from the webhook payload.

        Returns:
            A DispatchContext with a client bound to the new token.

        Raises:
            AuthenticationError: If authentication fails.
        """
        token = await self.authenticate(installation_id)
        return DispatchContext(token=token, client=self._client_for(token.token))
