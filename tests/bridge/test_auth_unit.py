"""Unit tests for GitHub App authentication.

Covers assertion minting (claims, signing failures) and the installation
token exchange against an httpx.MockTransport standing in for GitHub.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import jwt
import pytest

from tfbridge.auth.app import AppAuthenticator, DispatchContext, IdentityAssertion
from tfbridge.errors import AuthenticationError

FIXED_NOW = 1_700_000_000


def run_async(coro):
    return asyncio.run(coro)


def _token_transport(calls, status_code=201, body=None):
    """GitHub stand-in issuing one token per installation."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        installation_id = request.url.path.split("/")[3]
        payload = body if body is not None else {
            "token": f"ghs_token_for_{installation_id}",
            "expires_at": "2030-01-01T00:00:00Z",
        }
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


def _authenticator(private_key_pem, transport=None, **kwargs):
    return AppAuthenticator(
        app_id="12345",
        private_key=private_key_pem,
        base_url="https://api.github.test",
        max_retries=0,
        transport=transport,
        **kwargs,
    )


class TestMintAssertion:

    def test_claims(self, private_key_pem, public_key_pem):
        auth = _authenticator(private_key_pem, clock=lambda: FIXED_NOW)

        assertion = auth.mint_assertion()
        claims = jwt.decode(
            assertion.token,
            public_key_pem,
            algorithms=["RS256"],
            options={"verify_exp": False},
        )

        assert claims["iss"] == "12345"
        assert claims["iat"] == FIXED_NOW - 30
        assert claims["exp"] == FIXED_NOW + 180
        assert jwt.get_unverified_header(assertion.token)["alg"] == "RS256"

    def test_custom_ttl(self, private_key_pem):
        auth = _authenticator(private_key_pem, assertion_ttl=600, clock=lambda: FIXED_NOW)

        assertion = auth.mint_assertion()

        assert assertion.expires_at == FIXED_NOW + 600
        assert assertion.issuer == "12345"

    def test_expiry(self):
        assertion = IdentityAssertion(
            issuer="1", issued_at=FIXED_NOW - 30, expires_at=FIXED_NOW + 180, token="t"
        )
        assert not assertion.is_expired(now=FIXED_NOW)
        assert assertion.is_expired(now=FIXED_NOW + 180)

    def test_verifies_with_current_clock(self, private_key_pem, public_key_pem):
        assertion = _authenticator(private_key_pem).mint_assertion()

        claims = jwt.decode(assertion.token, public_key_pem, algorithms=["RS256"])

        assert claims["iss"] == "12345"

    def test_malformed_key_raises(self):
        auth = _authenticator("not a pem key")

        with pytest.raises(AuthenticationError, match="Could not sign"):
            auth.mint_assertion()

    def test_missing_key_raises(self):
        with pytest.raises(AuthenticationError, match="private key"):
            _authenticator("").mint_assertion()

    def test_missing_app_id_raises(self, private_key_pem):
        auth = AppAuthenticator(app_id="", private_key=private_key_pem)

        with pytest.raises(AuthenticationError, match="identifier"):
            auth.mint_assertion()


class TestAuthenticate:

    def test_exchanges_assertion_for_token(self, private_key_pem, public_key_pem):
        calls = []
        auth = _authenticator(private_key_pem, transport=_token_transport(calls))

        token = run_async(auth.authenticate(42))

        assert token.token == "ghs_token_for_42"
        assert token.installation_id == 42
        assert token.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)

        assert len(calls) == 1
        request = calls[0]
        assert request.method == "POST"
        assert request.url.path == "/app/installations/42/access_tokens"

        scheme, _, bearer = request.headers["Authorization"].partition(" ")
        assert scheme == "Bearer"
        claims = jwt.decode(bearer, public_key_pem, algorithms=["RS256"])
        assert claims["iss"] == "12345"

    def test_fresh_assertion_per_exchange(self, private_key_pem):
        calls = []
        auth = _authenticator(private_key_pem, transport=_token_transport(calls))

        run_async(auth.authenticate(1))
        run_async(auth.authenticate(1))

        assert len(calls) == 2

    def test_rejected_exchange_raises(self, private_key_pem):
        calls = []
        transport = _token_transport(calls, status_code=401, body={"message": "Bad credentials"})
        auth = _authenticator(private_key_pem, transport=transport)

        with pytest.raises(AuthenticationError, match="Token exchange failed"):
            run_async(auth.authenticate(42))

    def test_non_json_exchange_raises(self, private_key_pem):
        def handler(request):
            return httpx.Response(200, text="<html>proxy</html>")

        auth = _authenticator(private_key_pem, transport=httpx.MockTransport(handler))

        with pytest.raises(AuthenticationError, match="Token exchange failed"):
            run_async(auth.authenticate(42))

    def test_response_without_token_raises(self, private_key_pem):
        calls = []
        transport = _token_transport(calls, body={"expires_at": "2030-01-01T00:00:00Z"})
        auth = _authenticator(private_key_pem, transport=transport)

        with pytest.raises(AuthenticationError, match="no token"):
            run_async(auth.authenticate(42))

    def test_missing_expiry_defaults_to_one_hour(self, private_key_pem):
        calls = []
        transport = _token_transport(calls, body={"token": "ghs_x"})
        auth = _authenticator(private_key_pem, transport=transport)

        token = run_async(auth.authenticate(42))

        remaining = token.expires_at - datetime.now(timezone.utc)
        assert 3500 < remaining.total_seconds() <= 3600

    def test_signing_failure_makes_no_request(self):
        calls = []
        auth = _authenticator("not a pem key", transport=_token_transport(calls))

        with pytest.raises(AuthenticationError):
            run_async(auth.authenticate(42))

        assert calls == []


class TestOpenContext:

    def test_context_client_uses_installation_token(self, private_key_pem):
        seen_tokens = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/app/installations/"):
                installation_id = request.url.path.split("/")[3]
                return httpx.Response(201, json={"token": f"ghs_{installation_id}"})
            seen_tokens.append(request.headers["Authorization"])
            return httpx.Response(200, json=[{"name": "needs-response"}])

        auth = _authenticator(private_key_pem, transport=httpx.MockTransport(handler))

        async def scenario():
            async with await auth.open_context(7) as first:
                await first.client.add_labels("octo/a", 1, ["needs-response"])
            async with await auth.open_context(8) as second:
                await second.client.add_labels("octo/b", 2, ["needs-response"])
            return first, second

        first, second = run_async(scenario())

        assert isinstance(first, DispatchContext)
        assert first.installation_id == 7
        assert second.installation_id == 8
        assert seen_tokens == ["Bearer ghs_7", "Bearer ghs_8"]

    def test_context_closes_client(self, private_key_pem):
        calls = []
        auth = _authenticator(private_key_pem, transport=_token_transport(calls))

        async def scenario():
            async with await auth.open_context(42) as ctx:
                http_client = ctx.client.client
            return http_client

        http_client = run_async(scenario())

        assert http_client.is_closed

