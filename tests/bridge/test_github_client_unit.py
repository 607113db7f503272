"""Unit tests for the GitHub API client.

Requests go through httpx.MockTransport so the client's retry, rate limit
and decoding behaviour is exercised without network access.
"""

import asyncio
import base64
import json

import httpx
import pytest

from tfbridge.errors import ProviderAPIError
from tfbridge.github.client import GitHubClient, RateLimitError, parse_github_timestamp


def run_async(coro):
    return asyncio.run(coro)


def _client(handler, **kwargs):
    kwargs.setdefault("max_retries", 2)
    return GitHubClient(
        token="ghs_test",
        base_url="https://api.github.test",
        base_delay=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def _call(client, method, *args, **kwargs):
    async with client:
        return await getattr(client, method)(*args, **kwargs)


class TestListContents:

    def test_lists_directory(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json=[{"name": "main.tf", "path": "main.tf", "type": "file"}],
            )

        entries = run_async(_call(_client(handler), "list_contents", "octo/infra", "", ref="abc123"))

        assert entries[0]["name"] == "main.tf"
        assert requests[0].url.path == "/repos/octo/infra/contents"
        assert requests[0].url.params["ref"] == "abc123"
        assert requests[0].headers["Authorization"] == "Bearer ghs_test"

    def test_nested_path(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[])

        run_async(_call(_client(handler), "list_contents", "octo/infra", "modules/vpc/"))

        assert requests[0].url.path == "/repos/octo/infra/contents/modules/vpc"
        assert "ref" not in requests[0].url.params

    def test_file_response_raises(self):
        def handler(request):
            return httpx.Response(200, json={"type": "file", "name": "main.tf"})

        with pytest.raises(ProviderAPIError, match="directory listing"):
            run_async(_call(_client(handler), "list_contents", "octo/infra", "main.tf"))

    def test_non_json_listing_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>proxy</html>")

        with pytest.raises(ProviderAPIError, match="non-JSON") as exc_info:
            run_async(_call(_client(handler), "list_contents", "octo/infra"))

        assert exc_info.value.request_url.endswith("/repos/octo/infra/contents")


class TestGetFileContent:

    def test_decodes_wrapped_base64(self):
        raw = b'resource "null_resource" "x" {}\n' * 10
        encoded = base64.b64encode(raw).decode("ascii")
        # GitHub wraps base64 content at 60 characters
        wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))

        def handler(request):
            return httpx.Response(
                200,
                json={"type": "file", "encoding": "base64", "content": wrapped},
            )

        content = run_async(_call(_client(handler), "get_file_content", "octo/infra", "main.tf"))

        assert content == raw

    def test_empty_file(self):
        def handler(request):
            return httpx.Response(200, json={"type": "file", "encoding": "base64", "content": ""})

        assert run_async(_call(_client(handler), "get_file_content", "octo/infra", "empty.tf")) == b""

    def test_large_file_fetched_raw(self):
        raw = b'{"resource": {}}' * 100000
        requests = []

        def handler(request):
            requests.append(request)
            if request.headers["Accept"] == "application/vnd.github.raw":
                return httpx.Response(200, content=raw)
            return httpx.Response(
                200,
                json={"type": "file", "encoding": "none", "content": "", "size": len(raw)},
            )

        content = run_async(
            _call(_client(handler), "get_file_content", "octo/infra", "big.tf.json", ref="abc123")
        )

        assert content == raw
        assert len(requests) == 2
        assert requests[1].url.path == "/repos/octo/infra/contents/big.tf.json"
        assert requests[1].url.params["ref"] == "abc123"
        assert requests[1].headers["Authorization"] == "Bearer ghs_test"

    def test_large_file_raw_fetch_failure_raises(self):
        def handler(request):
            if request.headers["Accept"] == "application/vnd.github.raw":
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"type": "file", "encoding": "none", "content": ""})

        with pytest.raises(ProviderAPIError) as exc_info:
            run_async(_call(_client(handler), "get_file_content", "octo/infra", "big.tf.json"))

        assert exc_info.value.status_code == 404

    def test_unsupported_encoding_raises(self):
        def handler(request):
            return httpx.Response(200, json={"type": "file", "encoding": "utf-16", "content": ""})

        with pytest.raises(ProviderAPIError, match="encoding"):
            run_async(_call(_client(handler), "get_file_content", "octo/infra", "odd.tf"))

    def test_non_json_body_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>proxy</html>")

        with pytest.raises(ProviderAPIError, match="non-JSON") as exc_info:
            run_async(_call(_client(handler), "get_file_content", "octo/infra", "main.tf"))

        assert exc_info.value.status_code == 200
        assert exc_info.value.response_body == "<html>proxy</html>"

    def test_directory_response_raises(self):
        def handler(request):
            return httpx.Response(200, json=[])

        with pytest.raises(ProviderAPIError, match="file content"):
            run_async(_call(_client(handler), "get_file_content", "octo/infra", "modules"))


class TestAddLabels:

    def test_posts_labels(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[{"name": "needs-response"}])

        result = run_async(
            _call(_client(handler), "add_labels", "octo/infra", 7, ["needs-response"])
        )

        assert result == [{"name": "needs-response"}]
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/repos/octo/infra/issues/7/labels"
        assert json.loads(requests[0].content) == {"labels": ["needs-response"]}


class TestRetryBehaviour:

    def test_retries_server_errors(self):
        statuses = [502, 503, 200]
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(statuses[len(requests) - 1], json=[])

        run_async(_call(_client(handler), "list_contents", "octo/infra"))

        assert len(requests) == 3

    def test_gives_up_after_max_retries(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(ProviderAPIError) as exc_info:
            run_async(_call(_client(handler, max_retries=1), "list_contents", "octo/infra"))

        assert exc_info.value.status_code == 502
        assert len(requests) == 2

    def test_client_error_not_retried(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(ProviderAPIError) as exc_info:
            run_async(_call(_client(handler), "list_contents", "octo/missing"))

        assert exc_info.value.status_code == 404
        assert len(requests) == 1

    def test_transport_errors_retried(self):
        requests = []

        def handler(request):
            requests.append(request)
            if len(requests) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=[])

        assert run_async(_call(_client(handler), "list_contents", "octo/infra")) == []
        assert len(requests) == 2

    def test_transport_errors_exhausted(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderAPIError, match="after 2 retries"):
            run_async(_call(_client(handler), "list_contents", "octo/infra"))


class TestRateLimit:

    def test_429_raises_rate_limit(self):
        def handler(request):
            return httpx.Response(429, headers={"retry-after": "30"})

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_call(_client(handler), "list_contents", "octo/infra"))

        assert exc_info.value.retry_after == 30

    def test_403_with_exhausted_quota_raises_rate_limit(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "4102444800"},
            )

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_call(_client(handler), "list_contents", "octo/infra"))

        assert exc_info.value.reset_at == 4102444800

    def test_plain_403_is_api_error(self):
        def handler(request):
            return httpx.Response(403, headers={"x-ratelimit-remaining": "10"})

        with pytest.raises(ProviderAPIError) as exc_info:
            run_async(_call(_client(handler), "list_contents", "octo/infra"))

        assert not isinstance(exc_info.value, RateLimitError)


class TestParseTimestamp:

    def test_parses_zulu(self):
        parsed = parse_github_timestamp("2030-01-01T00:00:00Z")
        assert parsed.year == 2030
        assert parsed.utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_invalid(self, value):
        assert parse_github_timestamp(value) is None
