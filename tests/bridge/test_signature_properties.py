"""Property-based tests for webhook signature verification.

A delivery is accepted only when the header carries the HMAC of the exact
raw body under the shared secret. Any single-byte change to the body or to
the digest, a different secret, or a missing header must reject.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

import pytest
from hypothesis import assume, given, settings, strategies as st

from tfbridge.webhook.signature import (
    MISSING_SIGNATURE,
    SIGNATURE_HEADER,
    SIGNATURE_HEADER_256,
    SignatureVerifier,
    compute_signature,
    select_signature_header,
    verify_signature,
)

SECRET = "hypothesis-secret"

HEX_DIGITS = "0123456789abcdef"

algorithms = st.sampled_from(["sha1", "sha256", "sha512"])


class TestSignatureAcceptance:
    """A correctly signed body always verifies."""

    @settings(max_examples=100)
    @given(body=st.binary(max_size=2048), algorithm=algorithms)
    def test_correct_signature_accepted(self, body, algorithm):
        header = f"{algorithm}={compute_signature(body, SECRET, algorithm)}"
        assert verify_signature(body, header, SECRET) is True

    @settings(max_examples=100)
    @given(body=st.binary(max_size=512), secret=st.text(min_size=1, max_size=64))
    def test_any_secret_round_trips(self, body, secret):
        header = f"sha256={compute_signature(body, secret)}"
        assert SignatureVerifier(secret).verify(body, header) is True


class TestSignatureRejection:
    """Tampering with anything signed must reject."""

    @settings(max_examples=100)
    @given(
        body=st.binary(min_size=1, max_size=1024),
        index=st.integers(min_value=0, max_value=10_000),
        flip=st.integers(min_value=1, max_value=255),
    )
    def test_body_byte_mutation_rejected(self, body, index, flip):
        header = f"sha256={compute_signature(body, SECRET)}"

        mutated = bytearray(body)
        mutated[index % len(body)] ^= flip

        assert verify_signature(bytes(mutated), header, SECRET) is False

    @settings(max_examples=100)
    @given(body=st.binary(max_size=512), algorithm=algorithms, data=st.data())
    def test_digest_character_mutation_rejected(self, body, algorithm, data):
        digest = compute_signature(body, SECRET, algorithm)
        position = data.draw(st.integers(min_value=0, max_value=len(digest) - 1))
        replacement = data.draw(
            st.sampled_from(HEX_DIGITS).filter(lambda c: c != digest[position])
        )
        tampered = digest[:position] + replacement + digest[position + 1:]

        assert verify_signature(body, f"{algorithm}={tampered}", SECRET) is False

    @settings(max_examples=100)
    @given(body=st.binary(max_size=512), other_secret=st.text(min_size=1, max_size=64))
    def test_wrong_secret_rejected(self, body, other_secret):
        assume(other_secret != SECRET)
        header = f"sha256={compute_signature(body, other_secret)}"
        assert verify_signature(body, header, SECRET) is False

    @settings(max_examples=100)
    @given(body=st.binary(max_size=512))
    def test_missing_header_rejected(self, body):
        assert verify_signature(body, None, SECRET) is False
        assert verify_signature(body, MISSING_SIGNATURE, SECRET) is False

    @settings(max_examples=50)
    @given(body=st.binary(max_size=256))
    def test_truncated_digest_rejected(self, body):
        digest = compute_signature(body, SECRET)
        assert verify_signature(body, f"sha256={digest[:-1]}", SECRET) is False


class TestSignatureHeaders:
    """Header selection and malformed values."""

    def test_prefers_sha256_header(self):
        headers = {SIGNATURE_HEADER_256: "sha256=aa", SIGNATURE_HEADER: "sha1=bb"}
        assert select_signature_header(headers) == "sha256=aa"

    def test_falls_back_to_legacy_header(self):
        assert select_signature_header({SIGNATURE_HEADER: "sha1=bb"}) == "sha1=bb"

    def test_missing_headers_become_empty_sha1(self):
        assert select_signature_header({}) == "sha1="

    def test_header_without_separator_rejected(self):
        assert verify_signature(b"{}", "sha256", SECRET) is False

    def test_unsupported_algorithm_rejected(self):
        assert verify_signature(b"{}", "md5=abcdef", SECRET) is False

    def test_compute_signature_rejects_unknown_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported"):
            compute_signature(b"{}", SECRET, "md5")

    def test_verifier_requires_secret(self):
        with pytest.raises(ValueError):
            SignatureVerifier("")

    def test_legacy_sha1_signature_accepted(self):
        body = b'{"zen": "Keep it logically awesome."}'
        header = f"sha1={compute_signature(body, SECRET, 'sha1')}"
        assert SignatureVerifier(SECRET).verify(body, header) is True
