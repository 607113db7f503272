"""Pytest configuration for all tests."""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(scope="session")
def rsa_private_key():
    """An ephemeral RSA key for signing app assertions."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def public_key_pem(rsa_private_key) -> str:
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


@pytest.fixture
def bridge_env(monkeypatch, private_key_pem):
    """Set the environment variables BridgeSettings requires."""
    monkeypatch.setenv("GITHUB_APP_IDENTIFIER", "12345")
    monkeypatch.setenv("GITHUB_PRIVATE_KEY", private_key_pem)
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("INGEST_URL", "http://ingest.test/public/terraform/githubFileUpload")
    monkeypatch.setenv("CUSTOMER_ID", "customer-1")
    monkeypatch.delenv("GITHUB_PRIVATE_KEY_PATH", raising=False)
    return monkeypatch
