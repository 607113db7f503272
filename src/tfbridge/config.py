"""Bridge configuration using pydantic-settings.

This module defines the BridgeSettings class that reads configuration from
environment variables (or a local .env file). The GitHub App credentials,
the webhook secret and the ingestion endpoint must always be supplied
externally; none of them have usable defaults.
"""

from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HARVEST_SUFFIXES = (".tf", ".tf.json")


class BridgeSettings(BaseSettings):
    """Webhook bridge configuration from environment variables.

    Required fields (must be set via environment variables):
    - github_app_identifier: The GitHub App id used as the JWT issuer
    - github_private_key or github_private_key_path: App signing key (PEM)
    - github_webhook_secret: Shared secret for webhook signatures
    - ingest_url: Downstream endpoint receiving harvested files
    - customer_id: Tenant identifier sent with every upload
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_app_identifier: str

    # PEM with newlines, or with literal "\n" sequences as exported by
    # `awk '{printf "%s\\n", $0}' private-key.pem`
    github_private_key: Optional[str] = None
    github_private_key_path: Optional[str] = None

    github_webhook_secret: str

    # Supports GitHub Enterprise Server
    github_base_url: str = "https://api.github.com"

    # Lifetime of the signed app assertion. GitHub caps this at 600.
    assertion_ttl_seconds: int = 180

    # Backdate iat to tolerate clock drift between us and GitHub
    assertion_clock_skew_seconds: int = 30

    github_max_retries: int = 3

    # -------------------------------------------------------------------------
    # Event handling
    # -------------------------------------------------------------------------
    issue_label: str = "needs-response"

    # Reject undecodable bodies with 400 instead of treating them as {}
    strict_payloads: bool = False

    # Acknowledge deliveries before running handlers
    background_dispatch: bool = False

    # -------------------------------------------------------------------------
    # Harvest
    # -------------------------------------------------------------------------
    staging_base_path: str = "/tmp/tfbridge"
    harvest_suffixes: tuple[str, ...] = DEFAULT_HARVEST_SUFFIXES

    # Unbounded when unset
    harvest_max_depth: Optional[int] = None
    harvest_max_total_bytes: Optional[int] = None

    # Leftover staging roots older than this are removed at startup
    staging_stale_seconds: int = 3600

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------
    ingest_url: str
    customer_id: str
    upload_max_retries: int = 0

    http_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Logging / server
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = True
    host: str = "0.0.0.0"
    port: int = 3333

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_webhook_secret", "github_app_identifier", "customer_id")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        """Validate that required identifiers and secrets are not empty."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v

    @field_validator("ingest_url", "github_base_url")
    @classmethod
    def validate_url(cls, v: str, info) -> str:
        """Validate that URLs use http or https."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} must start with http:// or https://")
        return v

    @field_validator("assertion_ttl_seconds")
    @classmethod
    def validate_assertion_ttl(cls, v: int) -> int:
        """GitHub rejects app JWTs that live longer than ten minutes."""
        if not 1 <= v <= 600:
            raise ValueError("assertion_ttl_seconds must be between 1 and 600")
        return v

    @field_validator("harvest_suffixes")
    @classmethod
    def validate_suffixes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Validate that at least one file suffix is configured."""
        cleaned = tuple(s.strip() for s in v if s and s.strip())
        if not cleaned:
            raise ValueError("harvest_suffixes cannot be empty")
        return cleaned

    @field_validator("harvest_max_depth", "harvest_max_total_bytes")
    @classmethod
    def validate_limit(cls, v: Optional[int], info) -> Optional[int]:
        """Validate that optional harvest limits are positive."""
        if v is not None and v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("github_max_retries", "upload_max_retries")
    @classmethod
    def validate_retries(cls, v: int, info) -> int:
        """Validate that retry counts are not negative."""
        if v < 0:
            raise ValueError(f"{info.field_name} cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def validate_private_key_source(self) -> "BridgeSettings":
        """At least one private key source must be configured."""
        if not self.github_private_key and not self.github_private_key_path:
            raise ValueError(
                "github_private_key or github_private_key_path must be set"
            )
        return self

    def load_private_key(self) -> str:
        """Return the app signing key as PEM text.

        Inline keys take precedence over the key path. Literal "\\n"
        sequences in an inline key are converted to newlines.

        Raises:
            OSError: If the key path cannot be read.
        """
        if self.github_private_key:
            return self.github_private_key.replace("\\n", "\n").strip()
        return Path(self.github_private_key_path).read_text(encoding="utf-8").strip()


def get_settings() -> BridgeSettings:
    """Create and return a BridgeSettings instance.

    Returns:
        BridgeSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return BridgeSettings()
