"""GitHub App webhook bridge.

This package receives GitHub App webhook deliveries and:
- Verifies the HMAC signature of every delivery
- Labels newly opened issues
- Harvests Terraform sources from pushed commits and forwards them, with
  the commit metadata, to a downstream ingestion service
"""

__version__ = "1.0.0"
