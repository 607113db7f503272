"""GitHub App authentication (app assertion and installation tokens)."""

from tfbridge.auth.app import (
    AppAuthenticator,
    DispatchContext,
    IdentityAssertion,
    InstallationToken,
)

__all__ = [
    "AppAuthenticator",
    "DispatchContext",
    "IdentityAssertion",
    "InstallationToken",
]
