"""GitHub API client for GitHub App operations.

This module provides a wrapper around the GitHub API for installation
token exchange, repository contents and issue labels, with rate limiting
and retry logic for API resilience.
"""

from tfbridge.github.client import GitHubClient, RateLimitError, parse_github_timestamp

__all__ = [
    "GitHubClient",
    "RateLimitError",
    "parse_github_timestamp",
]
