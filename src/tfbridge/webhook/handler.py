"""GitHub webhook payload parsing.

This module turns a verified webhook body into IssueEvent or PushEvent
objects. It must only be called after the signature check has passed.

Every field access is guarded: GitHub payloads are large and loosely
shaped, and an undecodable body degrades to an empty payload unless the
caller asks for strict decoding.

GitHub Webhook Payload Structure (push event, abridged):
{
  "ref": "refs/heads/main",
  "after": "0d1a26e67d8f5eaf1f6ba5c57fc3c7d91ac0fd1c",
  "deleted": false,
  "installation": {"id": 42},
  "repository": {
    "full_name": "octo/infra",
    "clone_url": "https://github.com/octo/infra.git"
  },
  "commits": [
    {"id": "...", "author": {"name": "Mona", "email": "mona@example.com"}}
  ]
}
"""

import json
from typing import Any, Dict, Optional

import structlog

from tfbridge.errors import PayloadError
from tfbridge.webhook.models import IssueEvent, PushEvent

logger = structlog.get_logger(__name__)

NULL_COMMIT = "0" * 40


def decode_payload(body: bytes, strict: bool = False) -> Dict[str, Any]:
    """Decode a webhook body into a dictionary.

    Args:
        body: Raw request body.
        strict: Raise instead of falling back to an empty payload.

    Returns:
        The decoded JSON object, or {} if decoding fails in lenient mode.

    Raises:
        PayloadError: In strict mode, when the body is not a JSON object.
    """
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        if strict:
            raise PayloadError(f"Invalid JSON payload: {exc}") from exc
        logger.warning("webhook_payload_undecodable", error=str(exc))
        return {}

    if not isinstance(payload, dict):
        if strict:
            raise PayloadError(
                f"Expected a JSON object, got {type(payload).__name__}"
            )
        logger.warning("webhook_payload_not_object", type=type(payload).__name__)
        return {}

    return payload


def branch_from_ref(ref: str) -> str:
    """Return the branch name for a pushed ref.

    The branch is the last path segment, so "refs/heads/feature-x" gives
    "feature-x" (and "refs/heads/team/feature-x" also gives "feature-x").
    """
    return ref.rstrip("/").split("/")[-1]


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def extract_installation_id(payload: Dict[str, Any]) -> Optional[int]:
    """Extract the app installation id from a payload.

    Returns:
        The installation id, or None when missing or not a positive integer.
    """
    installation_id = _dict(payload.get("installation")).get("id")
    if isinstance(installation_id, bool) or not isinstance(installation_id, int):
        return None
    if installation_id <= 0:
        return None
    return installation_id


def extract_action(payload: Dict[str, Any]) -> Optional[str]:
    action = payload.get("action")
    return action if isinstance(action, str) and action else None


def parse_issue_event(payload: Dict[str, Any]) -> Optional[IssueEvent]:
    """Parse an issues event payload.

    Args:
        payload: The decoded webhook payload.

    Returns:
        IssueEvent if all required fields are present, None otherwise.
    """
    action = extract_action(payload)
    if action is None:
        logger.warning("issue_event_missing_action")
        return None

    installation_id = extract_installation_id(payload)
    if installation_id is None:
        logger.warning("issue_event_missing_installation")
        return None

    repository = _str(_dict(payload.get("repository")).get("full_name"))
    if not repository:
        logger.warning("issue_event_missing_repository")
        return None

    issue_number = _dict(payload.get("issue")).get("number")
    if isinstance(issue_number, bool) or not isinstance(issue_number, int) or issue_number <= 0:
        logger.warning("issue_event_invalid_number", issue_number=issue_number)
        return None

    return IssueEvent(
        action=action,
        repository=repository,
        issue_number=issue_number,
        installation_id=installation_id,
    )


def _first_author(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return the author of the first commit in a push.

    Pushes without commits (tags, force-pushes to an existing commit) fall
    back to head_commit, then to the pusher.
    """
    commits = payload.get("commits")
    if isinstance(commits, list) and commits:
        author = _dict(_dict(commits[0]).get("author"))
        if author:
            return author

    author = _dict(_dict(payload.get("head_commit")).get("author"))
    if author:
        return author

    return _dict(payload.get("pusher"))


def parse_push_event(payload: Dict[str, Any]) -> PushEvent:
    """Parse a push event payload.

    Args:
        payload: The decoded webhook payload.

    Returns:
        PushEvent with the commit metadata needed for a harvest.

    Raises:
        PayloadError: If the installation, repository, ref or commit id
            is missing.
    """
    installation_id = extract_installation_id(payload)
    if installation_id is None:
        raise PayloadError("Push payload has no installation id")

    repository_data = _dict(payload.get("repository"))
    repository = _str(repository_data.get("full_name"))
    if not repository:
        raise PayloadError("Push payload has no repository full_name")

    ref = _str(payload.get("ref"))
    branch = branch_from_ref(ref) if ref else ""
    if not branch:
        raise PayloadError("Push payload has no ref")

    commit_id = _str(payload.get("after"))
    if not commit_id:
        raise PayloadError("Push payload has no post-push commit id")

    author = _first_author(payload)

    return PushEvent(
        installation_id=installation_id,
        repository=repository,
        clone_url=_str(repository_data.get("clone_url")),
        ref=ref,
        branch=branch,
        commit_id=commit_id,
        author_name=_str(author.get("name")),
        author_email=_str(author.get("email")),
        deleted=bool(payload.get("deleted")) or commit_id == NULL_COMMIT,
    )
