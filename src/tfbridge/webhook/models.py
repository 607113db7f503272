"""GitHub webhook event models.

WebhookEvent is the raw, unverified delivery. IssueEvent and PushEvent are
only built from a payload after the signature check has passed.

The models use Pydantic for validation, consistent with the configuration
approach in config.py.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tfbridge.harvest.models import CommitMetadata


class EventType(str, Enum):
    """GitHub event types the bridge acts on.

    Attributes:
        ISSUES: Issue activity. Only the "opened" action does anything.
        PUSH: Branch push. Triggers a harvest and upload.
    """

    ISSUES = "issues"
    PUSH = "push"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventType"]:
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class WebhookEvent(BaseModel):
    """A raw webhook delivery as received from the transport.

    Attributes:
        event_type: Value of the X-GitHub-Event header.
        body: Raw request body bytes, exactly as received.
        signature_header: Value of the signature header, if any.
        delivery_id: Value of X-GitHub-Delivery, for log correlation.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str = Field(default="", description="X-GitHub-Event header")
    body: bytes = Field(default=b"", description="Raw request body")
    signature_header: Optional[str] = Field(default=None)
    delivery_id: Optional[str] = Field(default=None)


class IssueEvent(BaseModel):
    """Parsed issues event.

    Attributes:
        action: Issue action ("opened", "closed", ...).
        repository: Repository full name ("owner/name").
        issue_number: Issue number within the repository.
        installation_id: App installation that delivered the event.
    """

    action: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    issue_number: int = Field(..., gt=0)
    installation_id: int = Field(..., gt=0)

    @property
    def is_opened(self) -> bool:
        return self.action == "opened"


class PushEvent(BaseModel):
    """Parsed push event.

    Only the first commit's author is kept even when a push carries
    several commits.

    Attributes:
        installation_id: App installation that delivered the event.
        repository: Repository full name ("owner/name").
        clone_url: HTTPS clone URL.
        ref: Full pushed ref ("refs/heads/main").
        branch: Last path segment of the ref.
        commit_id: Commit id after the push.
        author_name: Author name of the first commit.
        author_email: Author email of the first commit.
        deleted: True when the push deleted the ref.
    """

    installation_id: int = Field(..., gt=0)
    repository: str = Field(..., min_length=1)
    clone_url: str = Field(default="")
    ref: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    commit_id: str = Field(..., min_length=1)
    author_name: str = Field(default="")
    author_email: str = Field(default="")
    deleted: bool = Field(default=False)

    def commit_metadata(self) -> CommitMetadata:
        return CommitMetadata(
            repository=self.repository,
            clone_url=self.clone_url,
            branch=self.branch,
            author_name=self.author_name,
            author_email=self.author_email,
            commit_id=self.commit_id,
        )
