"""Data models for repository harvests.

A harvest walks one repository at one commit and stages every matching
file under a staging root. The manifest is the only thing the uploader
reads; it is built by the walker and never shared between dispatches.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class NodeKind(str, Enum):
    """Entry kinds returned by the repository contents API."""

    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    SUBMODULE = "submodule"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "NodeKind":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class TreeNode:
    """One entry of a directory listing.

    Attributes:
        name: Entry name (last path segment).
        kind: File, directory, or something the walker skips.
        path: Path relative to the repository root.
        download_url: Raw download URL for files, if provided.
    """

    name: str
    kind: NodeKind
    path: str
    download_url: Optional[str] = None

    @classmethod
    def from_api(cls, entry: Dict[str, Any], parent_path: str = "") -> "TreeNode":
        """Build a node from a contents API entry.

        The API returns the repository-relative ``path`` for every entry;
        when it is absent the path is derived from the parent path and name.
        """
        name = str(entry.get("name") or "")
        path = entry.get("path")
        if not path:
            path = f"{parent_path}/{name}" if parent_path else name
        return cls(
            name=name,
            kind=NodeKind.parse(entry.get("type")),
            path=str(path),
            download_url=entry.get("download_url"),
        )


@dataclass(frozen=True)
class CommitMetadata:
    """Commit details forwarded alongside a harvest.

    Attributes:
        repository: Repository full name ("owner/name").
        clone_url: HTTPS clone URL of the repository.
        branch: Branch name (last segment of the pushed ref).
        author_name: Author of the first commit in the push.
        author_email: Author email of the first commit in the push.
        commit_id: Commit id after the push.
    """

    repository: str
    clone_url: str
    branch: str
    author_name: str
    author_email: str
    commit_id: str


@dataclass(frozen=True)
class StagedFile:
    """A harvested file written under the staging root.

    Attributes:
        relative_path: Path relative to the repository root.
        local_path: Absolute path of the staged copy.
        size: Number of bytes written.
    """

    relative_path: str
    local_path: Path
    size: int

    def read_bytes(self) -> bytes:
        return self.local_path.read_bytes()


@dataclass
class HarvestManifest:
    """Ordered set of staged files plus commit metadata.

    Files appear in discovery order (pre-order, provider listing order).
    The order is deterministic for one listing only.
    """

    metadata: CommitMetadata
    staging_root: Path
    files: List[StagedFile] = field(default_factory=list)

    def add(self, staged: StagedFile) -> None:
        self.files.append(staged)

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def relative_paths(self) -> List[str]:
        return [f.relative_path for f in self.files]

    def __len__(self) -> int:
        return len(self.files)
