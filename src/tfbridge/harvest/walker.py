"""Recursive repository harvest.

RepoTreeWalker lists a repository through the contents API, descends into
every directory and stages each file whose name ends with one of the
configured suffixes (Terraform ``.tf`` and ``.tf.json`` by default).

Traversal is pre-order in the order the provider lists entries, one remote
call at a time. Depth and total size are unbounded unless limits are
configured: a very large repository can exhaust API rate limits, memory or
disk. Any listing or fetch failure aborts the whole harvest; there are no
partial harvests.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import structlog

from tfbridge.errors import HarvestLimitError
from tfbridge.harvest.models import (
    CommitMetadata,
    HarvestManifest,
    NodeKind,
    StagedFile,
    TreeNode,
)
from tfbridge.harvest.staging import StagingRoot

logger = structlog.get_logger(__name__)

DEFAULT_SUFFIXES = (".tf", ".tf.json")


class ContentsClient(Protocol):
    """The part of the GitHub client the walker depends on."""

    async def list_contents(self, repo: str, path: str = "", ref: Optional[str] = None) -> list:
        ...

    async def get_file_content(self, repo: str, path: str, ref: Optional[str] = None) -> bytes:
        ...


@dataclass(frozen=True)
class HarvestLimits:
    """Optional bounds on one harvest.

    Attributes:
        max_depth: Deepest directory level to descend into (root is 0).
        max_total_bytes: Largest total size of staged files.
    """

    max_depth: Optional[int] = None
    max_total_bytes: Optional[int] = None


def matches_suffix(name: str, suffixes: Sequence[str]) -> bool:
    """Return True if a file name ends with any of the suffixes."""
    return any(name.endswith(suffix) for suffix in suffixes)


class RepoTreeWalker:
    """Walks a repository tree and stages matching files.

    Attributes:
        suffixes: File name suffixes selecting files to harvest.
        limits: Optional depth and size limits.
    """

    def __init__(
        self,
        suffixes: Sequence[str] = DEFAULT_SUFFIXES,
        limits: Optional[HarvestLimits] = None,
    ):
        self.suffixes = tuple(suffixes)
        self.limits = limits or HarvestLimits()

    def is_relevant(self, name: str) -> bool:
        return matches_suffix(name, self.suffixes)

    async def harvest(
        self,
        client: ContentsClient,
        repo: str,
        staging_root: StagingRoot,
        metadata: CommitMetadata,
        path: str = "",
        ref: Optional[str] = None,
    ) -> HarvestManifest:
        """Harvest matching files from a repository.

        Args:
            client: Client authenticated for the repository's installation.
            repo: Repository full name ("owner/name").
            staging_root: Where matching files are written.
            metadata: Commit metadata carried on the manifest.
            path: Directory to start from; empty for the repository root.
            ref: Optional commit to read. None reads the default branch.

        Returns:
            A manifest with every matching file in discovery order.

        Raises:
            ProviderAPIError: If a listing or fetch fails.
            StagingIOError: If a file cannot be staged or a limit is hit.
        """
        manifest = HarvestManifest(metadata=metadata, staging_root=staging_root.path)

        logger.info(
            "harvest_started",
            repo=repo,
            path=path or "/",
            commit_id=metadata.commit_id,
            staging_root=str(staging_root.path),
        )

        await self._walk(client, repo, staging_root, manifest, path.strip("/"), ref, depth=0)

        logger.info(
            "harvest_complete",
            repo=repo,
            commit_id=metadata.commit_id,
            file_count=len(manifest),
            total_bytes=manifest.total_bytes,
        )
        return manifest

    async def _walk(
        self,
        client: ContentsClient,
        repo: str,
        staging_root: StagingRoot,
        manifest: HarvestManifest,
        path: str,
        ref: Optional[str],
        depth: int,
    ) -> None:
        """List one directory and process its entries in listing order."""
        max_depth = self.limits.max_depth
        if max_depth is not None and depth > max_depth:
            raise HarvestLimitError("depth", depth, max_depth)

        entries = await client.list_contents(repo, path, ref=ref)

        for entry in entries:
            node = TreeNode.from_api(entry, parent_path=path)

            if node.kind is NodeKind.FILE:
                if self.is_relevant(node.name):
                    await self._stage_file(client, repo, staging_root, manifest, node, ref)
            elif node.kind is NodeKind.DIR:
                await self._walk(
                    client, repo, staging_root, manifest, node.path, ref, depth + 1
                )

    async def _stage_file(
        self,
        client: ContentsClient,
        repo: str,
        staging_root: StagingRoot,
        manifest: HarvestManifest,
        node: TreeNode,
        ref: Optional[str],
    ) -> None:
        content = await client.get_file_content(repo, node.path, ref=ref)

        max_bytes = self.limits.max_total_bytes
        if max_bytes is not None and manifest.total_bytes + len(content) > max_bytes:
            raise HarvestLimitError("size", manifest.total_bytes + len(content), max_bytes)

        local_path = staging_root.write(node.path, content)
        manifest.add(
            StagedFile(relative_path=node.path, local_path=local_path, size=len(content))
        )

        logger.debug("file_staged", repo=repo, path=node.path, size=len(content))
