"""Repository harvesting.

Walks a repository tree through the contents API and stages matching
files in a per-attempt staging root that is always removed afterwards.
"""

from tfbridge.harvest.models import (
    CommitMetadata,
    HarvestManifest,
    NodeKind,
    StagedFile,
    TreeNode,
)
from tfbridge.harvest.staging import StagingArea, StagingRoot
from tfbridge.harvest.walker import HarvestLimits, RepoTreeWalker, matches_suffix

__all__ = [
    "CommitMetadata",
    "HarvestLimits",
    "HarvestManifest",
    "NodeKind",
    "RepoTreeWalker",
    "StagedFile",
    "StagingArea",
    "StagingRoot",
    "TreeNode",
    "matches_suffix",
]
