"""Local staging for harvested files.

Each harvest attempt gets its own staging root under a configurable base
path. Roots are named after the commit id plus a random suffix so two
deliveries for the same commit (duplicates, replays) never write into the
same directory.

A StagingRoot is acquired with ``StagingArea.create`` and released with
``release()`` or by leaving its ``with`` block. Release is idempotent, so
the directory is deleted exactly once whichever path gets there first.
"""

import re
import secrets
import shutil
import time
from pathlib import Path, PurePosixPath
from typing import Optional

import structlog

from tfbridge.errors import StagingIOError

logger = structlog.get_logger(__name__)

STAGING_DIR_PERMISSIONS = 0o700
STAGING_PREFIX = "temp-"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class StagingRoot:
    """One staging directory for one harvest attempt.

    Attributes:
        path: Absolute path of the staging directory.
        commit_id: Commit the staged files belong to.
    """

    def __init__(self, path: Path, commit_id: str):
        self.path = path
        self.commit_id = commit_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def resolve(self, relative_path: str) -> Path:
        """Map a repository-relative path to a path inside this root.

        Args:
            relative_path: Path relative to the repository root, using "/".

        Returns:
            The absolute staging path for the file.

        Raises:
            StagingIOError: If the path is absolute or escapes the root.
        """
        candidate = PurePosixPath(relative_path)
        if (
            not relative_path
            or candidate.is_absolute()
            or any(part in ("", ".", "..") for part in candidate.parts)
        ):
            raise StagingIOError(f"Refusing to stage unsafe path: {relative_path!r}")
        return self.path.joinpath(*candidate.parts)

    def write(self, relative_path: str, content: bytes) -> Path:
        """Write file content under the root, creating parent directories.

        Raises:
            StagingIOError: If the path is unsafe or the write fails.
        """
        if self._released:
            raise StagingIOError(f"Staging root {self.path} was already released")

        target = self.resolve(relative_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise StagingIOError(f"Failed to stage {relative_path}: {exc}") from exc
        return target

    def release(self) -> None:
        """Delete the staging directory and everything in it.

        Safe to call more than once; only the first call removes anything.
        """
        if self._released:
            return
        self._released = True

        try:
            shutil.rmtree(self.path)
            logger.info("staging_root_removed", path=str(self.path), commit_id=self.commit_id)
        except FileNotFoundError:
            logger.debug("staging_root_already_absent", path=str(self.path))
        except OSError:
            logger.exception("staging_root_removal_failed", path=str(self.path))

    def __enter__(self) -> "StagingRoot":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class StagingArea:
    """Creates and cleans up staging roots under one base path.

    Attributes:
        base_path: Directory under which staging roots are created.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def create(self, commit_id: str) -> StagingRoot:
        """Create a fresh staging root for one harvest attempt.

        Args:
            commit_id: Commit being harvested.

        Returns:
            The new StagingRoot. The caller owns its release.

        Raises:
            StagingIOError: If the directory cannot be created.
        """
        path = self.base_path / self._directory_name(commit_id)
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            path.mkdir(mode=STAGING_DIR_PERMISSIONS)
            path.chmod(STAGING_DIR_PERMISSIONS)
        except OSError as exc:
            raise StagingIOError(f"Failed to create staging root at {path}: {exc}") from exc

        logger.debug("staging_root_created", path=str(path), commit_id=commit_id)
        return StagingRoot(path=path, commit_id=commit_id)

    def cleanup_stale(self, max_age_seconds: int, now: Optional[float] = None) -> int:
        """Remove staging roots left behind by a crashed process.

        Args:
            max_age_seconds: Roots modified longer ago than this are removed.
            now: Current Unix time, for tests.

        Returns:
            Number of staging roots removed.
        """
        if not self.base_path.exists():
            return 0

        threshold = (now if now is not None else time.time()) - max_age_seconds
        removed_count = 0

        for entry in self.base_path.iterdir():
            if not entry.is_dir() or not entry.name.startswith(STAGING_PREFIX):
                continue
            if entry.stat().st_mtime >= threshold:
                continue
            try:
                shutil.rmtree(entry)
                removed_count += 1
            except OSError:
                logger.exception("stale_staging_root_removal_failed", path=str(entry))

        logger.info("stale_staging_cleanup_complete", removed_count=removed_count)
        return removed_count

    @staticmethod
    def _directory_name(commit_id: str) -> str:
        safe_commit = _UNSAFE_CHARS.sub("_", commit_id) or "unknown"
        return f"{STAGING_PREFIX}{safe_commit}-{secrets.token_hex(4)}"
