"""Forwarding harvests to the ingestion service.

The whole harvest goes out as one multipart POST: the commit metadata as
form-data parts and one repeated ``files`` part per staged file, named by
its repository-relative path. A harvest with no files is still sent, so the
ingestion service learns that the commit holds no Terraform sources. The
staging root is released before ``upload`` returns, whether the submission
succeeded, failed or timed out.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import httpx
import structlog

from tfbridge.errors import StagingIOError, UploadError
from tfbridge.harvest.models import HarvestManifest
from tfbridge.harvest.staging import StagingRoot

logger = structlog.get_logger(__name__)

FILE_FIELD = "files"
FILE_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a successful upload.

    Attributes:
        status_code: HTTP status returned by the ingestion service.
        file_count: Number of file parts submitted.
        attempts: Number of submission attempts made.
    """

    status_code: int
    file_count: int
    attempts: int = 1


class UploadOrchestrator:
    """Packages a harvest manifest and submits it downstream.

    Attributes:
        ingest_url: Endpoint accepting the multipart submission.
        customer_id: Tenant identifier sent as ``customerID``.
        timeout: Request timeout in seconds.
        max_retries: Extra attempts after a failed submission.
        base_delay: Base delay in seconds for exponential backoff.
    """

    def __init__(
        self,
        ingest_url: str,
        customer_id: str,
        timeout: float = 30.0,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ingest_url = ingest_url
        self.customer_id = customer_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._transport = transport

    def build_form(self, manifest: HarvestManifest) -> dict:
        """Build the non-file form fields for a manifest."""
        metadata = manifest.metadata
        return {
            "customerID": self.customer_id,
            "repoURL": metadata.clone_url,
            "branch": metadata.branch,
            "authorName": metadata.author_name,
            "authorEmail": metadata.author_email,
        }

    def build_files(self, manifest: HarvestManifest) -> List[Tuple[str, Tuple[str, bytes, str]]]:
        """Build one ``files`` part per staged file, read from the staging root.

        Raises:
            StagingIOError: If a staged file can no longer be read.
        """
        parts = []
        for staged in manifest.files:
            try:
                content = staged.read_bytes()
            except OSError as exc:
                raise StagingIOError(
                    f"Staged file {staged.relative_path} is unreadable: {exc}"
                ) from exc
            parts.append((FILE_FIELD, (staged.relative_path, content, FILE_CONTENT_TYPE)))
        return parts

    async def upload(self, manifest: HarvestManifest, staging_root: StagingRoot) -> UploadResult:
        """Submit a harvest and release its staging root.

        Args:
            manifest: The harvest to forward.
            staging_root: The staging root holding the manifest's files.
                It is released before this method returns.

        Returns:
            UploadResult describing the accepted submission.

        Raises:
            UploadError: If the ingestion service cannot be reached or
                responds with an error status.
            StagingIOError: If a staged file cannot be read.
        """
        try:
            fields = [(name, (None, value)) for name, value in self.build_form(manifest).items()]
            files = self.build_files(manifest)
            return await self._submit(manifest, fields + files, len(files))
        finally:
            staging_root.release()

    def _calculate_backoff(self, attempt: int) -> float:
        capped_delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, capped_delay)

    async def _submit(
        self,
        manifest: HarvestManifest,
        parts: List[Tuple[str, Any]],
        file_count: int,
    ) -> UploadResult:
        metadata = manifest.metadata
        last_error: Optional[UploadError] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    response = await client.post(self.ingest_url, files=parts)
                except httpx.TimeoutException as exc:
                    last_error = UploadError(f"Upload timed out: {exc}")
                except httpx.RequestError as exc:
                    last_error = UploadError(f"Upload request failed: {exc}")
                else:
                    if response.status_code < 400:
                        logger.info(
                            "upload_accepted",
                            repo=metadata.repository,
                            commit_id=metadata.commit_id,
                            status_code=response.status_code,
                            file_count=file_count,
                            attempt=attempt + 1,
                        )
                        return UploadResult(
                            status_code=response.status_code,
                            file_count=file_count,
                            attempts=attempt + 1,
                        )

                    last_error = UploadError(
                        f"Ingestion service returned {response.status_code}",
                        status_code=response.status_code,
                        response_body=response.text[:500],
                    )
                    # Client errors will not succeed on retry
                    if response.status_code < 500 and response.status_code not in (408, 429):
                        break

                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "upload_failed_retrying",
                        repo=metadata.repository,
                        commit_id=metadata.commit_id,
                        error=str(last_error),
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)

        logger.error(
            "upload_failed",
            repo=metadata.repository,
            commit_id=metadata.commit_id,
            error=str(last_error),
            status_code=last_error.status_code if last_error else None,
        )
        raise last_error
