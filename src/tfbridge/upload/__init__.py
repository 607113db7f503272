"""Multipart upload of harvested files to the ingestion service."""

from tfbridge.upload.orchestrator import UploadOrchestrator, UploadResult

__all__ = ["UploadOrchestrator", "UploadResult"]
