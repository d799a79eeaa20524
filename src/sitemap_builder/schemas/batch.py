"""Pydantic schemas for batch and file job resources."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sitemap_builder.models import BatchStatus, FileStatus
from sitemap_builder.schemas.conversion import ConversionStatisticsRead


class BatchProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    completed: int
    failed: int
    processing: int
    pending: int
    percentage: int


class FileJobRead(BaseModel):
    """Serialized file job without its upload bytes."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    original_name: str
    file_type: str
    size_bytes: int
    status: FileStatus
    statistics: ConversionStatisticsRead | None = None
    error_message: str | None = None
    attempts: int
    max_retries: int
    can_retry: bool
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None


class BatchRead(BaseModel):
    """Serialized batch snapshot."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: BatchStatus
    progress: BatchProgressRead
    files: list[FileJobRead]
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    override_reason: str | None = None
    max_concurrent_files: int
    max_retries: int


class BatchStatusPatch(BaseModel):
    """External status override.

    ``progress`` accepts the current object shape, the older
    ``totalFiles``/``completedFiles``/``failedFiles`` object, or a flat
    percentage.
    """

    status: str | None = None
    progress: dict[str, Any] | float | None = None
    files: list[dict[str, Any]] | None = None
    reason: str | None = Field(default=None, max_length=512)


__all__ = [
    "BatchProgressRead",
    "BatchRead",
    "BatchStatusPatch",
    "FileJobRead",
]
