"""Batch job ORM model grouping uploaded files under one id."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitemap_builder.models.base import Base
from sitemap_builder.models.ids import new_batch_id

if TYPE_CHECKING:
    from sitemap_builder.models.conversion_artifact import ConversionArtifact
    from sitemap_builder.models.file_job import FileJob


class BatchStatus(str, Enum):
    """Batch-level status, derived from file states unless overridden."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchJob(Base):
    """One upload batch containing many files."""

    __tablename__ = "batch_jobs"
    __table_args__ = (Index("ix_batch_jobs_created_at", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_batch_id)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    max_concurrent_files: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    status_override: Mapped[BatchStatus | None] = mapped_column(
        SqlEnum(BatchStatus, name="batch_status")
    )
    progress_override: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    override_reason: Mapped[str | None] = mapped_column(String(512))
    override_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    files: Mapped[list[FileJob]] = relationship(
        back_populates="batch",
        order_by="FileJob.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    artifacts: Mapped[list[ConversionArtifact]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["BatchJob", "BatchStatus"]
