"""File job ORM model tracking one uploaded file inside a batch."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    LargeBinary,
    String,
    func,
)
from sqlalchemy.orm import Mapped, deferred, mapped_column, relationship

from sitemap_builder.models.base import Base
from sitemap_builder.models.ids import new_file_id

if TYPE_CHECKING:
    from sitemap_builder.models.batch_job import BatchJob
    from sitemap_builder.models.conversion_artifact import ConversionArtifact


class FileStatus(str, Enum):
    """Per-file conversion lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class FileJob(Base):
    """Uploaded file and its conversion status."""

    __tablename__ = "file_jobs"
    __table_args__ = (
        Index("ix_file_jobs_batch_id_position", "batch_id", "position"),
        Index("ix_file_jobs_batch_id_status", "batch_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_file_id)
    batch_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_type: Mapped[str] = mapped_column(String(16), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[bytes] = deferred(mapped_column(LargeBinary, nullable=False))
    status: Mapped[FileStatus] = mapped_column(
        SqlEnum(FileStatus, name="file_status"),
        nullable=False,
        default=FileStatus.PENDING,
    )
    statistics: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(String(2048))
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    batch: Mapped[BatchJob] = relationship(back_populates="files")
    artifact: Mapped[ConversionArtifact | None] = relationship(
        back_populates="file_job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


__all__ = ["FileJob", "FileStatus"]
