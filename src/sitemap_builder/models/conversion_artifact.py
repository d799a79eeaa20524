"""Persisted conversion output for one completed file."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitemap_builder.models.base import Base

if TYPE_CHECKING:
    from sitemap_builder.models.batch_job import BatchJob
    from sitemap_builder.models.file_job import FileJob


class ConversionArtifact(Base):
    """``{metadata, statistics, data}`` document produced by a conversion."""

    __tablename__ = "conversion_artifacts"
    __table_args__ = (
        UniqueConstraint("file_job_id", name="uq_conversion_artifacts_file_job_id"),
        Index("ix_conversion_artifacts_batch_id", "batch_id"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    batch_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("file_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    artifact_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False
    )
    statistics: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    data: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    batch: Mapped[BatchJob] = relationship(back_populates="artifacts")
    file_job: Mapped[FileJob] = relationship(back_populates="artifact")

    def to_document(self) -> dict[str, Any]:
        return {
            "metadata": self.artifact_metadata,
            "statistics": self.statistics,
            "data": self.data,
        }


__all__ = ["ConversionArtifact"]
