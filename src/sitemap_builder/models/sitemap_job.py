"""Hierarchical sitemap generation job ORM model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    JSON,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sitemap_builder.models.base import Base
from sitemap_builder.models.ids import new_sitemap_job_id


class SitemapJobStatus(str, Enum):
    """Lifecycle of one sitemap generation run."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SitemapJob(Base):
    """Generated sitemap files and index for one batch."""

    __tablename__ = "sitemap_jobs"
    __table_args__ = (
        Index("ix_sitemap_jobs_batch_id", "batch_id"),
        Index("ix_sitemap_jobs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=new_sitemap_job_id
    )
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[SitemapJobStatus] = mapped_column(
        SqlEnum(SitemapJobStatus, name="sitemap_job_status"),
        nullable=False,
        default=SitemapJobStatus.PROCESSING,
    )
    sitemap_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    grouping_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    files: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    index_file_name: Mapped[str | None] = mapped_column(String(255))
    errors: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    total_groups: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    total_files: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    total_urls: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    output_dir: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


__all__ = ["SitemapJob", "SitemapJobStatus"]
