"""Expiring download token ORM model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SqlEnum, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from sitemap_builder.models.base import Base
from sitemap_builder.models.ids import new_download_token


class DownloadKind(str, Enum):
    """Artifact families a token can resolve to."""

    FILE = "file"
    BATCH = "batch"
    SITEMAP = "sitemap"


class DownloadToken(Base):
    """Opaque token mapping to a downloadable artifact until it expires."""

    __tablename__ = "download_tokens"
    __table_args__ = (Index("ix_download_tokens_expires_at", "expires_at"),)

    token: Mapped[str] = mapped_column(
        String(128), primary_key=True, default=new_download_token
    )
    kind: Mapped[DownloadKind] = mapped_column(
        SqlEnum(DownloadKind, name="download_kind"),
        nullable=False,
    )
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


__all__ = ["DownloadKind", "DownloadToken"]
