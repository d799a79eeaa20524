"""Retention purge for batches, sitemap jobs, and download tokens."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from pathlib import Path
import shutil

from sqlalchemy import delete, select

from sitemap_builder.config import get_settings
from sitemap_builder.database import SessionScopeFactory, session_scope
from sitemap_builder.models import (
    BatchJob,
    ConversionArtifact,
    DownloadToken,
    FileJob,
    SitemapJob,
)
from sitemap_builder.utils.time import utcnow

logger = logging.getLogger("sitemap_builder.cleanup")


@dataclass(slots=True, frozen=True)
class PurgeResult:
    batches: int = 0
    sitemap_jobs: int = 0
    download_tokens: int = 0
    removed_directories: int = 0

    @property
    def total(self) -> int:
        return self.batches + self.sitemap_jobs + self.download_tokens


def _remove_directories(paths: list[Path]) -> int:
    removed = 0
    for path in paths:
        if not path.is_dir():
            continue
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.warning(
                "sitemap_directory_removal_failed",
                extra={"path": str(path), "error": str(exc)},
            )
            continue
        removed += 1
    return removed


class CleanupService:
    """Delete job records older than the retention window."""

    def __init__(
        self,
        session_factory: SessionScopeFactory = session_scope,
        *,
        record_ttl_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._record_ttl_seconds = record_ttl_seconds

    @property
    def record_ttl(self) -> timedelta:
        seconds = self._record_ttl_seconds
        if seconds is None:
            seconds = get_settings().JOB_RECORD_TTL_SECONDS
        return timedelta(seconds=seconds)

    async def purge_expired(self, now: datetime | None = None) -> PurgeResult:
        now = now or utcnow()
        cutoff = now - self.record_ttl

        async with self._session_factory() as session:
            batch_ids = list(
                (
                    await session.scalars(
                        select(BatchJob.id).where(BatchJob.created_at < cutoff)
                    )
                ).all()
            )
            if batch_ids:
                await session.execute(
                    delete(ConversionArtifact).where(
                        ConversionArtifact.batch_id.in_(batch_ids)
                    )
                )
                await session.execute(delete(FileJob).where(FileJob.batch_id.in_(batch_ids)))
                await session.execute(delete(BatchJob).where(BatchJob.id.in_(batch_ids)))

            expired_jobs = (
                await session.execute(
                    select(SitemapJob.id, SitemapJob.output_dir).where(
                        SitemapJob.created_at < cutoff
                    )
                )
            ).all()
            if expired_jobs:
                await session.execute(
                    delete(SitemapJob).where(
                        SitemapJob.id.in_([job_id for job_id, _ in expired_jobs])
                    )
                )

            token_result = await session.execute(
                delete(DownloadToken).where(DownloadToken.expires_at <= now)
            )
            expired_tokens = token_result.rowcount or 0

        removed_directories = await asyncio.to_thread(
            _remove_directories, [Path(output_dir) for _, output_dir in expired_jobs]
        )

        result = PurgeResult(
            batches=len(batch_ids),
            sitemap_jobs=len(expired_jobs),
            download_tokens=expired_tokens,
            removed_directories=removed_directories,
        )
        logger.info(
            "expired_records_purged",
            extra={
                "batches": result.batches,
                "sitemap_jobs": result.sitemap_jobs,
                "download_tokens": result.download_tokens,
                "removed_directories": result.removed_directories,
            },
        )
        return result


__all__ = ["CleanupService", "PurgeResult"]
