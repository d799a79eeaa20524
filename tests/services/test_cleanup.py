"""Tests for the retention purge of expired records."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitemap_builder.database import build_engine
from sitemap_builder.models import (
    Base,
    BatchJob,
    ConversionArtifact,
    DownloadKind,
    DownloadToken,
    FileJob,
    FileStatus,
    SitemapJob,
)
from sitemap_builder.services.batch_tracker import BatchTracker, UploadedFile
from sitemap_builder.services.cleanup import CleanupService
from sitemap_builder.services.downloads import DownloadService
from sitemap_builder.services.hierarchical_sitemaps import HierarchicalSitemapService
from sitemap_builder.utils.time import utcnow

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


async def _session_scope_factory(tmp_path: Path) -> SessionScopeFactory:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cleanup.sqlite'}")
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    return scoped_session


async def _count(session_scope: SessionScopeFactory, model: type) -> int:
    async with session_scope() as session:
        return int(await session.scalar(select(func.count()).select_from(model)) or 0)


@pytest.mark.asyncio
async def test_purge_expired_removes_old_records_and_output(tmp_path: Path) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    sitemaps = HierarchicalSitemapService(
        session_scope, tracker=tracker, output_root=tmp_path / "out"
    )
    downloads = DownloadService(
        session_scope, tracker=tracker, sitemaps=sitemaps, token_ttl_seconds=60
    )
    batch = await tracker.create_batch([UploadedFile("a.csv", "csv", b"URL\na\n")])
    file_id = batch.files[0].id
    await tracker.save_artifact(batch.id, file_id, {"data": [{"loc": "https://x.com/a"}]})
    await tracker.update_file_status(batch.id, file_id, FileStatus.PROCESSING)
    await tracker.update_file_status(batch.id, file_id, FileStatus.COMPLETED)
    result = await sitemaps.generate_hierarchical_sitemaps(batch.id)
    await downloads.issue_token(DownloadKind.BATCH, batch.id)
    output_dir = tmp_path / "out" / result.job_id
    assert output_dir.is_dir()

    cleanup = CleanupService(session_scope, record_ttl_seconds=3600)

    untouched = await cleanup.purge_expired()
    assert untouched.total == 0
    assert await _count(session_scope, BatchJob) == 1

    purged = await cleanup.purge_expired(now=utcnow() + timedelta(hours=2))

    assert purged.batches == 1
    assert purged.sitemap_jobs == 1
    assert purged.download_tokens == 1
    assert purged.removed_directories == 1
    assert not output_dir.exists()
    for model in (BatchJob, FileJob, ConversionArtifact, SitemapJob, DownloadToken):
        assert await _count(session_scope, model) == 0
