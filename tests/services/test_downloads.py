"""Tests for expiring download tokens and packaged payloads."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import timedelta
from io import BytesIO
import json
from pathlib import Path
from zipfile import ZipFile

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitemap_builder.database import build_engine
from sitemap_builder.models import Base, DownloadKind, FileStatus
from sitemap_builder.services import downloads as downloads_module
from sitemap_builder.services.batch_tracker import BatchTracker, UploadedFile
from sitemap_builder.services.downloads import DownloadService
from sitemap_builder.services.errors import InputValidationError, NotFoundError
from sitemap_builder.services.hierarchical_sitemaps import HierarchicalSitemapService
from sitemap_builder.utils.time import utcnow

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


async def _session_scope_factory(tmp_path: Path) -> SessionScopeFactory:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'downloads.sqlite'}")
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


async def _build_services(
    tmp_path: Path,
) -> tuple[BatchTracker, HierarchicalSitemapService, DownloadService]:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    sitemaps = HierarchicalSitemapService(
        session_scope, tracker=tracker, output_root=tmp_path / "out"
    )
    downloads = DownloadService(
        session_scope, tracker=tracker, sitemaps=sitemaps, token_ttl_seconds=60
    )
    return tracker, sitemaps, downloads


async def _completed_batch(tracker: BatchTracker) -> tuple[str, list[str]]:
    batch = await tracker.create_batch(
        [
            UploadedFile("spring catalog.csv", "csv", b"URL\na\n"),
            UploadedFile("outlet.csv", "csv", b"URL\nb\n"),
        ]
    )
    file_ids = [file.id for file in batch.files]
    for index, file_id in enumerate(file_ids):
        await tracker.save_artifact(
            batch.id,
            file_id,
            {
                "metadata": {"url_pattern": "https://x.com/{link}"},
                "statistics": {"total_urls": 1, "valid_urls": 1},
                "data": [{"loc": f"https://x.com/{index}", "row_number": 1}],
            },
        )
        await tracker.update_file_status(batch.id, file_id, FileStatus.PROCESSING)
        await tracker.update_file_status(batch.id, file_id, FileStatus.COMPLETED)
    return batch.id, file_ids


@pytest.mark.asyncio
async def test_file_token_resolves_to_json_artifact(tmp_path: Path) -> None:
    tracker, _, downloads = await _build_services(tmp_path)
    batch_id, file_ids = await _completed_batch(tracker)

    issued = await downloads.issue_token(DownloadKind.FILE, file_ids[0], scope_id=batch_id)
    target = await downloads.resolve_token(issued.token)

    assert issued.kind is DownloadKind.FILE
    assert issued.expires_at - utcnow() <= timedelta(seconds=60)
    assert target is not None
    assert target.scope_id == batch_id

    payload = await downloads.build_payload(target)
    assert payload.filename == "spring catalog.json"
    assert payload.media_type == "application/json"
    document = json.loads(payload.content)
    assert document["data"] == [{"loc": "https://x.com/0", "row_number": 1}]


@pytest.mark.asyncio
async def test_batch_token_packages_all_completed_artifacts(tmp_path: Path) -> None:
    tracker, _, downloads = await _build_services(tmp_path)
    batch_id, _ = await _completed_batch(tracker)

    issued = await downloads.issue_token("batch", batch_id)
    target = await downloads.resolve_token(issued.token)
    assert target is not None
    payload = await downloads.build_payload(target)

    assert payload.filename == f"{batch_id}.zip"
    with ZipFile(BytesIO(payload.content)) as archive:
        assert archive.namelist() == ["spring catalog.json", "outlet.json"]


@pytest.mark.asyncio
async def test_sitemap_token_packages_generated_files(tmp_path: Path) -> None:
    tracker, sitemaps, downloads = await _build_services(tmp_path)
    batch_id, _ = await _completed_batch(tracker)
    result = await sitemaps.generate_hierarchical_sitemaps(batch_id)

    issued = await downloads.issue_token(DownloadKind.SITEMAP, result.job_id)
    target = await downloads.resolve_token(issued.token)
    assert target is not None
    payload = await downloads.build_payload(target)

    assert payload.filename == f"{result.job_id}.zip"
    with ZipFile(BytesIO(payload.content)) as archive:
        assert archive.namelist() == ["sitemap_products_1.xml", "sitemap.xml"]


@pytest.mark.asyncio
async def test_issue_token_requires_existing_target(tmp_path: Path) -> None:
    tracker, _, downloads = await _build_services(tmp_path)
    batch_id, _ = await _completed_batch(tracker)

    with pytest.raises(NotFoundError):
        await downloads.issue_token(DownloadKind.BATCH, "batch_missing")
    with pytest.raises(NotFoundError):
        await downloads.issue_token(DownloadKind.SITEMAP, "sitemap_missing")
    with pytest.raises(NotFoundError):
        await downloads.issue_token(DownloadKind.FILE, "file_missing", scope_id=batch_id)
    with pytest.raises(InputValidationError, match="batch_id is required"):
        await downloads.issue_token(DownloadKind.FILE, "file_missing")


@pytest.mark.asyncio
async def test_expired_and_unknown_tokens_resolve_to_none(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tracker, _, downloads = await _build_services(tmp_path)
    batch_id, _ = await _completed_batch(tracker)
    issued = await downloads.issue_token(DownloadKind.BATCH, batch_id)

    assert await downloads.resolve_token("not-a-token") is None

    later = utcnow() + timedelta(minutes=5)
    monkeypatch.setattr(downloads_module, "utcnow", lambda: later)

    assert await downloads.resolve_token(issued.token) is None
    monkeypatch.undo()
    assert await downloads.resolve_token(issued.token) is None
