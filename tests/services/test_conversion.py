"""Tests for single-upload and batch conversion orchestration."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitemap_builder.database import build_engine
from sitemap_builder.models import Base, BatchStatus, FileStatus
from sitemap_builder.schemas import ConversionConfig
from sitemap_builder.services.batch_tracker import BatchTracker, UploadedFile
from sitemap_builder.services.conversion import (
    ConversionResult,
    ConversionService,
    convert_upload_bytes,
    preview_upload_bytes,
)
from sitemap_builder.services.errors import InputValidationError, TransientStorageError

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

PRODUCTS_CSV = (
    b"URL,Category,Updated\n"
    b"hammer,Tools,2024-02-29\n"
    b"saw,Tools,2024-02-30\n"
    b",Garden,2024-01-01\n"
    b"hammer,Tools,2024-01-01\n"
    b"rake,Garden,\n"
)


async def _session_scope_factory(tmp_path: Path) -> SessionScopeFactory:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'conversion.sqlite'}")
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


def _config(**overrides: object) -> ConversionConfig:
    payload: dict[str, object] = {
        "urlPattern": "https://shop.example/{category}/{link}",
        "columnMapping": {"link": "URL", "category": "Category", "lastmod": "Updated"},
        "includeLastmod": True,
        "grouping": "category",
    }
    payload.update(overrides)
    return ConversionConfig.model_validate(payload)


def test_convert_upload_bytes_builds_artifact_document() -> None:
    result = convert_upload_bytes("csv", PRODUCTS_CSV, _config())

    assert result.statistics.to_dict() == {
        "total_urls": 5,
        "valid_urls": 3,
        "excluded_urls": 1,
        "duplicate_urls": 1,
        "invalid_lastmod": 1,
    }
    assert [entry["loc"] for entry in result.document["data"]] == [
        "https://shop.example/Tools/hammer",
        "https://shop.example/Tools/saw",
        "https://shop.example/Garden/rake",
    ]
    assert result.document["data"][0]["lastmod"] == "2024-02-29"
    assert "lastmod" not in result.document["data"][1]
    assert [entry["group"] for entry in result.document["data"]] == [
        "tools",
        "tools",
        "garden",
    ]

    metadata = result.document["metadata"]
    assert metadata["grouping"] == "category"
    assert metadata["original_headers"] == ["URL", "Category", "Updated"]
    assert metadata["column_mapping"]["link"] == "URL"


def test_convert_upload_bytes_requires_mapped_columns() -> None:
    with pytest.raises(InputValidationError, match="Mapped columns not found in file: Updated"):
        convert_upload_bytes("csv", b"URL,Category\nhammer,Tools\n", _config())


def test_convert_upload_bytes_requires_header_row() -> None:
    with pytest.raises(InputValidationError, match="no header row"):
        convert_upload_bytes("csv", b"\n", _config())


def test_preview_upload_bytes_warns_about_missing_columns() -> None:
    outcome = preview_upload_bytes(
        "csv",
        b"URL\nhammer\n",
        _config(urlPattern="https://shop.example/{link}/{sku}", maxPreview=1),
    )

    assert outcome.headers == ["URL"]
    assert outcome.warnings == [
        "Mapped columns not found in file: Category, Updated",
        "Placeholders without a matching column: sku",
    ]
    assert outcome.preview.total_sampled == 1
    assert outcome.preview.excluded_reasons == ["Missing required fields: sku"]


def test_conversion_config_rejects_invalid_pattern_and_priority() -> None:
    with pytest.raises(ValueError, match="protocol"):
        _config(urlPattern="shop.example/{link}")
    with pytest.raises(ValueError, match="priority"):
        _config(priority="2")


@pytest.mark.asyncio
async def test_convert_batch_isolates_failing_files(tmp_path: Path) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch(
        [
            UploadedFile("good.csv", "csv", PRODUCTS_CSV),
            UploadedFile("broken.csv", "csv", b"Name\nhammer\n"),
            UploadedFile("more.csv", "csv", b"URL,Category,Updated\nshovel,Garden,\n"),
        ],
        max_concurrent_files=2,
    )

    result = await service.convert_batch(batch.id, _config())

    assert [item.status for item in result.results] == [
        FileStatus.COMPLETED,
        FileStatus.ERROR,
        FileStatus.COMPLETED,
    ]
    assert result.total_files == 3
    assert result.statistics.valid_urls == 4
    assert result.statistics.total_urls == 6
    assert len(result.errors) == 1
    assert result.errors[0].original_name == "broken.csv"
    assert "Mapped columns not found" in result.errors[0].message

    status = await tracker.get_batch_status(batch.id)
    assert status.status is BatchStatus.COMPLETED
    assert status.progress.failed == 1
    assert status.files[1].error_message is not None

    document = await tracker.get_artifact(batch.id, batch.files[0].id)
    assert len(document["data"]) == 3


@pytest.mark.asyncio
async def test_convert_batch_skips_completed_files_unless_reprocessing(
    tmp_path: Path,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch([UploadedFile("good.csv", "csv", PRODUCTS_CSV)])

    await service.convert_batch(batch.id, _config())
    skipped = await service.convert_batch(batch.id, _config())
    reprocessed = await service.convert_batch(batch.id, _config(reprocess=True, grouping="none"))

    assert skipped.total_files == 0
    assert reprocessed.total_files == 1
    document = await tracker.get_artifact(batch.id, batch.files[0].id)
    assert {entry["group"] for entry in document["data"]} == {"products"}


@pytest.mark.asyncio
async def test_convert_batch_leaves_timed_out_file_processing(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker, file_timeout_seconds=0.05)
    batch = await tracker.create_batch([UploadedFile("slow.csv", "csv", PRODUCTS_CSV)])

    async def _slow_convert(*_: object) -> ConversionResult:
        await asyncio.sleep(5)
        raise AssertionError("conversion should have been cancelled")

    monkeypatch.setattr(service, "_convert_stored", _slow_convert)

    result = await service.convert_batch(batch.id, _config())

    assert result.results[0].status is FileStatus.PROCESSING
    assert result.results[0].error == "Conversion timed out after 0.05s"
    status = await tracker.get_batch_status(batch.id)
    assert status.status is BatchStatus.PROCESSING
    assert status.files[0].status is FileStatus.PROCESSING


@pytest.mark.asyncio
async def test_retry_file_resolves_timed_out_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker, file_timeout_seconds=0.05)
    batch = await tracker.create_batch([UploadedFile("slow.csv", "csv", PRODUCTS_CSV)])
    file_id = batch.files[0].id

    real_convert = service._convert_stored

    async def _slow_convert(*_: object) -> ConversionResult:
        await asyncio.sleep(5)
        raise AssertionError("conversion should have been cancelled")

    monkeypatch.setattr(service, "_convert_stored", _slow_convert)
    timed_out = await service.convert_batch(batch.id, _config())
    assert timed_out.results[0].status is FileStatus.PROCESSING

    monkeypatch.setattr(service, "_convert_stored", real_convert)
    retried = await service.retry_file(batch.id, file_id, _config())

    assert retried.status is FileStatus.COMPLETED
    file = await tracker.get_file(batch.id, file_id)
    assert file.status is FileStatus.COMPLETED
    assert file.attempts == 1
    status = await tracker.get_batch_status(batch.id)
    assert status.status is BatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_convert_batch_picks_up_timed_out_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker, file_timeout_seconds=0.05)
    batch = await tracker.create_batch([UploadedFile("slow.csv", "csv", PRODUCTS_CSV)])

    real_convert = service._convert_stored

    async def _slow_convert(*_: object) -> ConversionResult:
        await asyncio.sleep(5)
        raise AssertionError("conversion should have been cancelled")

    monkeypatch.setattr(service, "_convert_stored", _slow_convert)
    await service.convert_batch(batch.id, _config())

    monkeypatch.setattr(service, "_convert_stored", real_convert)
    rerun = await service.convert_batch(batch.id, _config())

    assert rerun.total_files == 1
    assert rerun.results[0].status is FileStatus.COMPLETED
    file = await tracker.get_file(batch.id, batch.files[0].id)
    assert file.attempts == 1


@pytest.mark.asyncio
async def test_convert_batch_counts_reruns_of_failed_files_against_retry_limit(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch(
        [UploadedFile("flaky.csv", "csv", PRODUCTS_CSV)], max_retries=1
    )
    file_id = batch.files[0].id
    calls: list[str] = []

    async def _failing_convert(_: str, target_id: str, __: object) -> ConversionResult:
        calls.append(target_id)
        raise TransientStorageError("upload store unavailable")

    monkeypatch.setattr(service, "_convert_stored", _failing_convert)

    first = await service.convert_batch(batch.id, _config())
    second = await service.convert_batch(batch.id, _config())
    exhausted = await service.convert_batch(batch.id, _config())

    assert first.results[0].status is FileStatus.ERROR
    assert second.results[0].status is FileStatus.ERROR
    assert exhausted.total_files == 0
    assert calls == [file_id, file_id]
    file = await tracker.get_file(batch.id, file_id)
    assert file.attempts == 1
    assert file.can_retry is False


@pytest.mark.asyncio
async def test_convert_batch_never_reruns_failed_files_without_retries(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch(
        [UploadedFile("broken.csv", "csv", b"Name\nhammer\n")], max_retries=0
    )

    results = [await service.convert_batch(batch.id, _config()) for _ in range(4)]

    assert [result.total_files for result in results] == [1, 0, 0, 0]
    file = await tracker.get_file(batch.id, batch.files[0].id)
    assert file.status is FileStatus.ERROR
    assert file.attempts == 0


@pytest.mark.asyncio
async def test_retry_file_reruns_failed_conversion(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch([UploadedFile("flaky.csv", "csv", PRODUCTS_CSV)])
    file_id = batch.files[0].id

    real_convert = service._convert_stored

    async def _failing_convert(*_: object) -> ConversionResult:
        raise TransientStorageError("upload store unavailable")

    monkeypatch.setattr(service, "_convert_stored", _failing_convert)
    first = await service.convert_batch(batch.id, _config())
    assert first.results[0].status is FileStatus.ERROR
    assert first.results[0].error == "upload store unavailable"

    monkeypatch.setattr(service, "_convert_stored", real_convert)
    retried = await service.retry_file(batch.id, file_id, _config())

    assert retried.status is FileStatus.COMPLETED
    assert retried.statistics is not None
    assert retried.statistics.valid_urls == 3
    file = await tracker.get_file(batch.id, file_id)
    assert file.attempts == 1
    assert file.status is FileStatus.COMPLETED


@pytest.mark.asyncio
async def test_retry_file_requires_error_status(tmp_path: Path) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch([UploadedFile("good.csv", "csv", PRODUCTS_CSV)])

    with pytest.raises(InputValidationError, match="Only files in error"):
        await service.retry_file(batch.id, batch.files[0].id, _config())


@pytest.mark.asyncio
async def test_preview_batch_uses_first_file(tmp_path: Path) -> None:
    session_scope = await _session_scope_factory(tmp_path)
    tracker = BatchTracker(session_scope)
    service = ConversionService(session_scope, tracker=tracker)
    batch = await tracker.create_batch(
        [
            UploadedFile("first.csv", "csv", PRODUCTS_CSV),
            UploadedFile("second.csv", "csv", b"URL\nx\n"),
        ]
    )

    outcome = await service.preview_batch(batch.id, _config(maxPreview=2))

    assert outcome.batch_info == {
        "total_files": 2,
        "preview_file_id": batch.files[0].id,
        "preview_file_name": "first.csv",
    }
    assert [item.url for item in outcome.preview.sample_urls] == [
        "https://shop.example/Tools/hammer",
        "https://shop.example/Tools/saw",
    ]
    assert outcome.warnings == []
