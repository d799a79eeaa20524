"""Single-file and batch conversion of tabular uploads into URL artifacts."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from sitemap_builder.config import get_settings
from sitemap_builder.database import SessionScopeFactory, session_scope
from sitemap_builder.models import FileStatus
from sitemap_builder.schemas.conversion import ConversionConfig
from sitemap_builder.services.batch_tracker import BatchTracker, FileSnapshot
from sitemap_builder.services.errors import InputValidationError, NotFoundError
from sitemap_builder.services.pattern_resolver import (
    find_unmapped_columns,
    find_unresolvable_placeholders,
)
from sitemap_builder.services.row_sources import RowSource, open_row_source
from sitemap_builder.services.row_stream import (
    ConversionStatistics,
    SourceRow,
    UrlEntry,
    UrlPreview,
    UrlRowStream,
    preview_rows,
)
from sitemap_builder.utils.time import utcnow

logger = logging.getLogger("sitemap_builder.conversion")


@dataclass(slots=True, frozen=True)
class ConversionResult:
    """Entries, statistics, and the persisted artifact document of one file."""

    statistics: ConversionStatistics
    entries: list[UrlEntry]
    document: dict[str, Any]
    headers: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PreviewOutcome:
    preview: UrlPreview
    headers: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    batch_info: dict[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class FileConversionResult:
    file_id: str
    original_name: str
    status: FileStatus
    statistics: ConversionStatistics | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class FileConversionError:
    file_id: str
    original_name: str
    message: str


@dataclass(slots=True, frozen=True)
class BatchConversionResult:
    """Per-file outcomes plus statistics summed over completed files."""

    batch_id: str
    results: list[FileConversionResult]
    statistics: ConversionStatistics
    total_files: int
    errors: list[FileConversionError]
    metadata: dict[str, Any]


def build_artifact_metadata(
    config: ConversionConfig, headers: Sequence[str]
) -> dict[str, Any]:
    return {
        "url_pattern": config.url_pattern,
        "grouping": config.grouping.value,
        "include_lastmod": config.include_lastmod,
        "changefreq": config.changefreq.value if config.changefreq else None,
        "priority": config.priority,
        "processed_at": utcnow().isoformat(),
        "column_mapping": config.mapping,
        "original_headers": list(headers),
    }


def convert_rows(
    rows: Iterable[SourceRow],
    config: ConversionConfig,
    *,
    headers: Sequence[str] = (),
) -> ConversionResult:
    """Run one full pass of the row stream and build the artifact document."""

    stream = UrlRowStream(rows, config.url_pattern, config.mapping, config.to_options())
    entries = list(stream)
    statistics = stream.statistics
    document = {
        "metadata": build_artifact_metadata(config, headers),
        "statistics": statistics.to_dict(),
        "data": [entry.to_dict() for entry in entries],
    }
    return ConversionResult(
        statistics=statistics,
        entries=entries,
        document=document,
        headers=list(headers),
    )


def _require_mapped_headers(config: ConversionConfig, headers: Sequence[str]) -> None:
    if not headers:
        raise InputValidationError("File has no header row")
    missing = find_unmapped_columns(config.mapping, headers)
    if missing:
        raise InputValidationError(
            f"Mapped columns not found in file: {', '.join(missing)}",
            details=list(headers),
        )


def convert_source(source: RowSource, config: ConversionConfig) -> ConversionResult:
    headers = source.headers
    _require_mapped_headers(config, headers)
    return convert_rows(source, config, headers=headers)


def preview_source(source: RowSource, config: ConversionConfig) -> PreviewOutcome:
    headers = source.headers
    warnings: list[str] = []
    missing = find_unmapped_columns(config.mapping, headers)
    if missing:
        warnings.append(f"Mapped columns not found in file: {', '.join(missing)}")
    unresolvable = find_unresolvable_placeholders(
        config.url_pattern, config.mapping, headers
    )
    if unresolvable:
        warnings.append(
            f"Placeholders without a matching column: {', '.join(unresolvable)}"
        )

    preview = preview_rows(
        source, config.url_pattern, config.mapping, max_preview=config.max_preview
    )
    return PreviewOutcome(preview=preview, headers=list(headers), warnings=warnings)


def convert_upload_bytes(
    file_type: str, content: bytes, config: ConversionConfig
) -> ConversionResult:
    return convert_source(open_row_source(file_type, content), config)


def preview_upload_bytes(
    file_type: str, content: bytes, config: ConversionConfig
) -> PreviewOutcome:
    return preview_source(open_row_source(file_type, content), config)


class ConversionService:
    """Run conversions off the event loop and record batch file outcomes."""

    def __init__(
        self,
        session_factory: SessionScopeFactory = session_scope,
        *,
        tracker: BatchTracker | None = None,
        file_timeout_seconds: float | None = None,
    ) -> None:
        self._tracker = tracker or BatchTracker(session_factory)
        self._file_timeout_seconds = file_timeout_seconds

    @property
    def file_timeout_seconds(self) -> float:
        if self._file_timeout_seconds is not None:
            return self._file_timeout_seconds
        return float(get_settings().BATCH_FILE_TIMEOUT_SECONDS)

    async def preview_upload(
        self, file_type: str, content: bytes, config: ConversionConfig
    ) -> PreviewOutcome:
        return await asyncio.to_thread(preview_upload_bytes, file_type, content, config)

    async def convert_upload(
        self, file_type: str, content: bytes, config: ConversionConfig
    ) -> ConversionResult:
        result = await asyncio.to_thread(convert_upload_bytes, file_type, content, config)
        logger.info(
            "upload_converted",
            extra={"file_type": file_type, "statistics": result.statistics.to_dict()},
        )
        return result

    async def preview_batch(
        self, batch_id: str, config: ConversionConfig
    ) -> PreviewOutcome:
        """Preview the first file of a batch as representative of the rest."""

        snapshot = await self._tracker.get_batch_status(batch_id)
        if not snapshot.files:
            raise NotFoundError("Files for batch", batch_id)

        first_file = snapshot.files[0]
        upload = await self._tracker.load_upload(batch_id, first_file.id)
        outcome = await self.preview_upload(upload.file_type, upload.content, config)
        return PreviewOutcome(
            preview=outcome.preview,
            headers=outcome.headers,
            warnings=outcome.warnings,
            batch_info={
                "total_files": len(snapshot.files),
                "preview_file_id": first_file.id,
                "preview_file_name": first_file.original_name,
            },
        )

    async def convert_batch(
        self, batch_id: str, config: ConversionConfig
    ) -> BatchConversionResult:
        """Convert pending files and retry failed or stalled ones.

        Failed files and files abandoned in ``processing`` by a timeout are
        re-run through retry accounting, so they are skipped once
        ``max_retries`` is spent. ``reprocess`` also re-runs completed files.
        Files run concurrently up to the batch's ``max_concurrent_files``.
        A failing file is recorded as ``error`` and never stops its siblings.
        """

        snapshot = await self._tracker.get_batch_status(batch_id)
        fresh = {FileStatus.PENDING}
        if config.reprocess:
            fresh.add(FileStatus.COMPLETED)
        now = utcnow()
        targets: list[tuple[FileSnapshot, bool]] = []
        for file in snapshot.files:
            if file.status in fresh:
                targets.append((file, False))
            elif file.can_resume(now, self.file_timeout_seconds):
                targets.append((file, True))

        logger.info(
            "batch_conversion_started",
            extra={
                "batch_id": batch_id,
                "file_count": len(targets),
                "retry_count": sum(1 for _, retry in targets if retry),
                "skipped_count": len(snapshot.files) - len(targets),
                "max_concurrent_files": snapshot.max_concurrent_files,
                "reprocess": config.reprocess,
            },
        )

        semaphore = asyncio.Semaphore(snapshot.max_concurrent_files)

        async def run_with_limit(file: FileSnapshot, retry: bool) -> FileConversionResult:
            async with semaphore:
                if not retry:
                    return await self._run_file(batch_id, file, config)
                try:
                    file = await self._begin_retry(batch_id, file.id)
                except (InputValidationError, NotFoundError) as exc:
                    return FileConversionResult(
                        file_id=file.id,
                        original_name=file.original_name,
                        status=file.status,
                        error=str(exc),
                    )
                return await self._run_file(batch_id, file, config, already_processing=True)

        results = list(
            await asyncio.gather(*(run_with_limit(file, retry) for file, retry in targets))
        )

        statistics = ConversionStatistics()
        for result in results:
            if result.status is FileStatus.COMPLETED and result.statistics is not None:
                statistics = statistics + result.statistics
        errors = [
            FileConversionError(
                file_id=result.file_id,
                original_name=result.original_name,
                message=result.error or "Unknown error",
            )
            for result in results
            if result.error is not None
        ]

        batch_result = BatchConversionResult(
            batch_id=batch_id,
            results=results,
            statistics=statistics,
            total_files=len(results),
            errors=errors,
            metadata={
                "url_pattern": config.url_pattern,
                "grouping": config.grouping.value,
                "include_lastmod": config.include_lastmod,
                "processed_at": utcnow().isoformat(),
                "reprocess": config.reprocess,
            },
        )
        logger.info(
            "batch_conversion_completed",
            extra={
                "batch_id": batch_id,
                "total_files": batch_result.total_files,
                "error_count": len(errors),
                "statistics": statistics.to_dict(),
            },
        )
        return batch_result

    async def retry_file(
        self, batch_id: str, file_id: str, config: ConversionConfig
    ) -> FileConversionResult:
        """Re-run a failed or timed-out file at ``processing``."""

        file = await self._begin_retry(batch_id, file_id)
        return await self._run_file(batch_id, file, config, already_processing=True)

    async def _begin_retry(self, batch_id: str, file_id: str) -> FileSnapshot:
        return await self._tracker.begin_retry(
            batch_id, file_id, stale_after_seconds=self.file_timeout_seconds
        )

    async def _run_file(
        self,
        batch_id: str,
        file: FileSnapshot,
        config: ConversionConfig,
        *,
        already_processing: bool = False,
    ) -> FileConversionResult:
        if not already_processing:
            try:
                await self._tracker.update_file_status(
                    batch_id, file.id, FileStatus.PROCESSING
                )
            except (InputValidationError, NotFoundError) as exc:
                return FileConversionResult(
                    file_id=file.id,
                    original_name=file.original_name,
                    status=file.status,
                    error=str(exc),
                )

        try:
            result = await asyncio.wait_for(
                self._convert_stored(batch_id, file.id, config),
                timeout=self.file_timeout_seconds,
            )
            await self._tracker.save_artifact(batch_id, file.id, result.document)
            await self._tracker.update_file_status(
                batch_id,
                file.id,
                FileStatus.COMPLETED,
                statistics=result.statistics,
            )
        except TimeoutError:
            logger.warning(
                "file_conversion_timed_out",
                extra={
                    "batch_id": batch_id,
                    "file_id": file.id,
                    "timeout_seconds": self.file_timeout_seconds,
                },
            )
            return FileConversionResult(
                file_id=file.id,
                original_name=file.original_name,
                status=FileStatus.PROCESSING,
                error=f"Conversion timed out after {self.file_timeout_seconds:g}s",
            )
        except Exception as exc:  # noqa: BLE001
            return await self._record_failure(batch_id, file, exc)

        return FileConversionResult(
            file_id=file.id,
            original_name=file.original_name,
            status=FileStatus.COMPLETED,
            statistics=result.statistics,
        )

    async def _convert_stored(
        self, batch_id: str, file_id: str, config: ConversionConfig
    ) -> ConversionResult:
        upload = await self._tracker.load_upload(batch_id, file_id)
        return await asyncio.to_thread(
            convert_upload_bytes, upload.file_type, upload.content, config
        )

    async def _record_failure(
        self, batch_id: str, file: FileSnapshot, exc: Exception
    ) -> FileConversionResult:
        message = str(exc) or exc.__class__.__name__
        logger.warning(
            "file_conversion_failed",
            extra={
                "batch_id": batch_id,
                "file_id": file.id,
                "file_name": file.original_name,
                "error": message,
                "error_type": exc.__class__.__name__,
            },
        )
        try:
            await self._tracker.update_file_status(
                batch_id, file.id, FileStatus.ERROR, error=message
            )
        except (InputValidationError, NotFoundError):
            logger.exception(
                "file_failure_not_recorded",
                extra={"batch_id": batch_id, "file_id": file.id},
            )

        return FileConversionResult(
            file_id=file.id,
            original_name=file.original_name,
            status=FileStatus.ERROR,
            error=message,
        )


__all__ = [
    "BatchConversionResult",
    "ConversionResult",
    "ConversionService",
    "FileConversionError",
    "FileConversionResult",
    "PreviewOutcome",
    "build_artifact_metadata",
    "convert_rows",
    "convert_source",
    "convert_upload_bytes",
    "preview_source",
    "preview_upload_bytes",
]
