"""Persistent batch and file job state with explicit status transitions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Final

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitemap_builder.config import get_settings
from sitemap_builder.database import SessionScopeFactory, session_scope
from sitemap_builder.models import (
    BatchJob,
    BatchStatus,
    ConversionArtifact,
    FileJob,
    FileStatus,
)
from sitemap_builder.services.errors import InputValidationError, NotFoundError
from sitemap_builder.services.row_stream import ConversionStatistics
from sitemap_builder.utils.time import ensure_utc, utcnow

MIN_CONCURRENT_FILES: Final[int] = 1
MAX_CONCURRENT_FILES: Final[int] = 10
MIN_RETRIES: Final[int] = 0
MAX_RETRIES: Final[int] = 5

_ALLOWED_TRANSITIONS: Final[dict[FileStatus, frozenset[FileStatus]]] = {
    FileStatus.PENDING: frozenset({FileStatus.PROCESSING}),
    FileStatus.PROCESSING: frozenset({FileStatus.COMPLETED, FileStatus.ERROR}),
    FileStatus.ERROR: frozenset(),
    FileStatus.COMPLETED: frozenset({FileStatus.PROCESSING}),
}
_TERMINAL_FILE_STATUSES: Final[frozenset[FileStatus]] = frozenset(
    {FileStatus.COMPLETED, FileStatus.ERROR}
)
_LEGACY_STATUS_ALIASES: Final[dict[str, FileStatus]] = {
    "failed": FileStatus.ERROR,
    "uploaded": FileStatus.PENDING,
}

logger = logging.getLogger("sitemap_builder.batch_tracker")


def _half_up_percentage(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return min((200 * done + total) // (2 * total), 100)


@dataclass(slots=True, frozen=True)
class BatchProgress:
    """File counts for a batch plus the rounded completion percentage."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0
    pending: int = 0
    percentage: int = 0

    @classmethod
    def from_counts(
        cls,
        *,
        total: int,
        completed: int,
        failed: int,
        processing: int,
        pending: int | None = None,
    ) -> BatchProgress:
        if pending is None:
            pending = max(total - completed - failed - processing, 0)
        return cls(
            total=total,
            completed=completed,
            failed=failed,
            processing=processing,
            pending=pending,
            percentage=_half_up_percentage(completed + failed, total),
        )

    @classmethod
    def from_statuses(cls, statuses: Iterable[FileStatus]) -> BatchProgress:
        counts = {status: 0 for status in FileStatus}
        total = 0
        for status in statuses:
            counts[status] += 1
            total += 1
        return cls.from_counts(
            total=total,
            completed=counts[FileStatus.COMPLETED],
            failed=counts[FileStatus.ERROR],
            processing=counts[FileStatus.PROCESSING],
            pending=counts[FileStatus.PENDING],
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> BatchProgress:
        return cls(
            total=int(payload.get("total", 0)),
            completed=int(payload.get("completed", 0)),
            failed=int(payload.get("failed", 0)),
            processing=int(payload.get("processing", 0)),
            pending=int(payload.get("pending", 0)),
            percentage=int(payload.get("percentage", 0)),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "processing": self.processing,
            "pending": self.pending,
            "percentage": self.percentage,
        }


def _coerce_legacy_file_status(value: Any) -> FileStatus:
    if isinstance(value, FileStatus):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in _LEGACY_STATUS_ALIASES:
        return _LEGACY_STATUS_ALIASES[normalized]
    try:
        return FileStatus(normalized)
    except ValueError as exc:
        raise InputValidationError(f"Unknown file status: {value!r}") from exc


def progress_from_legacy(record: Mapping[str, Any]) -> BatchProgress:
    """Translate historical status payloads into a ``BatchProgress``.

    Older clients reported ``progress`` either as an object with
    ``totalFiles``/``completedFiles``/``failedFiles`` keys, as a flat
    percentage, or not at all with a ``files`` list carrying per-file
    ``status`` values.
    """

    files = record.get("files") or []
    if not isinstance(files, Sequence) or isinstance(files, (str, bytes)):
        raise InputValidationError("files must be a list")

    file_progress = BatchProgress.from_statuses(
        _coerce_legacy_file_status(
            item.get("status") if isinstance(item, Mapping) else item
        )
        for item in files
    )

    progress = record.get("progress")
    if isinstance(progress, Mapping):
        try:
            total = int(progress.get("totalFiles", progress.get("total", file_progress.total)))
            completed = int(progress.get("completedFiles", progress.get("completed", 0)))
            failed = int(progress.get("failedFiles", progress.get("failed", 0)))
            processing = int(
                progress.get("processingFiles", progress.get("processing", 0))
            )
        except (TypeError, ValueError) as exc:
            raise InputValidationError(f"Invalid progress payload: {exc}") from exc
        if min(total, completed, failed, processing) < 0:
            raise InputValidationError("Progress counts must be non-negative")
        if completed + failed + processing > total:
            raise InputValidationError("Progress counts exceed totalFiles")
        return BatchProgress.from_counts(
            total=total,
            completed=completed,
            failed=failed,
            processing=processing,
        )

    if isinstance(progress, (int, float)) and not isinstance(progress, bool):
        if not 0 <= progress <= 100:
            raise InputValidationError("Progress percentage must be between 0 and 100")
        return BatchProgress(
            total=file_progress.total,
            completed=file_progress.completed,
            failed=file_progress.failed,
            processing=file_progress.processing,
            pending=file_progress.pending,
            percentage=int(progress + 0.5),
        )

    if progress is not None:
        raise InputValidationError("progress must be an object or a number")

    return file_progress


def derive_batch_status(statuses: Iterable[FileStatus]) -> BatchStatus:
    """Return ``uploaded`` when nothing started, ``completed`` when all terminal."""

    status_list = list(statuses)
    if all(status is FileStatus.PENDING for status in status_list):
        return BatchStatus.UPLOADED
    if all(status in _TERMINAL_FILE_STATUSES for status in status_list):
        return BatchStatus.COMPLETED
    return BatchStatus.PROCESSING


@dataclass(slots=True, frozen=True)
class UploadedFile:
    """Raw upload handed to ``create_batch``."""

    original_name: str
    file_type: str
    content: bytes


@dataclass(slots=True, frozen=True)
class FileSnapshot:
    id: str
    position: int
    original_name: str
    file_type: str
    size_bytes: int
    status: FileStatus
    statistics: ConversionStatistics | None
    error_message: str | None
    attempts: int
    max_retries: int
    processing_started_at: datetime | None
    processing_completed_at: datetime | None

    @property
    def can_retry(self) -> bool:
        return self.status is FileStatus.ERROR and self.attempts < self.max_retries

    def is_stalled(self, now: datetime, stale_after_seconds: float) -> bool:
        """Whether a ``processing`` file has outlived the conversion timeout."""

        if self.status is not FileStatus.PROCESSING or self.processing_started_at is None:
            return False
        elapsed = (now - self.processing_started_at).total_seconds()
        return elapsed >= stale_after_seconds

    def can_resume(self, now: datetime, stale_after_seconds: float) -> bool:
        if self.attempts >= self.max_retries:
            return False
        return self.status is FileStatus.ERROR or self.is_stalled(now, stale_after_seconds)


@dataclass(slots=True, frozen=True)
class BatchSnapshot:
    """Point-in-time view of a batch returned to callers."""

    id: str
    status: BatchStatus
    progress: BatchProgress
    files: list[FileSnapshot] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    override_reason: str | None = None
    max_concurrent_files: int = 3
    max_retries: int = 2


@dataclass(slots=True, frozen=True)
class StoredUpload:
    """Upload bytes and type loaded for one file job."""

    file_id: str
    original_name: str
    file_type: str
    content: bytes


@dataclass(slots=True, frozen=True)
class StoredArtifact:
    file_id: str
    original_name: str
    document: dict[str, Any]


def _file_snapshot(file_job: FileJob) -> FileSnapshot:
    return FileSnapshot(
        id=file_job.id,
        position=file_job.position,
        original_name=file_job.original_name,
        file_type=file_job.file_type,
        size_bytes=file_job.size_bytes,
        status=file_job.status,
        statistics=(
            ConversionStatistics.from_dict(file_job.statistics)
            if file_job.statistics is not None
            else None
        ),
        error_message=file_job.error_message,
        attempts=file_job.attempts,
        max_retries=file_job.max_retries,
        processing_started_at=ensure_utc(file_job.processing_started_at),
        processing_completed_at=ensure_utc(file_job.processing_completed_at),
    )


def _validate_bounds(name: str, value: int, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputValidationError(f"{name} must be an integer")
    if not minimum <= value <= maximum:
        raise InputValidationError(f"{name} must be between {minimum} and {maximum}")
    return value


class BatchTracker:
    """Own batch/file status, progress derivation, and stored artifacts."""

    def __init__(self, session_factory: SessionScopeFactory = session_scope) -> None:
        self._session_factory = session_factory

    async def create_batch(
        self,
        files: Sequence[UploadedFile],
        *,
        max_concurrent_files: int | None = None,
        max_retries: int | None = None,
    ) -> BatchSnapshot:
        if not files:
            raise InputValidationError("At least one file is required")

        settings = get_settings()
        concurrency = _validate_bounds(
            "max_concurrent_files",
            settings.BATCH_MAX_CONCURRENT_FILES
            if max_concurrent_files is None
            else max_concurrent_files,
            MIN_CONCURRENT_FILES,
            MAX_CONCURRENT_FILES,
        )
        retries = _validate_bounds(
            "max_retries",
            settings.BATCH_MAX_RETRIES if max_retries is None else max_retries,
            MIN_RETRIES,
            MAX_RETRIES,
        )

        now = utcnow()
        async with self._session_factory() as session:
            batch = BatchJob(
                max_concurrent_files=concurrency,
                max_retries=retries,
                created_at=now,
                updated_at=now,
            )
            batch.files = [
                FileJob(
                    position=position,
                    original_name=upload.original_name,
                    file_type=upload.file_type,
                    size_bytes=len(upload.content),
                    content=upload.content,
                    status=FileStatus.PENDING,
                    attempts=0,
                    max_retries=retries,
                    uploaded_at=now,
                )
                for position, upload in enumerate(files)
            ]
            session.add(batch)
            await session.flush()
            snapshot = self._snapshot(batch)

        logger.info(
            "batch_created",
            extra={
                "batch_id": snapshot.id,
                "file_count": len(snapshot.files),
                "max_concurrent_files": concurrency,
                "max_retries": retries,
            },
        )
        return snapshot

    async def get_batch_status(self, batch_id: str) -> BatchSnapshot:
        async with self._session_factory() as session:
            batch = await self._get_batch(session, batch_id)
            return self._snapshot(batch)

    async def get_file(self, batch_id: str, file_id: str) -> FileSnapshot:
        async with self._session_factory() as session:
            return _file_snapshot(await self._get_file(session, batch_id, file_id))

    async def load_upload(self, batch_id: str, file_id: str) -> StoredUpload:
        async with self._session_factory() as session:
            file_job = await self._get_file(session, batch_id, file_id)
            content = await session.scalar(
                select(FileJob.content).where(FileJob.id == file_job.id)
            )
            return StoredUpload(
                file_id=file_job.id,
                original_name=file_job.original_name,
                file_type=file_job.file_type,
                content=content or b"",
            )

    async def update_file_status(
        self,
        batch_id: str,
        file_id: str,
        status: FileStatus | str,
        *,
        statistics: ConversionStatistics | None = None,
        error: str | None = None,
    ) -> FileSnapshot:
        """Apply one file transition and refresh the batch's derived state.

        Any administrative override on the batch is cleared, since the
        new file outcome is the latest known state.
        """

        try:
            target = FileStatus(status)
        except ValueError as exc:
            raise InputValidationError(f"Unknown file status: {status!r}") from exc
        async with self._session_factory() as session:
            batch = await self._get_batch(session, batch_id)
            file_job = self._find_file(batch, file_id)
            previous = file_job.status
            if target not in _ALLOWED_TRANSITIONS[previous]:
                raise InputValidationError(
                    f"Invalid file status transition: {previous.value} -> {target.value}"
                )

            now = utcnow()
            file_job.status = target
            if target is FileStatus.PROCESSING:
                file_job.processing_started_at = now
                file_job.processing_completed_at = None
                file_job.error_message = None
            elif target is FileStatus.COMPLETED:
                file_job.processing_completed_at = now
                file_job.error_message = None
                file_job.statistics = (statistics or ConversionStatistics()).to_dict()
            else:
                file_job.processing_completed_at = now
                file_job.error_message = (error or "Unknown error")[:2048]
                if statistics is not None:
                    file_job.statistics = statistics.to_dict()

            self._refresh_batch(batch, now)
            snapshot = _file_snapshot(file_job)

        log_method = logger.warning if target is FileStatus.ERROR else logger.info
        log_method(
            "file_status_updated",
            extra={
                "batch_id": batch_id,
                "file_id": file_id,
                "previous_status": previous.value,
                "status": target.value,
                "error": snapshot.error_message,
            },
        )
        return snapshot

    async def begin_retry(
        self,
        batch_id: str,
        file_id: str,
        *,
        stale_after_seconds: float | None = None,
    ) -> FileSnapshot:
        """Move a failed file back to ``processing`` if retries remain.

        With ``stale_after_seconds`` a file stuck in ``processing`` for at
        least that long (an abandoned, timed-out conversion) is retryable too.
        Every retry counts against ``max_retries``.
        """

        async with self._session_factory() as session:
            batch = await self._get_batch(session, batch_id)
            file_job = self._find_file(batch, file_id)
            now = utcnow()
            current = _file_snapshot(file_job)
            stalled = stale_after_seconds is not None and current.is_stalled(
                now, stale_after_seconds
            )
            if file_job.status is not FileStatus.ERROR and not stalled:
                raise InputValidationError(
                    f"Only files in error or stalled in processing can be retried "
                    f"(current status: {file_job.status.value})"
                )
            if file_job.attempts >= file_job.max_retries:
                raise InputValidationError(
                    f"Retry limit reached ({file_job.attempts}/{file_job.max_retries})"
                )

            file_job.attempts += 1
            file_job.status = FileStatus.PROCESSING
            file_job.processing_started_at = now
            file_job.processing_completed_at = None
            file_job.error_message = None
            self._refresh_batch(batch, now)
            snapshot = _file_snapshot(file_job)

        logger.info(
            "file_retry_started",
            extra={
                "batch_id": batch_id,
                "file_id": file_id,
                "attempt": snapshot.attempts,
                "max_retries": snapshot.max_retries,
                "stalled": stalled,
            },
        )
        return snapshot

    async def apply_external_status_update(
        self,
        batch_id: str,
        patch: Mapping[str, Any],
    ) -> BatchSnapshot:
        """Record an administrative status/progress override for a batch."""

        raw_status = patch.get("status")
        has_progress = patch.get("progress") is not None or bool(patch.get("files"))
        if raw_status is None and not has_progress:
            raise InputValidationError("Status update requires status or progress")

        status_override: BatchStatus | None = None
        if raw_status is not None:
            try:
                status_override = BatchStatus(str(raw_status).strip().lower())
            except ValueError as exc:
                raise InputValidationError(f"Unknown batch status: {raw_status!r}") from exc

        progress_override = progress_from_legacy(patch) if has_progress else None
        reason = patch.get("reason")

        async with self._session_factory() as session:
            batch = await self._get_batch(session, batch_id)
            now = utcnow()
            batch.status_override = status_override
            batch.progress_override = (
                progress_override.to_dict() if progress_override is not None else None
            )
            batch.override_reason = str(reason)[:512] if reason else None
            batch.override_at = now
            batch.updated_at = now
            if status_override is BatchStatus.COMPLETED and batch.completed_at is None:
                batch.completed_at = now
            snapshot = self._snapshot(batch)

        logger.info(
            "batch_status_overridden",
            extra={
                "batch_id": batch_id,
                "status": snapshot.status.value,
                "reason": snapshot.override_reason,
            },
        )
        return snapshot

    async def clear_batch(self, batch_id: str) -> None:
        async with self._session_factory() as session:
            batch = await self._get_batch(session, batch_id)
            await session.execute(
                delete(ConversionArtifact).where(ConversionArtifact.batch_id == batch.id)
            )
            await session.delete(batch)

        logger.info("batch_cleared", extra={"batch_id": batch_id})

    async def save_artifact(
        self,
        batch_id: str,
        file_id: str,
        document: Mapping[str, Any],
    ) -> None:
        """Store (or replace) the conversion artifact of one file."""

        async with self._session_factory() as session:
            file_job = await self._get_file(session, batch_id, file_id)
            await session.execute(
                delete(ConversionArtifact).where(
                    ConversionArtifact.file_job_id == file_job.id
                )
            )
            session.add(
                ConversionArtifact(
                    batch_id=batch_id,
                    file_job_id=file_job.id,
                    artifact_metadata=dict(document.get("metadata") or {}),
                    statistics=dict(document.get("statistics") or {}),
                    data=list(document.get("data") or []),
                    created_at=utcnow(),
                )
            )

    async def get_artifact(self, batch_id: str, file_id: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            file_job = await self._get_file(session, batch_id, file_id)
            artifact = await session.scalar(
                select(ConversionArtifact).where(
                    ConversionArtifact.file_job_id == file_job.id
                )
            )
            if artifact is None:
                raise NotFoundError("Artifact", file_id)
            return artifact.to_document()

    async def list_completed_artifacts(self, batch_id: str) -> list[StoredArtifact]:
        """Return artifacts of completed files in upload order."""

        async with self._session_factory() as session:
            await self._get_batch(session, batch_id)
            rows = await session.execute(
                select(FileJob.id, FileJob.original_name, ConversionArtifact)
                .join(ConversionArtifact, ConversionArtifact.file_job_id == FileJob.id)
                .where(
                    FileJob.batch_id == batch_id,
                    FileJob.status == FileStatus.COMPLETED,
                )
                .order_by(FileJob.position)
            )
            return [
                StoredArtifact(
                    file_id=file_id,
                    original_name=original_name,
                    document=artifact.to_document(),
                )
                for file_id, original_name, artifact in rows.all()
            ]

    @staticmethod
    async def _get_batch(session: AsyncSession, batch_id: str) -> BatchJob:
        batch = await session.get(BatchJob, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch

    async def _get_file(
        self, session: AsyncSession, batch_id: str, file_id: str
    ) -> FileJob:
        batch = await self._get_batch(session, batch_id)
        return self._find_file(batch, file_id)

    @staticmethod
    def _find_file(batch: BatchJob, file_id: str) -> FileJob:
        for file_job in batch.files:
            if file_job.id == file_id:
                return file_job
        raise NotFoundError("File", file_id)

    @staticmethod
    def _refresh_batch(batch: BatchJob, now: datetime) -> None:
        batch.status_override = None
        batch.progress_override = None
        batch.override_reason = None
        batch.override_at = None
        batch.updated_at = now
        derived = derive_batch_status(file_job.status for file_job in batch.files)
        if derived is BatchStatus.COMPLETED and batch.completed_at is None:
            batch.completed_at = now

    @staticmethod
    def _snapshot(batch: BatchJob) -> BatchSnapshot:
        statuses = [file_job.status for file_job in batch.files]
        status = batch.status_override or derive_batch_status(statuses)
        progress = (
            BatchProgress.from_dict(batch.progress_override)
            if batch.progress_override
            else BatchProgress.from_statuses(statuses)
        )
        return BatchSnapshot(
            id=batch.id,
            status=status,
            progress=progress,
            files=[_file_snapshot(file_job) for file_job in batch.files],
            created_at=ensure_utc(batch.created_at),
            updated_at=ensure_utc(batch.updated_at),
            completed_at=ensure_utc(batch.completed_at),
            override_reason=batch.override_reason,
            max_concurrent_files=batch.max_concurrent_files,
            max_retries=batch.max_retries,
        )


__all__ = [
    "BatchProgress",
    "BatchSnapshot",
    "BatchTracker",
    "FileSnapshot",
    "StoredArtifact",
    "StoredUpload",
    "UploadedFile",
    "derive_batch_status",
    "progress_from_legacy",
]
