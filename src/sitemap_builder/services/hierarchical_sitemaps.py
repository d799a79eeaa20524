"""Group completed batch artifacts into chunked sitemaps plus an index."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging
from pathlib import Path
from typing import Any

from sitemap_builder.config import get_settings
from sitemap_builder.database import SessionScopeFactory, session_scope
from sitemap_builder.models import SitemapJob, SitemapJobStatus
from sitemap_builder.models.ids import new_sitemap_job_id
from sitemap_builder.schemas.sitemap import GroupingConfig, SitemapConfig
from sitemap_builder.services.batch_tracker import BatchTracker, StoredArtifact
from sitemap_builder.services.errors import (
    NotFoundError,
    SitemapEntryError,
    TransientStorageError,
)
from sitemap_builder.services.grouping import (
    DEFAULT_GROUP_NAME,
    GroupingStrategy,
    fallback_group_name,
    sanitize_group_name,
)
from sitemap_builder.services.row_stream import UrlEntry, is_valid_lastmod
from sitemap_builder.services.sitemap_writer import (
    SitemapReference,
    UrlsetDefaults,
    build_sitemap_index,
    build_urlset,
    chunk_entries,
)
from sitemap_builder.utils.time import ensure_utc, utcnow

logger = logging.getLogger("sitemap_builder.hierarchical_sitemaps")


@dataclass(slots=True, frozen=True)
class GroupSitemapFile:
    """One generated ``sitemap_<group>_<n>.xml`` file."""

    group: str
    chunk: int
    file_name: str
    url_count: int
    lastmod: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "chunk": self.chunk,
            "file_name": self.file_name,
            "url_count": self.url_count,
            "lastmod": self.lastmod,
        }


@dataclass(slots=True, frozen=True)
class SitemapGenerationError:
    """Group or chunk that could not be rendered."""

    group: str
    file_id: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"group": self.group, "file_id": self.file_id, "message": self.message}


@dataclass(slots=True, frozen=True)
class HierarchicalSitemapResult:
    job_id: str
    total_groups: int
    total_files: int
    total_urls: int
    group_sitemaps: list[GroupSitemapFile] = field(default_factory=list)
    sitemap_index: str | None = None
    errors: list[SitemapGenerationError] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SitemapJobSnapshot:
    """Stored sitemap job as exposed to callers."""

    id: str
    batch_id: str
    status: SitemapJobStatus
    total_groups: int
    total_files: int
    total_urls: int
    files: list[GroupSitemapFile]
    index_file_name: str | None
    errors: list[SitemapGenerationError]
    created_at: datetime | None
    completed_at: datetime | None


@dataclass(slots=True)
class _GroupedEntry:
    file_id: str
    payload: Any


@dataclass(slots=True)
class _RenderOutcome:
    files: list[GroupSitemapFile] = field(default_factory=list)
    errors: list[SitemapGenerationError] = field(default_factory=list)
    index_file_name: str | None = None


def _group_key(payload: Any, grouping: GroupingStrategy | None) -> str:
    if grouping is GroupingStrategy.NONE:
        return DEFAULT_GROUP_NAME

    raw_group = payload.get("group") if isinstance(payload, Mapping) else None
    sanitized = sanitize_group_name(raw_group) if isinstance(raw_group, str) else ""
    if sanitized:
        return sanitized
    if grouping is None:
        return DEFAULT_GROUP_NAME
    return fallback_group_name(grouping)


def partition_artifacts(
    artifacts: Sequence[StoredArtifact],
    grouping: GroupingStrategy | None,
) -> dict[str, list[_GroupedEntry]]:
    """Partition artifact entries by group, keeping first-seen group order."""

    groups: dict[str, list[_GroupedEntry]] = {}
    for artifact in artifacts:
        for payload in artifact.document.get("data") or []:
            groups.setdefault(_group_key(payload, grouping), []).append(
                _GroupedEntry(file_id=artifact.file_id, payload=payload)
            )
    return groups


def _to_url_entry(item: _GroupedEntry) -> UrlEntry:
    if not isinstance(item.payload, Mapping):
        raise SitemapEntryError("Entry is not an object")
    try:
        entry = UrlEntry.from_dict(item.payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise SitemapEntryError(f"Malformed entry: {exc!r}") from exc
    if not isinstance(entry.loc, str):
        raise SitemapEntryError("Entry loc must be a string")
    return entry


def _newest_lastmod(entries: Sequence[UrlEntry]) -> str | None:
    # ISO dates sort lexicographically.
    candidates = [entry.lastmod for entry in entries if is_valid_lastmod(entry.lastmod)]
    return max(candidates) if candidates else None


def _render_group(
    group: str,
    items: Sequence[_GroupedEntry],
    *,
    output_dir: Path,
    defaults: UrlsetDefaults,
    max_per_file: int,
    outcome: _RenderOutcome,
) -> None:
    entries: list[UrlEntry] = []
    for item in items:
        try:
            entries.append(_to_url_entry(item))
        except SitemapEntryError as exc:
            outcome.errors.append(
                SitemapGenerationError(group=group, file_id=item.file_id, message=str(exc))
            )
            return

    chunked_items = chunk_entries(list(zip(items, entries)), max_per_file)
    for chunk_number, chunk in enumerate(chunked_items, start=1):
        chunk_entries_only = [entry for _, entry in chunk]
        file_name = f"sitemap_{group}_{chunk_number}.xml"
        try:
            content = build_urlset(chunk_entries_only, defaults)
        except SitemapEntryError as exc:
            offending = chunk[exc.index][0].file_id if exc.index is not None else None
            outcome.errors.append(
                SitemapGenerationError(
                    group=group,
                    file_id=offending,
                    message=f"{file_name}: {exc}",
                )
            )
            continue

        (output_dir / file_name).write_bytes(content)
        outcome.files.append(
            GroupSitemapFile(
                group=group,
                chunk=chunk_number,
                file_name=file_name,
                url_count=len(chunk_entries_only),
                lastmod=(
                    _newest_lastmod(chunk_entries_only) if defaults.include_lastmod else None
                ),
            )
        )


def render_sitemaps(
    groups: Mapping[str, Sequence[_GroupedEntry]],
    *,
    output_dir: Path,
    sitemap_config: SitemapConfig,
    grouping_config: GroupingConfig,
    base_url: str,
    max_per_file: int,
) -> _RenderOutcome:
    """Write group sitemaps and the index into ``output_dir``.

    Runs synchronously; callers move it off the event loop.
    """

    output_dir.mkdir(parents=True, exist_ok=True)
    defaults = UrlsetDefaults(
        include_lastmod=sitemap_config.include_lastmod,
        changefreq=sitemap_config.changefreq.value if sitemap_config.changefreq else None,
        priority=sitemap_config.priority,
    )
    outcome = _RenderOutcome()
    for group, items in groups.items():
        _render_group(
            group,
            items,
            output_dir=output_dir,
            defaults=defaults,
            max_per_file=max_per_file,
            outcome=outcome,
        )

    if outcome.files:
        index_content = build_sitemap_index(
            SitemapReference(loc=f"{base_url}/{item.file_name}", lastmod=item.lastmod)
            for item in outcome.files
        )
        (output_dir / grouping_config.index_file_name).write_bytes(index_content)
        outcome.index_file_name = grouping_config.index_file_name
    return outcome


class HierarchicalSitemapService:
    """Emit per-group sitemap files for a batch and track the job."""

    def __init__(
        self,
        session_factory: SessionScopeFactory = session_scope,
        *,
        tracker: BatchTracker | None = None,
        output_root: Path | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tracker = tracker or BatchTracker(session_factory)
        self._output_root = output_root

    @property
    def output_root(self) -> Path:
        return self._output_root or get_settings().SITEMAP_OUTPUT_DIR

    async def generate_hierarchical_sitemaps(
        self,
        batch_id: str,
        sitemap_config: SitemapConfig | None = None,
        grouping_config: GroupingConfig | None = None,
    ) -> HierarchicalSitemapResult:
        """Render every completed artifact of ``batch_id`` into grouped sitemaps.

        Raises ``NotFoundError`` before any work when the batch is unknown or
        has no completed files. Group and chunk failures are returned in
        ``errors`` while the remaining groups are still written.
        """

        sitemap_config = sitemap_config or SitemapConfig()
        grouping_config = grouping_config or GroupingConfig()
        settings = get_settings()

        artifacts = await self._tracker.list_completed_artifacts(batch_id)
        if not artifacts:
            raise NotFoundError("Completed files for batch", batch_id)

        job_id = new_sitemap_job_id()
        output_dir = self.output_root / job_id
        async with self._session_factory() as session:
            session.add(
                SitemapJob(
                    id=job_id,
                    batch_id=batch_id,
                    status=SitemapJobStatus.PROCESSING,
                    sitemap_config=sitemap_config.model_dump(mode="json"),
                    grouping_config=grouping_config.model_dump(mode="json"),
                    files=[],
                    errors=[],
                    output_dir=str(output_dir),
                    created_at=utcnow(),
                )
            )

        groups = partition_artifacts(artifacts, grouping_config.grouping)
        logger.info(
            "sitemap_generation_started",
            extra={
                "batch_id": batch_id,
                "job_id": job_id,
                "artifact_count": len(artifacts),
                "group_count": len(groups),
            },
        )

        try:
            outcome = await asyncio.to_thread(
                render_sitemaps,
                groups,
                output_dir=output_dir,
                sitemap_config=sitemap_config,
                grouping_config=grouping_config,
                base_url=grouping_config.base_url or settings.SITEMAP_BASE_URL,
                max_per_file=(
                    sitemap_config.max_urls_per_file or settings.SITEMAP_MAX_URLS_PER_FILE
                ),
            )
        except OSError as exc:
            await self._finish_job(
                job_id,
                status=SitemapJobStatus.FAILED,
                outcome=_RenderOutcome(
                    errors=[
                        SitemapGenerationError(
                            group="*", file_id=None, message=f"Storage error: {exc}"
                        )
                    ]
                ),
                total_groups=len(groups),
            )
            logger.exception(
                "sitemap_generation_storage_failed",
                extra={"batch_id": batch_id, "job_id": job_id},
            )
            raise TransientStorageError(f"Failed to write sitemap files: {exc}") from exc

        status = SitemapJobStatus.COMPLETED if outcome.files else SitemapJobStatus.FAILED
        await self._finish_job(
            job_id, status=status, outcome=outcome, total_groups=len(groups)
        )

        result = HierarchicalSitemapResult(
            job_id=job_id,
            total_groups=len(groups),
            total_files=len(outcome.files),
            total_urls=sum(item.url_count for item in outcome.files),
            group_sitemaps=outcome.files,
            sitemap_index=outcome.index_file_name,
            errors=outcome.errors,
        )
        log_method = logger.warning if result.errors else logger.info
        log_method(
            "sitemap_generation_completed",
            extra={
                "batch_id": batch_id,
                "job_id": job_id,
                "status": status.value,
                "total_groups": result.total_groups,
                "total_files": result.total_files,
                "total_urls": result.total_urls,
                "error_count": len(result.errors),
            },
        )
        return result

    async def get_sitemap_job(self, job_id: str) -> SitemapJobSnapshot:
        async with self._session_factory() as session:
            job = await session.get(SitemapJob, job_id)
            if job is None:
                raise NotFoundError("Sitemap job", job_id)
            return SitemapJobSnapshot(
                id=job.id,
                batch_id=job.batch_id,
                status=job.status,
                total_groups=job.total_groups,
                total_files=job.total_files,
                total_urls=job.total_urls,
                files=[GroupSitemapFile(**item) for item in job.files],
                index_file_name=job.index_file_name,
                errors=[SitemapGenerationError(**item) for item in job.errors],
                created_at=ensure_utc(job.created_at),
                completed_at=ensure_utc(job.completed_at),
            )

    async def list_sitemap_files(self, job_id: str) -> list[Path]:
        """Return on-disk paths of a job's sitemaps, index last."""

        async with self._session_factory() as session:
            job = await session.get(SitemapJob, job_id)
            if job is None:
                raise NotFoundError("Sitemap job", job_id)
            output_dir = Path(job.output_dir)
            names = [item["file_name"] for item in job.files]
            if job.index_file_name:
                names.append(job.index_file_name)

        return [output_dir / name for name in names if (output_dir / name).is_file()]

    async def _finish_job(
        self,
        job_id: str,
        *,
        status: SitemapJobStatus,
        outcome: _RenderOutcome,
        total_groups: int,
    ) -> None:
        async with self._session_factory() as session:
            job = await session.get(SitemapJob, job_id)
            if job is None:
                raise NotFoundError("Sitemap job", job_id)
            job.status = status
            job.files = [item.to_dict() for item in outcome.files]
            job.errors = [item.to_dict() for item in outcome.errors]
            job.index_file_name = outcome.index_file_name
            job.total_groups = total_groups
            job.total_files = len(outcome.files)
            job.total_urls = sum(item.url_count for item in outcome.files)
            job.completed_at = utcnow()


__all__ = [
    "GroupSitemapFile",
    "HierarchicalSitemapResult",
    "HierarchicalSitemapService",
    "SitemapGenerationError",
    "SitemapJobSnapshot",
    "partition_artifacts",
    "render_sitemaps",
]
