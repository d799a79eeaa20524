"""Expiring download tokens and the payloads they resolve to."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from io import BytesIO
import json
import logging
from pathlib import Path, PurePath
from typing import Any
from zipfile import ZIP_DEFLATED, ZipFile

from sitemap_builder.config import get_settings
from sitemap_builder.database import SessionScopeFactory, session_scope
from sitemap_builder.models import DownloadKind, DownloadToken
from sitemap_builder.services.batch_tracker import BatchTracker
from sitemap_builder.services.errors import InputValidationError, NotFoundError
from sitemap_builder.services.hierarchical_sitemaps import HierarchicalSitemapService
from sitemap_builder.utils.time import ensure_utc, utcnow

JSON_MEDIA_TYPE = "application/json"
ZIP_MEDIA_TYPE = "application/zip"

logger = logging.getLogger("sitemap_builder.downloads")


@dataclass(slots=True, frozen=True)
class IssuedToken:
    token: str
    kind: DownloadKind
    expires_at: datetime


@dataclass(slots=True, frozen=True)
class DownloadTarget:
    """What a token points at; ``scope_id`` is the batch of a file target."""

    kind: DownloadKind
    target_id: str
    scope_id: str | None = None


@dataclass(slots=True, frozen=True)
class DownloadPayload:
    filename: str
    media_type: str
    content: bytes


def _json_bytes(document: Any) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def _artifact_file_name(original_name: str, fallback: str) -> str:
    stem = PurePath(original_name).stem.strip() or fallback
    return f"{stem}.json"


def _zip_members(members: list[tuple[str, bytes]]) -> bytes:
    buffer = BytesIO()
    with ZipFile(buffer, mode="w", compression=ZIP_DEFLATED) as archive:
        for name, content in members:
            archive.writestr(name, content)
    return buffer.getvalue()


def _zip_paths(paths: list[Path]) -> bytes:
    return _zip_members([(path.name, path.read_bytes()) for path in paths])


class DownloadService:
    """Issue opaque tokens and package the artifacts behind them."""

    def __init__(
        self,
        session_factory: SessionScopeFactory = session_scope,
        *,
        tracker: BatchTracker | None = None,
        sitemaps: HierarchicalSitemapService | None = None,
        token_ttl_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tracker = tracker or BatchTracker(session_factory)
        self._sitemaps = sitemaps or HierarchicalSitemapService(
            session_factory, tracker=self._tracker
        )
        self._token_ttl_seconds = token_ttl_seconds

    @property
    def token_ttl(self) -> timedelta:
        seconds = self._token_ttl_seconds
        if seconds is None:
            seconds = get_settings().DOWNLOAD_TOKEN_TTL_SECONDS
        return timedelta(seconds=seconds)

    async def issue_token(
        self,
        kind: DownloadKind | str,
        target_id: str,
        *,
        scope_id: str | None = None,
    ) -> IssuedToken:
        """Mint a token after checking that the target exists."""

        kind = DownloadKind(kind)
        target = DownloadTarget(kind=kind, target_id=target_id, scope_id=scope_id)
        await self._ensure_target_exists(target)

        now = utcnow()
        async with self._session_factory() as session:
            record = DownloadToken(
                kind=kind,
                target_id=target_id,
                scope_id=scope_id,
                created_at=now,
                expires_at=now + self.token_ttl,
            )
            session.add(record)
            await session.flush()
            issued = IssuedToken(
                token=record.token,
                kind=kind,
                expires_at=ensure_utc(record.expires_at) or now,
            )

        logger.info(
            "download_token_issued",
            extra={
                "kind": kind.value,
                "target_id": target_id,
                "expires_at": issued.expires_at.isoformat(),
            },
        )
        return issued

    async def resolve_token(self, token: str) -> DownloadTarget | None:
        """Return the token's target, or ``None`` when unknown or expired.

        Expired tokens are deleted on lookup.
        """

        async with self._session_factory() as session:
            record = await session.get(DownloadToken, token)
            if record is None:
                return None

            expires_at = ensure_utc(record.expires_at)
            if expires_at is None or expires_at <= utcnow():
                await session.delete(record)
                logger.info(
                    "download_token_expired",
                    extra={"kind": record.kind.value, "target_id": record.target_id},
                )
                return None

            return DownloadTarget(
                kind=record.kind,
                target_id=record.target_id,
                scope_id=record.scope_id,
            )

    async def build_payload(self, target: DownloadTarget) -> DownloadPayload:
        if target.kind is DownloadKind.FILE:
            return await self._file_payload(target)
        if target.kind is DownloadKind.BATCH:
            return await self._batch_payload(target.target_id)
        return await self._sitemap_payload(target.target_id)

    async def _ensure_target_exists(self, target: DownloadTarget) -> None:
        if target.kind is DownloadKind.FILE:
            if not target.scope_id:
                raise InputValidationError("batch_id is required for file downloads")
            await self._tracker.get_artifact(target.scope_id, target.target_id)
        elif target.kind is DownloadKind.BATCH:
            await self._tracker.get_batch_status(target.target_id)
        else:
            await self._sitemaps.get_sitemap_job(target.target_id)

    async def _file_payload(self, target: DownloadTarget) -> DownloadPayload:
        if not target.scope_id:
            raise InputValidationError("batch_id is required for file downloads")
        file = await self._tracker.get_file(target.scope_id, target.target_id)
        document = await self._tracker.get_artifact(target.scope_id, target.target_id)
        return DownloadPayload(
            filename=_artifact_file_name(file.original_name, file.id),
            media_type=JSON_MEDIA_TYPE,
            content=_json_bytes(document),
        )

    async def _batch_payload(self, batch_id: str) -> DownloadPayload:
        artifacts = await self._tracker.list_completed_artifacts(batch_id)
        if not artifacts:
            raise NotFoundError("Completed files for batch", batch_id)

        members: list[tuple[str, bytes]] = []
        used_names: set[str] = set()
        for position, artifact in enumerate(artifacts, start=1):
            name = _artifact_file_name(artifact.original_name, artifact.file_id)
            if name in used_names:
                name = f"{position:03d}_{name}"
            used_names.add(name)
            members.append((name, _json_bytes(artifact.document)))

        content = await asyncio.to_thread(_zip_members, members)
        return DownloadPayload(
            filename=f"{batch_id}.zip", media_type=ZIP_MEDIA_TYPE, content=content
        )

    async def _sitemap_payload(self, job_id: str) -> DownloadPayload:
        paths = await self._sitemaps.list_sitemap_files(job_id)
        if not paths:
            raise NotFoundError("Sitemap files for job", job_id)

        content = await asyncio.to_thread(_zip_paths, paths)
        return DownloadPayload(
            filename=f"{job_id}.zip", media_type=ZIP_MEDIA_TYPE, content=content
        )


__all__ = [
    "DownloadPayload",
    "DownloadService",
    "DownloadTarget",
    "IssuedToken",
]
