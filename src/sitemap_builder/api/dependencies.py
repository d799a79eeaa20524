"""Shared route dependencies, upload handling, and error translation."""

from __future__ import annotations

from fastapi import HTTPException, UploadFile, status
from pydantic import ValidationError

from sitemap_builder.config import get_settings
from sitemap_builder.schemas import ConversionConfig
from sitemap_builder.services.batch_tracker import BatchTracker, UploadedFile
from sitemap_builder.services.conversion import ConversionService
from sitemap_builder.services.downloads import DownloadService
from sitemap_builder.services.errors import (
    InputValidationError,
    NotFoundError,
    SitemapBuilderError,
    SitemapEntryError,
    TransientStorageError,
)
from sitemap_builder.services.hierarchical_sitemaps import HierarchicalSitemapService
from sitemap_builder.services.row_sources import detect_file_type


def get_batch_tracker() -> BatchTracker:
    return BatchTracker()


def get_conversion_service() -> ConversionService:
    return ConversionService()


def get_sitemap_service() -> HierarchicalSitemapService:
    return HierarchicalSitemapService()


def get_download_service() -> DownloadService:
    return DownloadService()


def http_error_for(error: SitemapBuilderError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""

    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (InputValidationError, SitemapEntryError)):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error)
        )
    if isinstance(error, TransientStorageError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error)
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)
    )


def parse_conversion_config(raw_config: str) -> ConversionConfig:
    """Parse the JSON ``config`` form field sent next to an upload."""

    try:
        return ConversionConfig.model_validate_json(raw_config)
    except ValidationError as error:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error.errors(include_url=False, include_context=False),
        ) from error


async def read_upload(upload: UploadFile) -> UploadedFile:
    """Read an upload, enforcing the size limit and the supported file types."""

    settings = get_settings()
    original_name = upload.filename or "upload.csv"
    try:
        file_type = detect_file_type(original_name, upload.content_type)
    except InputValidationError as error:
        raise http_error_for(error) from error

    content = await upload.read()
    if len(content) > settings.max_upload_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"File {original_name!r} exceeds the "
                f"{settings.MAX_UPLOAD_SIZE_MB} MB upload limit"
            ),
        )
    if not content.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"File {original_name!r} is empty",
        )

    return UploadedFile(original_name=original_name, file_type=file_type, content=content)


__all__ = [
    "get_batch_tracker",
    "get_conversion_service",
    "get_download_service",
    "get_sitemap_service",
    "http_error_for",
    "parse_conversion_config",
    "read_upload",
]
