"""Batch upload, status, and conversion API routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from sitemap_builder.api.conversion import preview_response
from sitemap_builder.api.dependencies import (
    get_batch_tracker,
    get_conversion_service,
    http_error_for,
    read_upload,
)
from sitemap_builder.schemas import (
    BatchConversionRead,
    BatchConversionStatisticsRead,
    BatchRead,
    BatchStatusPatch,
    ConversionConfig,
    FileConversionErrorRead,
    FileConversionRead,
    PreviewRead,
)
from sitemap_builder.services.batch_tracker import BatchTracker
from sitemap_builder.services.conversion import ConversionService
from sitemap_builder.services.errors import SitemapBuilderError

router = APIRouter(prefix="/api/batches", tags=["batches"])


@router.post("", response_model=BatchRead, status_code=status.HTTP_201_CREATED)
async def create_batch(
    files: list[UploadFile] = File(...),
    max_concurrent_files: int | None = Form(default=None),
    max_retries: int | None = Form(default=None),
    tracker: BatchTracker = Depends(get_batch_tracker),
) -> BatchRead:
    if not files:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="At least one file is required",
        )

    uploads = [await read_upload(upload) for upload in files]
    try:
        snapshot = await tracker.create_batch(
            uploads,
            max_concurrent_files=max_concurrent_files,
            max_retries=max_retries,
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return BatchRead.model_validate(snapshot)


@router.get("/{batch_id}", response_model=BatchRead)
async def get_batch(
    batch_id: str,
    tracker: BatchTracker = Depends(get_batch_tracker),
) -> BatchRead:
    try:
        snapshot = await tracker.get_batch_status(batch_id)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return BatchRead.model_validate(snapshot)


@router.patch("/{batch_id}/status", response_model=BatchRead)
async def update_batch_status(
    batch_id: str,
    payload: BatchStatusPatch,
    tracker: BatchTracker = Depends(get_batch_tracker),
) -> BatchRead:
    try:
        snapshot = await tracker.apply_external_status_update(
            batch_id, payload.model_dump(exclude_none=True)
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return BatchRead.model_validate(snapshot)


@router.delete("/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_batch(
    batch_id: str,
    tracker: BatchTracker = Depends(get_batch_tracker),
) -> Response:
    try:
        await tracker.clear_batch(batch_id)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{batch_id}/preview", response_model=PreviewRead)
async def preview_batch(
    batch_id: str,
    config: ConversionConfig,
    conversion_service: ConversionService = Depends(get_conversion_service),
) -> PreviewRead:
    try:
        outcome = await conversion_service.preview_batch(batch_id, config)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return preview_response(outcome)


@router.post("/{batch_id}/convert", response_model=BatchConversionRead)
async def convert_batch(
    batch_id: str,
    config: ConversionConfig,
    conversion_service: ConversionService = Depends(get_conversion_service),
) -> BatchConversionRead:
    try:
        result = await conversion_service.convert_batch(batch_id, config)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return BatchConversionRead(
        batch_id=result.batch_id,
        results=[FileConversionRead.model_validate(item) for item in result.results],
        statistics=BatchConversionStatisticsRead(
            **result.statistics.to_dict(), total_files=result.total_files
        ),
        errors=[FileConversionErrorRead.model_validate(item) for item in result.errors],
        metadata=result.metadata,
    )


@router.post(
    "/{batch_id}/files/{file_id}/retry",
    response_model=FileConversionRead,
)
async def retry_file(
    batch_id: str,
    file_id: str,
    config: ConversionConfig,
    conversion_service: ConversionService = Depends(get_conversion_service),
) -> FileConversionRead:
    try:
        result = await conversion_service.retry_file(batch_id, file_id, config)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return FileConversionRead.model_validate(result)


@router.get("/{batch_id}/files/{file_id}/artifact")
async def get_file_artifact(
    batch_id: str,
    file_id: str,
    tracker: BatchTracker = Depends(get_batch_tracker),
) -> dict[str, Any]:
    try:
        return await tracker.get_artifact(batch_id, file_id)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error


__all__ = ["router"]
