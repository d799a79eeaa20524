"""Single-file preview and conversion API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from sitemap_builder.api.dependencies import (
    get_conversion_service,
    http_error_for,
    parse_conversion_config,
    read_upload,
)
from sitemap_builder.schemas import (
    ConversionRead,
    ConversionStatisticsRead,
    PreviewRead,
    PreviewUrlRead,
)
from sitemap_builder.services.conversion import ConversionService, PreviewOutcome
from sitemap_builder.services.errors import SitemapBuilderError

router = APIRouter(prefix="/api", tags=["conversion"])


def preview_response(outcome: PreviewOutcome) -> PreviewRead:
    preview = outcome.preview
    return PreviewRead(
        sample_urls=[PreviewUrlRead.model_validate(item) for item in preview.sample_urls],
        valid_count=preview.valid_count,
        excluded_count=preview.excluded_count,
        excluded_reasons=preview.excluded_reasons,
        total_sampled=preview.total_sampled,
        headers=outcome.headers,
        warnings=outcome.warnings,
        batch_info=outcome.batch_info,
    )


@router.post("/preview", response_model=PreviewRead)
async def preview_upload(
    file: UploadFile = File(...),
    config: str = Form(...),
    conversion_service: ConversionService = Depends(get_conversion_service),
) -> PreviewRead:
    conversion_config = parse_conversion_config(config)
    upload = await read_upload(file)

    try:
        outcome = await conversion_service.preview_upload(
            upload.file_type, upload.content, conversion_config
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return preview_response(outcome)


@router.post("/convert", response_model=ConversionRead)
async def convert_upload(
    file: UploadFile = File(...),
    config: str = Form(...),
    conversion_service: ConversionService = Depends(get_conversion_service),
) -> ConversionRead:
    conversion_config = parse_conversion_config(config)
    upload = await read_upload(file)

    try:
        result = await conversion_service.convert_upload(
            upload.file_type, upload.content, conversion_config
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return ConversionRead(
        file_name=upload.original_name,
        statistics=ConversionStatisticsRead.model_validate(result.statistics),
        metadata=result.document["metadata"],
        data=result.document["data"],
    )


__all__ = ["preview_response", "router"]
