"""Hierarchical sitemap generation API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from sitemap_builder.api.dependencies import get_sitemap_service, http_error_for
from sitemap_builder.schemas import (
    HierarchicalSitemapRead,
    SitemapGenerationRequest,
    SitemapJobRead,
)
from sitemap_builder.services.errors import SitemapBuilderError
from sitemap_builder.services.hierarchical_sitemaps import HierarchicalSitemapService

router = APIRouter(prefix="/api", tags=["sitemaps"])


@router.post(
    "/batches/{batch_id}/sitemaps",
    response_model=HierarchicalSitemapRead,
    status_code=status.HTTP_201_CREATED,
)
async def generate_sitemaps(
    batch_id: str,
    payload: SitemapGenerationRequest | None = None,
    sitemap_service: HierarchicalSitemapService = Depends(get_sitemap_service),
) -> HierarchicalSitemapRead:
    payload = payload or SitemapGenerationRequest()
    try:
        result = await sitemap_service.generate_hierarchical_sitemaps(
            batch_id,
            payload.sitemap_config,
            payload.grouping_config,
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return HierarchicalSitemapRead.model_validate(result)


@router.get("/sitemap-jobs/{job_id}", response_model=SitemapJobRead)
async def get_sitemap_job(
    job_id: str,
    sitemap_service: HierarchicalSitemapService = Depends(get_sitemap_service),
) -> SitemapJobRead:
    try:
        job = await sitemap_service.get_sitemap_job(job_id)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error
    return SitemapJobRead.model_validate(job)


__all__ = ["router"]
