"""Download token issuance and resolution API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from sitemap_builder.api.dependencies import get_download_service, http_error_for
from sitemap_builder.schemas import DownloadTokenRead, DownloadTokenRequest
from sitemap_builder.services.downloads import DownloadService
from sitemap_builder.services.errors import SitemapBuilderError

router = APIRouter(prefix="/api/downloads", tags=["downloads"])


@router.post("", response_model=DownloadTokenRead, status_code=status.HTTP_201_CREATED)
async def issue_download_token(
    payload: DownloadTokenRequest,
    request: Request,
    download_service: DownloadService = Depends(get_download_service),
) -> DownloadTokenRead:
    try:
        issued = await download_service.issue_token(
            payload.kind,
            payload.target_id,
            scope_id=payload.batch_id,
        )
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return DownloadTokenRead(
        token=issued.token,
        kind=issued.kind,
        expires_at=issued.expires_at,
        download_url=str(request.url_for("download_artifact", token=issued.token)),
    )


@router.get("/{token}", name="download_artifact")
async def download_artifact(
    token: str,
    download_service: DownloadService = Depends(get_download_service),
) -> Response:
    target = await download_service.resolve_token(token)
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Download link expired or not found",
        )

    try:
        payload = await download_service.build_payload(target)
    except SitemapBuilderError as error:
        raise http_error_for(error) from error

    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


__all__ = ["router"]
