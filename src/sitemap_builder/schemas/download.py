"""Pydantic schemas for download token issuance."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from sitemap_builder.models import DownloadKind


class DownloadTokenRequest(BaseModel):
    """Target of a download token; file downloads also need the batch id."""

    model_config = ConfigDict(populate_by_name=True)

    kind: DownloadKind
    target_id: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("target_id", "id"),
    )
    batch_id: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("batch_id", "batchId"),
    )

    @model_validator(mode="after")
    def require_batch_for_file(self) -> DownloadTokenRequest:
        if self.kind is DownloadKind.FILE and not self.batch_id:
            raise ValueError("batch_id is required for file downloads")
        return self


class DownloadTokenRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    token: str
    kind: DownloadKind
    expires_at: datetime
    download_url: str


__all__ = ["DownloadTokenRead", "DownloadTokenRequest"]
