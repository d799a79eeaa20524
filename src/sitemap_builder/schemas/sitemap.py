"""Pydantic schemas for hierarchical sitemap generation."""

from __future__ import annotations

from datetime import datetime
import re
from typing import Final

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from sitemap_builder.config import MAX_URLS_PER_SITEMAP
from sitemap_builder.models import SitemapJobStatus
from sitemap_builder.schemas.conversion import validate_priority
from sitemap_builder.services.grouping import GroupingStrategy
from sitemap_builder.services.row_stream import ChangeFrequency

_INDEX_FILE_NAME_PATTERN: Final = re.compile(r"^[A-Za-z0-9_.-]+\.xml$")


class SitemapConfig(BaseModel):
    """Uniform ``<url>`` defaults and chunk size for generated files."""

    model_config = ConfigDict(populate_by_name=True)

    changefreq: ChangeFrequency | None = None
    priority: str | None = None
    include_lastmod: bool = Field(
        default=False,
        validation_alias=AliasChoices("include_lastmod", "includeLastmod"),
    )
    max_urls_per_file: int | None = Field(
        default=None,
        ge=1,
        le=MAX_URLS_PER_SITEMAP,
        validation_alias=AliasChoices("max_urls_per_file", "maxPerFile"),
    )

    @field_validator("priority", mode="before")
    @classmethod
    def check_priority(cls, value: object) -> str | None:
        if value is not None and not isinstance(value, (str, int, float)):
            raise ValueError("priority must be a number between 0.0 and 1.0")
        return validate_priority(value)


class GroupingConfig(BaseModel):
    """How entries are partitioned and where the index points.

    ``grouping`` left unset keeps the groups computed during conversion;
    ``none`` merges every entry into a single group.
    """

    model_config = ConfigDict(populate_by_name=True)

    grouping: GroupingStrategy | None = Field(
        default=None,
        validation_alias=AliasChoices("grouping", "groupBy"),
    )
    base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("base_url", "baseUrl"),
    )
    index_file_name: str = Field(
        default="sitemap.xml",
        validation_alias=AliasChoices("index_file_name", "indexFileName"),
    )

    @field_validator("base_url")
    @classmethod
    def check_base_url(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        value = value.strip().rstrip("/")
        if "://" not in value:
            raise ValueError("base_url must include protocol (http:// or https://)")
        return value

    @field_validator("index_file_name")
    @classmethod
    def check_index_file_name(cls, value: str) -> str:
        value = value.strip()
        if not _INDEX_FILE_NAME_PATTERN.match(value) or value.startswith("sitemap_"):
            raise ValueError(
                "index_file_name must be a plain .xml file name not starting with 'sitemap_'"
            )
        return value


class SitemapGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sitemap_config: SitemapConfig = Field(
        default_factory=SitemapConfig,
        validation_alias=AliasChoices("sitemap_config", "sitemapConfig"),
    )
    grouping_config: GroupingConfig = Field(
        default_factory=GroupingConfig,
        validation_alias=AliasChoices("grouping_config", "groupingConfig"),
    )


class GroupSitemapRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group: str
    chunk: int
    file_name: str
    url_count: int
    lastmod: str | None = None


class SitemapErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group: str
    file_id: str | None = None
    message: str


class HierarchicalSitemapRead(BaseModel):
    """Result of one hierarchical sitemap generation run."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    total_groups: int
    total_files: int
    total_urls: int
    group_sitemaps: list[GroupSitemapRead]
    sitemap_index: str | None
    errors: list[SitemapErrorRead]


class SitemapJobRead(BaseModel):
    """Stored sitemap job status, without filesystem locations."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_id: str
    status: SitemapJobStatus
    total_groups: int
    total_files: int
    total_urls: int
    files: list[GroupSitemapRead]
    index_file_name: str | None = None
    errors: list[SitemapErrorRead]
    created_at: datetime | None = None
    completed_at: datetime | None = None


__all__ = [
    "GroupSitemapRead",
    "GroupingConfig",
    "HierarchicalSitemapRead",
    "SitemapConfig",
    "SitemapErrorRead",
    "SitemapGenerationRequest",
    "SitemapJobRead",
]
