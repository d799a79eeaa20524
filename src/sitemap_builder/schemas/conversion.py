"""Pydantic schemas for conversion requests and results."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from sitemap_builder.models import FileStatus
from sitemap_builder.services.errors import InputValidationError
from sitemap_builder.services.grouping import GroupingStrategy
from sitemap_builder.services.pattern_resolver import (
    validate_column_mapping,
    validate_url_pattern,
)
from sitemap_builder.services.row_stream import (
    DEFAULT_MAX_PREVIEW,
    ChangeFrequency,
    ConversionOptions,
)


def validate_priority(value: str | float | None) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    text = str(value).strip()
    try:
        numeric = float(text)
    except ValueError as exc:
        raise ValueError("priority must be a number between 0.0 and 1.0") from exc
    if not 0.0 <= numeric <= 1.0:
        raise ValueError("priority must be between 0.0 and 1.0")
    return text


class ConversionConfig(BaseModel):
    """URL pattern, column mapping, and per-entry options for a conversion.

    Both snake_case and the camelCase keys sent by older clients are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    url_pattern: str = Field(validation_alias=AliasChoices("url_pattern", "urlPattern"))
    column_mapping: dict[str, str | None] = Field(
        validation_alias=AliasChoices("column_mapping", "columnMapping")
    )
    include_lastmod: bool = Field(
        default=False,
        validation_alias=AliasChoices("include_lastmod", "includeLastmod"),
    )
    lastmod_field: str = Field(
        default="lastmod",
        min_length=1,
        validation_alias=AliasChoices("lastmod_field", "lastmodField"),
    )
    changefreq: ChangeFrequency | None = None
    priority: str | None = None
    grouping: GroupingStrategy = GroupingStrategy.NONE
    max_preview: int = Field(
        default=DEFAULT_MAX_PREVIEW,
        ge=1,
        le=50,
        validation_alias=AliasChoices("max_preview", "maxPreview"),
    )
    reprocess: bool = False

    @field_validator("changefreq", mode="before")
    @classmethod
    def blank_changefreq(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def check_priority(cls, value: object) -> str | None:
        if value is not None and not isinstance(value, (str, int, float)):
            raise ValueError("priority must be a number between 0.0 and 1.0")
        return validate_priority(value)

    @model_validator(mode="after")
    def check_pattern_and_mapping(self) -> ConversionConfig:
        try:
            self.column_mapping = validate_column_mapping(self.column_mapping)
            self.url_pattern = validate_url_pattern(self.url_pattern, self.column_mapping)
        except InputValidationError as exc:
            raise ValueError(str(exc)) from exc
        return self

    @property
    def mapping(self) -> dict[str, str]:
        return {key: value for key, value in self.column_mapping.items() if value}

    def to_options(self) -> ConversionOptions:
        return ConversionOptions(
            include_lastmod=self.include_lastmod,
            lastmod_field=self.lastmod_field,
            changefreq=self.changefreq.value if self.changefreq else None,
            priority=self.priority,
            grouping=self.grouping,
        )


class ConversionStatisticsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_urls: int
    valid_urls: int
    excluded_urls: int
    duplicate_urls: int
    invalid_lastmod: int


class BatchConversionStatisticsRead(ConversionStatisticsRead):
    total_files: int


class PreviewUrlRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    url: str
    row_number: int


class PreviewRead(BaseModel):
    """Sampled conversion outcome plus header diagnostics."""

    sample_urls: list[PreviewUrlRead]
    valid_count: int
    excluded_count: int
    excluded_reasons: list[str]
    total_sampled: int
    headers: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    batch_info: dict[str, Any] | None = None


class ConversionRead(BaseModel):
    """Single-file conversion response including the artifact document."""

    file_name: str
    statistics: ConversionStatisticsRead
    metadata: dict[str, Any]
    data: list[dict[str, Any]]


class FileConversionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_id: str
    original_name: str
    status: FileStatus
    statistics: ConversionStatisticsRead | None = None
    error: str | None = None


class FileConversionErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_id: str
    original_name: str
    message: str


class BatchConversionRead(BaseModel):
    batch_id: str
    results: list[FileConversionRead]
    statistics: BatchConversionStatisticsRead
    errors: list[FileConversionErrorRead]
    metadata: dict[str, Any]


__all__ = [
    "BatchConversionRead",
    "BatchConversionStatisticsRead",
    "ConversionConfig",
    "ConversionRead",
    "ConversionStatisticsRead",
    "FileConversionErrorRead",
    "FileConversionRead",
    "PreviewRead",
    "PreviewUrlRead",
    "validate_priority",
]
