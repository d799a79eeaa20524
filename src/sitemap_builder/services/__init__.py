"""Service layer helpers for the sitemap builder."""

from sitemap_builder import __version__
from sitemap_builder.services.errors import (
    InputValidationError,
    NotFoundError,
    SitemapBuilderError,
    SitemapEntryError,
    TransientStorageError,
    UnsupportedFileTypeError,
)
from sitemap_builder.services.grouping import (
    DEFAULT_GROUP_NAME,
    GroupingStrategy,
    group_name_for_row,
    sanitize_group_name,
)
from sitemap_builder.services.pattern_resolver import (
    PatternResolution,
    resolve_pattern,
    validate_column_mapping,
    validate_url_pattern,
)
from sitemap_builder.services.row_stream import (
    ConversionOptions,
    ConversionStatistics,
    SourceRow,
    UrlEntry,
    UrlPreview,
    UrlRowStream,
    preview_rows,
)
from sitemap_builder.services.row_sources import CsvRowSource, open_row_source
from sitemap_builder.services.sitemap_writer import (
    MAX_URLS_PER_SITEMAP,
    build_sitemap_index,
    build_urlset,
    chunk_entries,
)

__all__ = [
    "__version__",
    "ConversionOptions",
    "ConversionStatistics",
    "CsvRowSource",
    "DEFAULT_GROUP_NAME",
    "GroupingStrategy",
    "InputValidationError",
    "MAX_URLS_PER_SITEMAP",
    "NotFoundError",
    "PatternResolution",
    "SitemapBuilderError",
    "SitemapEntryError",
    "SourceRow",
    "TransientStorageError",
    "UnsupportedFileTypeError",
    "UrlEntry",
    "UrlPreview",
    "UrlRowStream",
    "build_sitemap_index",
    "build_urlset",
    "chunk_entries",
    "group_name_for_row",
    "open_row_source",
    "preview_rows",
    "resolve_pattern",
    "sanitize_group_name",
    "validate_column_mapping",
    "validate_url_pattern",
]
