"""Schema exports for API serialization."""

from sitemap_builder import __version__
from sitemap_builder.schemas.batch import (
    BatchProgressRead,
    BatchRead,
    BatchStatusPatch,
    FileJobRead,
)
from sitemap_builder.schemas.conversion import (
    BatchConversionRead,
    BatchConversionStatisticsRead,
    ConversionConfig,
    ConversionRead,
    ConversionStatisticsRead,
    FileConversionErrorRead,
    FileConversionRead,
    PreviewRead,
    PreviewUrlRead,
)
from sitemap_builder.schemas.download import DownloadTokenRead, DownloadTokenRequest
from sitemap_builder.schemas.sitemap import (
    GroupSitemapRead,
    GroupingConfig,
    HierarchicalSitemapRead,
    SitemapConfig,
    SitemapErrorRead,
    SitemapGenerationRequest,
    SitemapJobRead,
)

__all__ = [
    "__version__",
    "BatchConversionRead",
    "BatchConversionStatisticsRead",
    "BatchProgressRead",
    "BatchRead",
    "BatchStatusPatch",
    "ConversionConfig",
    "ConversionRead",
    "ConversionStatisticsRead",
    "DownloadTokenRead",
    "DownloadTokenRequest",
    "FileConversionErrorRead",
    "FileConversionRead",
    "FileJobRead",
    "GroupSitemapRead",
    "GroupingConfig",
    "HierarchicalSitemapRead",
    "PreviewRead",
    "PreviewUrlRead",
    "SitemapConfig",
    "SitemapErrorRead",
    "SitemapGenerationRequest",
    "SitemapJobRead",
]
