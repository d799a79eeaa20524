"""ORM model exports."""

from sitemap_builder import __version__
from sitemap_builder.models.base import Base
from sitemap_builder.models.batch_job import BatchJob, BatchStatus
from sitemap_builder.models.conversion_artifact import ConversionArtifact
from sitemap_builder.models.download_token import DownloadKind, DownloadToken
from sitemap_builder.models.file_job import FileJob, FileStatus
from sitemap_builder.models.sitemap_job import SitemapJob, SitemapJobStatus

__all__ = [
    "__version__",
    "Base",
    "BatchJob",
    "BatchStatus",
    "ConversionArtifact",
    "DownloadKind",
    "DownloadToken",
    "FileJob",
    "FileStatus",
    "SitemapJob",
    "SitemapJobStatus",
]
