"""API package exports."""

from sitemap_builder import __version__
from sitemap_builder.api.batches import router as batches_router
from sitemap_builder.api.conversion import router as conversion_router
from sitemap_builder.api.downloads import router as downloads_router
from sitemap_builder.api.sitemaps import router as sitemaps_router

__all__ = [
    "__version__",
    "batches_router",
    "conversion_router",
    "downloads_router",
    "sitemaps_router",
]
