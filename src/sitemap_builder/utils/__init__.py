"""Utilities for shared application concerns."""

from sitemap_builder import __version__
from sitemap_builder.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)
from sitemap_builder.utils.time import ensure_utc, utcnow

__all__ = [
    "__version__",
    "add_request_logging_middleware",
    "ensure_utc",
    "setup_logging",
    "utcnow",
]
