"""Sitemap Builder: tabular uploads to URL lists and XML sitemaps."""

__version__ = "0.1.0"

__all__ = ["__version__"]
