"""Opaque identifier generation for jobs and tokens."""

from __future__ import annotations

from secrets import token_urlsafe


def new_batch_id() -> str:
    return f"batch_{token_urlsafe(16)}"


def new_file_id() -> str:
    return f"file_{token_urlsafe(16)}"


def new_sitemap_job_id() -> str:
    return f"sitemap_{token_urlsafe(16)}"


def new_download_token() -> str:
    return token_urlsafe(32)


__all__ = [
    "new_batch_id",
    "new_download_token",
    "new_file_id",
    "new_sitemap_job_id",
]
