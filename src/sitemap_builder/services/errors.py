"""Domain exception taxonomy shared by services and the HTTP adapter."""

from __future__ import annotations


class SitemapBuilderError(Exception):
    """Base exception for sitemap builder failures."""


class InputValidationError(SitemapBuilderError):
    """Raised when a mapping, pattern, or request payload is malformed.

    Raised before any state is mutated so callers can reject the request
    outright.
    """

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFoundError(SitemapBuilderError):
    """Raised when a batch, file, job, or token id is unknown."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(f"{resource} {identifier!r} not found")
        self.resource = resource
        self.identifier = identifier


class TransientStorageError(SitemapBuilderError):
    """Raised when a collaborator read or write fails in a retryable way."""


class UnsupportedFileTypeError(InputValidationError):
    """Raised when no row source exists for an uploaded file type."""


class SitemapEntryError(SitemapBuilderError):
    """Raised when a URL entry cannot be rendered as a sitemap ``<url>``.

    ``index`` is the position of the offending entry in the rendered sequence
    when known.
    """

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


__all__ = [
    "InputValidationError",
    "NotFoundError",
    "SitemapBuilderError",
    "SitemapEntryError",
    "TransientStorageError",
    "UnsupportedFileTypeError",
]
