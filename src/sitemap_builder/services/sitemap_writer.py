"""Sitemap protocol XML rendering for URL sets and sitemap indexes."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from itertools import islice
from typing import Final, TypeVar

from lxml import etree  # type: ignore[import-untyped]

from sitemap_builder.config import MAX_URLS_PER_SITEMAP
from sitemap_builder.services.errors import SitemapEntryError
from sitemap_builder.services.row_stream import ChangeFrequency, UrlEntry, is_valid_lastmod

SITEMAP_NAMESPACE: Final[str] = "http://www.sitemaps.org/schemas/sitemap/0.9"

_NSMAP: Final[dict[None, str]] = {None: SITEMAP_NAMESPACE}
_CHANGEFREQ_VALUES: Final[frozenset[str]] = frozenset(item.value for item in ChangeFrequency)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class UrlsetDefaults:
    """Uniform values applied where an entry carries none."""

    include_lastmod: bool = False
    changefreq: str | None = None
    priority: str | None = None


@dataclass(slots=True, frozen=True)
class SitemapReference:
    """One ``<sitemap>`` element of a sitemap index."""

    loc: str
    lastmod: str | None = None


def _tag(name: str) -> str:
    return f"{{{SITEMAP_NAMESPACE}}}{name}"


def chunk_entries(entries: Iterable[T], max_per_file: int = MAX_URLS_PER_SITEMAP) -> Iterator[list[T]]:
    """Yield consecutive chunks of at most ``max_per_file`` items, order kept."""

    if max_per_file <= 0:
        raise ValueError("max_per_file must be greater than zero")

    iterator = iter(entries)
    while chunk := list(islice(iterator, max_per_file)):
        yield chunk


def _normalized_priority(value: str, row_number: int) -> str:
    try:
        priority = float(value)
    except (TypeError, ValueError) as exc:
        raise SitemapEntryError(
            f"Row {row_number}: priority {value!r} is not a number"
        ) from exc
    if not 0.0 <= priority <= 1.0:
        raise SitemapEntryError(
            f"Row {row_number}: priority {value!r} must be between 0.0 and 1.0"
        )
    return str(value).strip()


def _append_text(parent: etree._Element, name: str, value: str, row_number: int) -> None:
    try:
        etree.SubElement(parent, _tag(name)).text = value
    except ValueError as exc:
        raise SitemapEntryError(f"Row {row_number}: invalid {name} value: {exc}") from exc


def _append_url(root: etree._Element, entry: UrlEntry, defaults: UrlsetDefaults) -> None:
    row_number = entry.row_number
    if not entry.loc or not entry.loc.strip():
        raise SitemapEntryError(f"Row {row_number}: missing loc")

    url_element = etree.SubElement(root, _tag("url"))
    _append_text(url_element, "loc", entry.loc.strip(), row_number)

    if defaults.include_lastmod and entry.lastmod:
        if not is_valid_lastmod(entry.lastmod):
            raise SitemapEntryError(
                f"Row {row_number}: lastmod {entry.lastmod!r} is not YYYY-MM-DD"
            )
        _append_text(url_element, "lastmod", entry.lastmod.strip(), row_number)

    changefreq = entry.changefreq or defaults.changefreq
    if changefreq:
        if changefreq not in _CHANGEFREQ_VALUES:
            raise SitemapEntryError(
                f"Row {row_number}: changefreq {changefreq!r} is not supported"
            )
        _append_text(url_element, "changefreq", changefreq, row_number)

    priority = entry.priority or defaults.priority
    if priority:
        _append_text(
            url_element, "priority", _normalized_priority(priority, row_number), row_number
        )


def build_urlset(entries: Iterable[UrlEntry], defaults: UrlsetDefaults | None = None) -> bytes:
    """Render ``entries`` as a UTF-8 ``<urlset>`` document.

    Raises ``SitemapEntryError`` on the first entry that cannot be rendered.
    """

    defaults = defaults or UrlsetDefaults()
    root = etree.Element(_tag("urlset"), nsmap=_NSMAP)
    for index, entry in enumerate(entries):
        try:
            _append_url(root, entry, defaults)
        except SitemapEntryError as exc:
            exc.index = index
            raise
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


def build_sitemap_index(references: Iterable[SitemapReference]) -> bytes:
    root = etree.Element(_tag("sitemapindex"), nsmap=_NSMAP)
    for reference in references:
        sitemap_element = etree.SubElement(root, _tag("sitemap"))
        etree.SubElement(sitemap_element, _tag("loc")).text = reference.loc
        if reference.lastmod:
            etree.SubElement(sitemap_element, _tag("lastmod")).text = reference.lastmod
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


__all__ = [
    "MAX_URLS_PER_SITEMAP",
    "SITEMAP_NAMESPACE",
    "SitemapReference",
    "UrlsetDefaults",
    "build_sitemap_index",
    "build_urlset",
    "chunk_entries",
]
