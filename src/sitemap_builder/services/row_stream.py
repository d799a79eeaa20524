"""Single-pass streaming conversion of source rows into URL entries."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from itertools import islice
import logging
import re
from typing import Any, Final

from sitemap_builder.services.grouping import GroupingStrategy, group_name_for_row
from sitemap_builder.services.pattern_resolver import resolve_pattern

DEFAULT_MAX_PREVIEW: Final[int] = 5
MAX_PREVIEW_REASONS: Final[int] = 3

_LASTMOD_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")

logger = logging.getLogger(__name__)


class ChangeFrequency(str, Enum):
    """Sitemap protocol ``<changefreq>`` values."""

    ALWAYS = "always"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    NEVER = "never"


@dataclass(slots=True, frozen=True)
class SourceRow:
    """One row handed over by a row source collaborator."""

    data: Mapping[str, Any]
    row_number: int


@dataclass(slots=True, frozen=True)
class ConversionOptions:
    """Optional per-entry metadata and grouping for a conversion run."""

    include_lastmod: bool = False
    lastmod_field: str = "lastmod"
    changefreq: str | None = None
    priority: str | None = None
    grouping: GroupingStrategy = GroupingStrategy.NONE


@dataclass(slots=True, frozen=True)
class UrlEntry:
    """Accepted URL produced from one source row."""

    loc: str
    row_number: int
    lastmod: str | None = None
    changefreq: str | None = None
    priority: str | None = None
    group: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> UrlEntry:
        return cls(
            loc=payload["loc"],
            row_number=int(payload.get("row_number", 0)),
            lastmod=payload.get("lastmod"),
            changefreq=payload.get("changefreq"),
            priority=payload.get("priority"),
            group=payload.get("group"),
        )


@dataclass(slots=True)
class ConversionStatistics:
    """Per-file (or summed per-batch) conversion counters."""

    total_urls: int = 0
    valid_urls: int = 0
    excluded_urls: int = 0
    duplicate_urls: int = 0
    invalid_lastmod: int = 0

    def __add__(self, other: ConversionStatistics) -> ConversionStatistics:
        return ConversionStatistics(
            total_urls=self.total_urls + other.total_urls,
            valid_urls=self.valid_urls + other.valid_urls,
            excluded_urls=self.excluded_urls + other.excluded_urls,
            duplicate_urls=self.duplicate_urls + other.duplicate_urls,
            invalid_lastmod=self.invalid_lastmod + other.invalid_lastmod,
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> ConversionStatistics:
        if not payload:
            return cls()
        return cls(
            total_urls=int(payload.get("total_urls", 0)),
            valid_urls=int(payload.get("valid_urls", 0)),
            excluded_urls=int(payload.get("excluded_urls", 0)),
            duplicate_urls=int(payload.get("duplicate_urls", 0)),
            invalid_lastmod=int(payload.get("invalid_lastmod", 0)),
        )


@dataclass(slots=True, frozen=True)
class PreviewUrl:
    url: str
    row_number: int


@dataclass(slots=True)
class UrlPreview:
    """Bounded sample of the conversion outcome for quick feedback."""

    sample_urls: list[PreviewUrl] = field(default_factory=list)
    valid_count: int = 0
    excluded_count: int = 0
    excluded_reasons: list[str] = field(default_factory=list)
    total_sampled: int = 0


def is_valid_lastmod(value: Any) -> bool:
    """Return True for ``YYYY-MM-DD`` strings naming a real calendar date."""

    if not isinstance(value, str):
        return False

    candidate = value.strip()
    if not _LASTMOD_PATTERN.match(candidate):
        return False

    try:
        date.fromisoformat(candidate)
    except ValueError:
        return False

    return True


class UrlRowStream:
    """Lazily turn source rows into deduplicated ``UrlEntry`` objects.

    Iterate the stream exactly once; ``statistics`` reflects every row read
    so far and is final once iteration stops. Duplicate detection is scoped
    to this stream, the first occurrence of a URL wins.
    """

    def __init__(
        self,
        rows: Iterable[SourceRow],
        pattern: str,
        column_mapping: Mapping[str, str],
        options: ConversionOptions | None = None,
    ) -> None:
        self._rows = rows
        self._pattern = pattern
        self._column_mapping = column_mapping
        self._options = options or ConversionOptions()
        self._seen_urls: set[str] = set()
        self._consumed = False
        self.statistics = ConversionStatistics()

    def __iter__(self) -> Iterator[UrlEntry]:
        if self._consumed:
            raise RuntimeError("UrlRowStream can only be iterated once")
        self._consumed = True
        return self._generate()

    def _generate(self) -> Iterator[UrlEntry]:
        statistics = self.statistics
        for row in self._rows:
            statistics.total_urls += 1

            resolution = resolve_pattern(self._pattern, row.data, self._column_mapping)
            if resolution.url is None:
                statistics.excluded_urls += 1
                continue

            if resolution.url in self._seen_urls:
                statistics.duplicate_urls += 1
                continue

            self._seen_urls.add(resolution.url)
            statistics.valid_urls += 1
            yield self._build_entry(row, resolution.url)

        logger.debug(
            "row_stream_completed",
            extra={"statistics": statistics.to_dict()},
        )

    def _build_entry(self, row: SourceRow, url: str) -> UrlEntry:
        options = self._options
        return UrlEntry(
            loc=url,
            row_number=row.row_number,
            lastmod=self._lastmod_for(row) if options.include_lastmod else None,
            changefreq=options.changefreq or None,
            priority=options.priority or None,
            group=group_name_for_row(row.data, self._column_mapping, options.grouping),
        )

    def _lastmod_for(self, row: SourceRow) -> str | None:
        lastmod_field = self._options.lastmod_field
        if not lastmod_field:
            return None

        lastmod_column = self._column_mapping.get(lastmod_field) or lastmod_field
        raw_value = row.data.get(lastmod_column)
        if raw_value is None or not str(raw_value).strip():
            return None

        if is_valid_lastmod(raw_value):
            return str(raw_value).strip()

        self.statistics.invalid_lastmod += 1
        return None


def preview_rows(
    rows: Iterable[SourceRow],
    pattern: str,
    column_mapping: Mapping[str, str],
    max_preview: int = DEFAULT_MAX_PREVIEW,
) -> UrlPreview:
    """Resolve up to ``2 * max_preview`` rows without deduplication."""

    if max_preview <= 0:
        raise ValueError("max_preview must be greater than zero")

    preview = UrlPreview()
    for row in islice(rows, max_preview * 2):
        preview.total_sampled += 1
        resolution = resolve_pattern(pattern, row.data, column_mapping)

        if resolution.url is not None:
            preview.valid_count += 1
            if len(preview.sample_urls) < max_preview:
                preview.sample_urls.append(
                    PreviewUrl(url=resolution.url, row_number=row.row_number)
                )
            continue

        preview.excluded_count += 1
        reason = resolution.reason or "Excluded"
        if (
            reason not in preview.excluded_reasons
            and len(preview.excluded_reasons) < MAX_PREVIEW_REASONS
        ):
            preview.excluded_reasons.append(reason)

    return preview


__all__ = [
    "ChangeFrequency",
    "ConversionOptions",
    "ConversionStatistics",
    "DEFAULT_MAX_PREVIEW",
    "PreviewUrl",
    "SourceRow",
    "UrlEntry",
    "UrlPreview",
    "UrlRowStream",
    "is_valid_lastmod",
    "preview_rows",
]
