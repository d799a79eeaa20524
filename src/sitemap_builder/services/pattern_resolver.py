"""URL template resolution against a single row of tabular data."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import re
from typing import Any, Final

from sitemap_builder.services.errors import InputValidationError

LINK_FIELD: Final[str] = "link"
MAPPABLE_FIELDS: Final[tuple[str, ...]] = ("link", "category", "store_id", "lastmod")
PROTOCOL_SEPARATOR: Final[str] = "://"

_PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+?)\}")
_BRACE_ESCAPES = str.maketrans({"{": "%7B", "}": "%7D"})

ColumnMapping = Mapping[str, str]
RowFields = Mapping[str, Any]


@dataclass(slots=True, frozen=True)
class PatternResolution:
    """Outcome of resolving a URL pattern against one row."""

    url: str | None
    excluded: bool
    reason: str | None

    @classmethod
    def resolved(cls, url: str) -> PatternResolution:
        return cls(url=url, excluded=False, reason=None)

    @classmethod
    def exclusion(cls, reason: str) -> PatternResolution:
        return cls(url=None, excluded=True, reason=reason)


def extract_placeholders(pattern: str) -> list[str]:
    """Return placeholder names in token order, duplicates included."""

    if not pattern or not isinstance(pattern, str):
        return []
    return _PLACEHOLDER_PATTERN.findall(pattern)


def _unique(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(names))


def _mapped_column_for(name: str, column_mapping: ColumnMapping) -> str:
    if name == LINK_FIELD:
        return column_mapping.get(LINK_FIELD) or ""

    for field_name, column_name in column_mapping.items():
        if field_name == name or column_name == name:
            return column_name

    return name


def _field_value(name: str, row_fields: RowFields, column_mapping: ColumnMapping) -> str:
    column_name = _mapped_column_for(name, column_mapping)
    raw_value = row_fields.get(column_name) if column_name else None
    if raw_value is None:
        return ""
    return str(raw_value).strip()


def resolve_pattern(
    pattern: str,
    row_fields: RowFields,
    column_mapping: ColumnMapping,
) -> PatternResolution:
    """Substitute every ``{name}`` token in ``pattern`` from ``row_fields``.

    Lookup order per token: ``link`` goes through ``column_mapping["link"]``;
    other names match a mapping key or mapped column; anything else is read
    from the row directly. Empty or whitespace-only values count as missing
    and exclude the row. Resolution never raises.
    """

    try:
        placeholder_names = _unique(extract_placeholders(pattern))
        values: dict[str, str] = {}
        missing_fields: list[str] = []

        for name in placeholder_names:
            value = _field_value(name, row_fields, column_mapping)
            if not value:
                missing_fields.append(name)
                continue
            values[name] = value.translate(_BRACE_ESCAPES)

        if missing_fields:
            return PatternResolution.exclusion(
                f"Missing required fields: {', '.join(missing_fields)}"
            )

        url = _PLACEHOLDER_PATTERN.sub(lambda match: values[match.group(1)], pattern)
        return PatternResolution.resolved(url)
    except Exception as exc:  # noqa: BLE001
        return PatternResolution.exclusion(f"URL processing error: {exc}")


def validate_column_mapping(column_mapping: Mapping[str, str | None]) -> dict[str, str]:
    """Return a normalized mapping or raise ``InputValidationError``."""

    if not isinstance(column_mapping, Mapping):
        raise InputValidationError("Column mapping is required")

    normalized = {
        field_name: column_name.strip()
        for field_name, column_name in column_mapping.items()
        if isinstance(column_name, str) and column_name.strip()
    }

    unknown_fields = sorted(set(normalized) - set(MAPPABLE_FIELDS))
    if unknown_fields:
        raise InputValidationError(
            f"Unknown mapping fields: {', '.join(unknown_fields)}. "
            f"Allowed fields: {', '.join(MAPPABLE_FIELDS)}"
        )

    if LINK_FIELD not in normalized:
        raise InputValidationError("Link column mapping is required")

    seen_columns: dict[str, str] = {}
    reused: list[str] = []
    for field_name, column_name in normalized.items():
        if column_name in seen_columns:
            reused.append(
                f"{column_name} ({seen_columns[column_name]}, {field_name})"
            )
            continue
        seen_columns[column_name] = field_name

    if reused:
        raise InputValidationError(
            f"Each source column may be mapped once: {'; '.join(reused)}"
        )

    return normalized


def validate_url_pattern(pattern: str, column_mapping: ColumnMapping) -> str:
    """Check the protocol, brace balance, and link reference of ``pattern``."""

    if not pattern or not isinstance(pattern, str) or not pattern.strip():
        raise InputValidationError("URL pattern is required")

    pattern = pattern.strip()
    if PROTOCOL_SEPARATOR not in pattern:
        raise InputValidationError(
            "URL pattern must include protocol (http:// or https://)"
        )

    leftover = _PLACEHOLDER_PATTERN.sub("", pattern)
    if "{" in leftover or "}" in leftover:
        raise InputValidationError("URL pattern contains unbalanced braces")

    placeholder_names = set(extract_placeholders(pattern))
    link_column = column_mapping.get(LINK_FIELD)
    if LINK_FIELD not in placeholder_names and link_column not in placeholder_names:
        raise InputValidationError(
            "URL pattern must include {link} placeholder or reference the "
            "mapped link column"
        )

    return pattern


def find_unmapped_columns(
    column_mapping: ColumnMapping, headers: Iterable[str]
) -> list[str]:
    """Return mapped source columns that do not exist in ``headers``."""

    available = set(headers)
    return [
        column_name
        for column_name in column_mapping.values()
        if column_name and column_name not in available
    ]


def find_unresolvable_placeholders(
    pattern: str, column_mapping: ColumnMapping, headers: Iterable[str]
) -> list[str]:
    """Return placeholders that can never resolve against ``headers``."""

    available = set(headers)
    unresolved: list[str] = []
    for name in _unique(extract_placeholders(pattern)):
        if _mapped_column_for(name, column_mapping) not in available:
            unresolved.append(name)
    return unresolved


__all__ = [
    "LINK_FIELD",
    "MAPPABLE_FIELDS",
    "PatternResolution",
    "extract_placeholders",
    "find_unmapped_columns",
    "find_unresolvable_placeholders",
    "resolve_pattern",
    "validate_column_mapping",
    "validate_url_pattern",
]
