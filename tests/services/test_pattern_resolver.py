"""Tests for URL pattern validation and per-row resolution."""

from __future__ import annotations

import pytest

from sitemap_builder.services.errors import InputValidationError
from sitemap_builder.services.pattern_resolver import (
    extract_placeholders,
    find_unmapped_columns,
    find_unresolvable_placeholders,
    resolve_pattern,
    validate_column_mapping,
    validate_url_pattern,
)


def test_resolve_pattern_substitutes_link_through_column_mapping() -> None:
    resolution = resolve_pattern(
        "https://x.com/{link}",
        {"URL": "a"},
        {"link": "URL"},
    )

    assert resolution.url == "https://x.com/a"
    assert resolution.excluded is False
    assert resolution.reason is None


def test_resolve_pattern_excludes_row_with_blank_link_value() -> None:
    resolution = resolve_pattern(
        "https://x.com/{link}",
        {"URL": "   "},
        {"link": "URL"},
    )

    assert resolution.url is None
    assert resolution.excluded is True
    assert resolution.reason is not None
    assert "link" in resolution.reason


def test_resolve_pattern_reports_every_missing_field_once() -> None:
    resolution = resolve_pattern(
        "https://x.com/{category}/{link}/{category}",
        {"URL": ""},
        {"link": "URL", "category": "Cat"},
    )

    assert resolution.reason == "Missing required fields: category, link"


def test_resolve_pattern_accepts_mapped_column_names_and_raw_columns() -> None:
    resolution = resolve_pattern(
        "https://shop.example/{Cat}/{slug}/{URL}",
        {"URL": "item-1", "Cat": "tools", "slug": "hammer"},
        {"link": "URL", "category": "Cat"},
    )

    assert resolution.url == "https://shop.example/tools/hammer/item-1"


def test_resolve_pattern_trims_values_and_escapes_braces() -> None:
    resolution = resolve_pattern(
        "https://x.com/{link}",
        {"URL": "  odd{name}  "},
        {"link": "URL"},
    )

    assert resolution.url == "https://x.com/odd%7Bname%7D"


def test_extract_placeholders_keeps_order_and_duplicates() -> None:
    assert extract_placeholders("https://x.com/{a}/{b}/{a}") == ["a", "b", "a"]
    assert extract_placeholders("") == []


def test_validate_column_mapping_drops_blank_entries() -> None:
    mapping = validate_column_mapping({"link": " URL ", "category": "", "lastmod": None})

    assert mapping == {"link": "URL"}


@pytest.mark.parametrize(
    ("column_mapping", "message"),
    [
        ({"category": "Cat"}, "Link column mapping is required"),
        ({"link": "URL", "title": "Name"}, "Unknown mapping fields: title"),
        ({"link": "URL", "category": "URL"}, "Each source column may be mapped once"),
    ],
)
def test_validate_column_mapping_rejects_invalid_mappings(
    column_mapping: dict[str, str],
    message: str,
) -> None:
    with pytest.raises(InputValidationError, match=message):
        validate_column_mapping(column_mapping)


@pytest.mark.parametrize(
    ("pattern", "message"),
    [
        ("", "URL pattern is required"),
        ("x.com/{link}", "must include protocol"),
        ("https://x.com/{link", "unbalanced braces"),
        ("https://x.com/{category}", "placeholder or reference"),
    ],
)
def test_validate_url_pattern_rejects_invalid_patterns(pattern: str, message: str) -> None:
    with pytest.raises(InputValidationError, match=message):
        validate_url_pattern(pattern, {"link": "URL"})


def test_validate_url_pattern_accepts_mapped_link_column_reference() -> None:
    assert validate_url_pattern(" https://x.com/{URL} ", {"link": "URL"}) == (
        "https://x.com/{URL}"
    )


def test_header_checks_report_missing_columns_and_placeholders() -> None:
    mapping = {"link": "URL", "category": "Cat"}
    headers = ["URL", "Name"]

    assert find_unmapped_columns(mapping, headers) == ["Cat"]
    assert find_unresolvable_placeholders(
        "https://x.com/{category}/{link}/{slug}", mapping, headers
    ) == ["category", "slug"]
