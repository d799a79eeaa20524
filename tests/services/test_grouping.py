"""Tests for sitemap group name derivation."""

from __future__ import annotations

from sitemap_builder.services.grouping import (
    DEFAULT_GROUP_NAME,
    GroupingStrategy,
    group_name_for_row,
    sanitize_group_name,
)


def test_sanitize_group_name_reduces_to_safe_characters() -> None:
    assert sanitize_group_name("  Home & Garden ") == "home-garden"
    assert sanitize_group_name("Store_42") == "store_42"
    assert sanitize_group_name("***") == ""
    assert sanitize_group_name(None) == ""


def test_group_name_for_row_without_grouping_uses_default_group() -> None:
    assert (
        group_name_for_row({"Cat": "Tools"}, {"link": "URL", "category": "Cat"}, "none")
        == DEFAULT_GROUP_NAME
    )


def test_group_name_for_row_reads_mapped_grouping_column() -> None:
    group = group_name_for_row(
        {"Cat": "Power Tools"},
        {"link": "URL", "category": "Cat"},
        GroupingStrategy.CATEGORY,
    )

    assert group == "power-tools"


def test_group_name_for_row_falls_back_per_strategy() -> None:
    mapping = {"link": "URL", "store_id": "Store"}

    assert group_name_for_row({}, {"link": "URL"}, GroupingStrategy.CATEGORY) == (
        "uncategorized"
    )
    assert group_name_for_row({"Store": "  "}, mapping, GroupingStrategy.STORE_ID) == (
        "unknown_store"
    )
    assert group_name_for_row({"Store": "!!"}, mapping, GroupingStrategy.STORE_ID) == (
        "unknown_store"
    )
