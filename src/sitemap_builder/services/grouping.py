"""Grouping key derivation for per-group sitemap files."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
import re
from typing import Any, Final

DEFAULT_GROUP_NAME: Final[str] = "products"

_INVALID_GROUP_CHARACTERS = re.compile(r"[^a-z0-9_-]")
_REPEATED_HYPHENS = re.compile(r"-+")


class GroupingStrategy(str, Enum):
    """Logical field used to partition URLs into sitemap groups."""

    NONE = "none"
    CATEGORY = "category"
    STORE_ID = "store_id"


_FALLBACK_GROUP_NAMES: Final[dict[GroupingStrategy, str]] = {
    GroupingStrategy.CATEGORY: "uncategorized",
    GroupingStrategy.STORE_ID: "unknown_store",
}


def sanitize_group_name(group_name: str | None) -> str:
    """Lowercase and reduce ``group_name`` to ``[a-z0-9_-]`` characters."""

    if not group_name or not isinstance(group_name, str):
        return ""

    sanitized = _INVALID_GROUP_CHARACTERS.sub("-", group_name.strip().lower())
    sanitized = _REPEATED_HYPHENS.sub("-", sanitized)
    return sanitized.strip("-")


def fallback_group_name(grouping: GroupingStrategy) -> str:
    return _FALLBACK_GROUP_NAMES.get(grouping, "default")


def group_name_for_row(
    row_fields: Mapping[str, Any],
    column_mapping: Mapping[str, str],
    grouping: GroupingStrategy | str,
) -> str:
    grouping = GroupingStrategy(grouping)
    if grouping is GroupingStrategy.NONE:
        return DEFAULT_GROUP_NAME

    grouping_column = column_mapping.get(grouping.value)
    if not grouping_column:
        return fallback_group_name(grouping)

    raw_value = row_fields.get(grouping_column)
    if raw_value is None:
        return fallback_group_name(grouping)

    return sanitize_group_name(str(raw_value)) or fallback_group_name(grouping)


__all__ = [
    "DEFAULT_GROUP_NAME",
    "GroupingStrategy",
    "fallback_group_name",
    "group_name_for_row",
    "sanitize_group_name",
]
