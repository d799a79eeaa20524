"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError
import pytest

from sitemap_builder.config import MAX_URLS_PER_SITEMAP, Settings


def test_settings_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.SITEMAP_MAX_URLS_PER_FILE == MAX_URLS_PER_SITEMAP
    assert settings.BATCH_MAX_CONCURRENT_FILES == 3
    assert settings.BATCH_MAX_RETRIES == 2
    assert settings.max_upload_size_bytes == 25 * 1024 * 1024


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SITEMAP_BASE_URL", "https://cdn.example.com/maps/")
    monkeypatch.setenv("SITEMAP_OUTPUT_DIR", "/tmp/maps")
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setenv("MAX_UPLOAD_SIZE_MB", "2")

    settings = Settings(_env_file=None)

    assert settings.SITEMAP_BASE_URL == "https://cdn.example.com/maps"
    assert settings.SITEMAP_OUTPUT_DIR == Path("/tmp/maps")
    assert settings.LOG_FILE is None
    assert settings.max_upload_size_bytes == 2 * 1024 * 1024


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SITEMAP_MAX_URLS_PER_FILE", "50001"),
        ("BATCH_MAX_CONCURRENT_FILES", "0"),
        ("BATCH_MAX_RETRIES", "6"),
    ],
)
def test_settings_reject_out_of_range_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
