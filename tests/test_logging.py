"""Tests for structured logging and sensitive field redaction."""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from sitemap_builder.utils.logging import (
    REQUEST_ID_HEADER,
    JsonLogFormatter,
    SensitiveDataFilter,
    add_request_logging_middleware,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="sitemap_builder.downloads",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="download_token_issued",
        args=None,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(
        JsonLogFormatter().format(_record(batch_id="batch_1", file_count=3))
    )

    assert payload["message"] == "download_token_issued"
    assert payload["logger"] == "sitemap_builder.downloads"
    assert payload["level"] == "INFO"
    assert payload["batch_id"] == "batch_1"
    assert payload["file_count"] == 3


def test_sensitive_extra_fields_are_redacted() -> None:
    record = _record(download_token="abc123", kind="batch")

    assert SensitiveDataFilter().filter(record) is True
    assert record.download_token == "[REDACTED]"
    assert record.kind == "batch"


def test_sensitive_keys_in_dict_messages_are_redacted() -> None:
    record = _record()
    record.msg = {"api_key": "secret-value", "nested": {"password": "x", "n": 1}}

    SensitiveDataFilter().filter(record)

    assert record.msg == {"api_key": "[REDACTED]", "nested": {"password": "[REDACTED]", "n": 1}}


def test_sensitive_keys_inside_lists_are_redacted() -> None:
    record = _record(files=[{"name": "a.csv", "download_token": "abc"}])

    SensitiveDataFilter().filter(record)

    assert record.files == [{"name": "a.csv", "download_token": "[REDACTED]"}]


def _download_app() -> FastAPI:
    app = FastAPI()
    add_request_logging_middleware(app)

    @app.get("/api/downloads/{token}")
    async def download(token: str) -> dict[str, int]:
        return {"length": len(token)}

    return app


@pytest.mark.asyncio
async def test_request_log_uses_route_template_instead_of_token(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="sitemap_builder.request")

    async with AsyncClient(
        transport=ASGITransport(app=_download_app()), base_url="http://test"
    ) as client:
        response = await client.get(
            "/api/downloads/secret-token-value", headers={REQUEST_ID_HEADER: "req-42"}
        )

    assert response.status_code == 200
    assert response.headers[REQUEST_ID_HEADER] == "req-42"
    [record] = [item for item in caplog.records if item.msg == "request_completed"]
    assert record.path == "/api/downloads/{token}"
    assert record.path_params == {"token": "[REDACTED]"}
    assert record.request_id == "req-42"
    assert record.status_code == 200


@pytest.mark.asyncio
async def test_request_id_is_generated_when_missing() -> None:
    async with AsyncClient(
        transport=ASGITransport(app=_download_app()), base_url="http://test"
    ) as client:
        response = await client.get("/api/downloads/abc")

    assert len(response.headers[REQUEST_ID_HEADER]) == 32
