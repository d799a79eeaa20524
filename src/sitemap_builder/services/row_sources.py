"""Row source collaborators that feed uploads into the row stream."""

from __future__ import annotations

import csv
from collections.abc import Iterator
from io import StringIO
from pathlib import PurePath
from typing import Final, Protocol

from sitemap_builder.services.errors import (
    InputValidationError,
    UnsupportedFileTypeError,
)
from sitemap_builder.services.row_stream import SourceRow

CSV_FILE_TYPE: Final[str] = "csv"

_CSV_CONTENT_TYPES: Final[frozenset[str]] = frozenset(
    {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel"}
)
_SPREADSHEET_EXTENSIONS: Final[frozenset[str]] = frozenset({".xlsx", ".xls"})


class RowSource(Protocol):
    """Lazy, finite sequence of rows for one uploaded file."""

    @property
    def headers(self) -> list[str]: ...

    def __iter__(self) -> Iterator[SourceRow]: ...


class CsvRowSource:
    """Stream rows from CSV bytes keyed by the trimmed header row."""

    def __init__(self, content: bytes, *, encoding: str = "utf-8-sig") -> None:
        self._content = content
        self._encoding = encoding
        self._headers: list[str] | None = None

    @property
    def headers(self) -> list[str]:
        if self._headers is None:
            try:
                self._headers = next(self._non_blank_rows(self._reader()), [])
            except csv.Error as exc:
                raise InputValidationError(f"CSV parsing error: {exc}") from exc
        return self._headers

    def __iter__(self) -> Iterator[SourceRow]:
        try:
            rows = self._non_blank_rows(self._reader())
            headers = next(rows, None)
            if headers is None:
                return
            self._headers = headers

            for row_number, cells in enumerate(rows, start=1):
                yield SourceRow(data=self._row_mapping(headers, cells), row_number=row_number)
        except csv.Error as exc:
            raise InputValidationError(f"CSV parsing error: {exc}") from exc

    def _reader(self) -> Iterator[list[str]]:
        try:
            text = self._content.decode(self._encoding)
        except UnicodeDecodeError as exc:
            raise InputValidationError(
                f"CSV file is not valid {self._encoding} text: {exc}"
            ) from exc
        return csv.reader(StringIO(text, newline=""))

    @staticmethod
    def _non_blank_rows(reader: Iterator[list[str]]) -> Iterator[list[str]]:
        for cells in reader:
            trimmed = [cell.strip() for cell in cells]
            if any(trimmed):
                yield trimmed

    @staticmethod
    def _row_mapping(headers: list[str], cells: list[str]) -> dict[str, str]:
        padded = cells + [""] * (len(headers) - len(cells))
        return {
            header: value for header, value in zip(headers, padded) if header
        }


def detect_file_type(filename: str | None, content_type: str | None) -> str:
    """Return the supported file type for an upload or raise."""

    suffix = PurePath(filename or "").suffix.lower()
    if suffix == ".csv":
        return CSV_FILE_TYPE

    if suffix in _SPREADSHEET_EXTENSIONS:
        raise UnsupportedFileTypeError(
            f"Spreadsheet uploads ({suffix}) are not supported; export the sheet as CSV"
        )

    if not suffix and (content_type or "").split(";")[0].strip() in _CSV_CONTENT_TYPES:
        return CSV_FILE_TYPE

    raise UnsupportedFileTypeError(
        "Unsupported file type. Please upload CSV files only."
    )


def open_row_source(file_type: str, content: bytes) -> CsvRowSource:
    if file_type == CSV_FILE_TYPE:
        return CsvRowSource(content)
    raise UnsupportedFileTypeError(f"Unsupported file type: {file_type}")


__all__ = [
    "CSV_FILE_TYPE",
    "CsvRowSource",
    "RowSource",
    "detect_file_type",
    "open_row_source",
]
