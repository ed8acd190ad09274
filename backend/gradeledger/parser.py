"""Read uploaded grade sheets into fixed-shape rows.

Spreadsheets arrive as ``.xlsx`` workbooks, ``.csv`` files or a JSON list of
objects that a client already parsed. Every entry point enforces the same
contract: the required columns must all be present (matched
case-insensitively) or :class:`MissingColumnsError` is raised before a single
row is produced.

Type coercion happens here and nowhere else. The LRN cell becomes a trimmed
string (or ``None`` when blank) and the grade cell becomes an ``int`` only
when it holds an integral number. Anything else leaves ``grade`` unset and
keeps the literal cell value in ``raw_grade`` so that validation can report
it verbatim.
"""

from __future__ import annotations

import csv
import io
import math
import os
from typing import Any, Dict, Iterable, List, Mapping, Sequence
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from .models import UploadRow

LRN_COLUMN = "LRN"
GRADE_COLUMN = "Grade"
REQUIRED_COLUMNS: Sequence[str] = (LRN_COLUMN, GRADE_COLUMN)

EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
CSV_EXTENSIONS = {".csv"}


class MissingColumnsError(ValueError):
    """Raised when the uploaded sheet lacks one or more required columns."""

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(
            "The uploaded file is missing the following required columns: "
            + ", ".join(self.missing)
        )


class UnsupportedFileError(ValueError):
    """Raised when an upload cannot be read as a spreadsheet."""


def _clean_header(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _resolve_columns(
    headers: Sequence[Any], required: Sequence[str]
) -> List[str | None]:
    """Return the canonical name for each header position.

    Required columns are renamed to their canonical spelling; other headers
    are kept as written. Blank headers map to ``None`` and are ignored.
    """

    canonical = {name.lower(): name for name in required}
    resolved: List[str | None] = []
    for header in headers:
        cleaned = _clean_header(header)
        if not cleaned:
            resolved.append(None)
            continue
        resolved.append(canonical.get(cleaned.lower(), cleaned))

    missing = [name for name in required if name not in resolved]
    if missing:
        raise MissingColumnsError(missing)
    return resolved


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_lrn(value: Any) -> str | None:
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def coerce_grade(value: Any) -> int | None:
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip()) if not isinstance(value, float) else value
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def _build_rows(
    header_map: Sequence[str | None],
    records: Iterable[Sequence[Any]],
    *,
    first_row_number: int,
) -> List[UploadRow]:
    rows: List[UploadRow] = []
    for row_number, values in enumerate(records, start=first_row_number):
        cells: Dict[str, Any] = {}
        for column, value in zip(header_map, values):
            if column is not None:
                cells[column] = value

        if all(_is_blank(value) for value in cells.values()):
            continue

        raw_grade = cells.pop(GRADE_COLUMN, None)
        raw_lrn = cells.pop(LRN_COLUMN, None)
        rows.append(
            UploadRow(
                row_number=row_number,
                lrn=coerce_lrn(raw_lrn),
                grade=coerce_grade(raw_grade),
                raw_grade=raw_grade,
                extras=cells,
            )
        )
    return rows


def _read_excel(content: bytes, required: Sequence[str]) -> List[UploadRow]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise UnsupportedFileError(f"Invalid Excel file: {exc}") from exc

    try:
        worksheet = workbook.worksheets[0]
        values = worksheet.iter_rows(values_only=True)
        headers = next(values, None) or ()
        header_map = _resolve_columns(headers, required)
        return _build_rows(header_map, values, first_row_number=2)
    finally:
        workbook.close()


def _read_csv(content: bytes, required: Sequence[str]) -> List[UploadRow]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise UnsupportedFileError("CSV files must be UTF-8 encoded.") from exc

    reader = csv.reader(io.StringIO(text))
    headers = next(reader, None) or []
    header_map = _resolve_columns(headers, required)
    return _build_rows(header_map, reader, first_row_number=2)


def parse_upload(
    filename: str, content: bytes, required: Sequence[str] = REQUIRED_COLUMNS
) -> List[UploadRow]:
    """Parse an uploaded file, choosing the reader from its extension."""

    extension = os.path.splitext(filename or "")[1].lower()
    if extension in EXCEL_EXTENSIONS:
        return _read_excel(content, required)
    if extension in CSV_EXTENSIONS:
        return _read_csv(content, required)
    raise UnsupportedFileError(
        "Unsupported file type. Upload an .xlsx or .csv file."
    )


def parse_records(
    records: Sequence[Mapping[str, Any]],
    required: Sequence[str] = REQUIRED_COLUMNS,
) -> List[UploadRow]:
    """Parse rows that were already decoded into objects (JSON uploads)."""

    headers: List[str] = []
    for record in records:
        if not isinstance(record, Mapping):
            raise UnsupportedFileError("Each grade row must be an object.")
        for key in record:
            if key not in headers:
                headers.append(key)

    header_map = _resolve_columns(headers, required)
    ordered = ([record.get(key) for key in headers] for record in records)
    return _build_rows(header_map, ordered, first_row_number=1)


def build_template(columns: Sequence[str] = REQUIRED_COLUMNS) -> bytes:
    """Return an empty upload workbook containing only the header row."""

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Grades Template"
    sheet.append(list(columns))

    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    for cell in sheet[1]:
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    for index, column in enumerate(columns, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = max(len(column) + 4, 15)

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


__all__ = [
    "LRN_COLUMN",
    "GRADE_COLUMN",
    "REQUIRED_COLUMNS",
    "MissingColumnsError",
    "UnsupportedFileError",
    "coerce_lrn",
    "coerce_grade",
    "parse_upload",
    "parse_records",
    "build_template",
]
