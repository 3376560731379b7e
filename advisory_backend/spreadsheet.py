"""Decode uploaded spreadsheets into header-named and column-lettered row views."""

from __future__ import annotations

import struct
import zipfile
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import xlrd
from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from .exceptions import EmptyInputError, MalformedInputError, UnsupportedFileTypeError
from .logging_utils import get_logger

logger = get_logger(__name__)

SPREADSHEET_EXTENSIONS = {".xlsx", ".xls"}
# Legacy BIFF workbooks live in an OLE2 compound document.
OLE2_SIGNATURE = bytes.fromhex("D0CF11E0A1B11AE1")


@dataclass
class ParsedSheet:
    """Rows of the first worksheet in their original order.

    ``rows`` maps header text to cell value; ``raw_rows`` maps column letters
    (``A``, ``B``, ...) to the same cell values. ``row_numbers`` holds the
    1-based spreadsheet row each entry came from.
    """

    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    raw_rows: List[Dict[str, Any]] = field(default_factory=list)
    row_numbers: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


def ensure_spreadsheet_name(filename: Optional[str]) -> None:
    name = (filename or "").lower()
    if not any(name.endswith(ext) for ext in SPREADSHEET_EXTENSIONS):
        raise UnsupportedFileTypeError(
            "Only Excel files (.xlsx, .xls) can be uploaded",
            context={"file_name": filename},
        )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _header_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def build_sheet(values: Iterable[Sequence[Any]]) -> ParsedSheet:
    iterator = iter(values)
    try:
        header_row = next(iterator)
    except StopIteration:
        raise EmptyInputError("The spreadsheet is empty")
    headers = [_header_text(cell) for cell in header_row]
    sheet = ParsedSheet(headers=headers)
    for offset, row in enumerate(iterator, start=2):
        if all(_is_blank(cell) for cell in row):
            continue
        named: Dict[str, Any] = {}
        raw: Dict[str, Any] = {}
        for index, cell in enumerate(row):
            raw[get_column_letter(index + 1)] = cell
            if index < len(headers) and headers[index]:
                named[headers[index]] = cell
        sheet.rows.append(named)
        sheet.raw_rows.append(raw)
        sheet.row_numbers.append(offset)
    if not sheet.rows:
        raise EmptyInputError("The spreadsheet has no data rows")
    return sheet


def _legacy_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
        except xlrd.xldate.XLDateError:
            return cell.value
    if cell.ctype == xlrd.XL_CELL_NUMBER and float(cell.value).is_integer():
        return int(cell.value)
    return cell.value


def _parse_legacy_workbook(data: bytes) -> ParsedSheet:
    try:
        book = xlrd.open_workbook(file_contents=data)
    except (xlrd.XLRDError, CompDocError, ValueError, IndexError, struct.error) as exc:
        raise MalformedInputError(
            "The file could not be read as a spreadsheet",
            context={"reason": str(exc)},
        ) from exc
    try:
        worksheet = book.sheet_by_index(0)
        rows = (
            [_legacy_cell(cell, book.datemode) for cell in worksheet.row(index)]
            for index in range(worksheet.nrows)
        )
        return build_sheet(rows)
    finally:
        book.release_resources()


def parse_spreadsheet(data: bytes) -> ParsedSheet:
    """Parse the first worksheet of an uploaded workbook.

    Raises:
        EmptyInputError: no data rows below the header.
        MalformedInputError: the bytes are not a readable workbook.
    """
    if not data:
        raise EmptyInputError("The uploaded file is empty")
    if data.startswith(OLE2_SIGNATURE):
        sheet = _parse_legacy_workbook(data)
        logger.info("Parsed %d data rows (%d columns) from a legacy workbook", len(sheet), len(sheet.headers))
        return sheet
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise MalformedInputError(
            "The file could not be read as a spreadsheet",
            context={"reason": str(exc)},
        ) from exc
    try:
        worksheet = workbook.worksheets[0]
        sheet = build_sheet(worksheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    logger.info("Parsed %d data rows (%d columns)", len(sheet), len(sheet.headers))
    return sheet


def pick(row: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the first non-blank value whose header matches one of ``aliases``."""
    wanted = {alias.strip().casefold() for alias in aliases}
    for header, value in row.items():
        if header.strip().casefold() in wanted and not _is_blank(value):
            return value
    return None


def cell_text(value: Any) -> Optional[str]:
    """Render a cell as trimmed text; whole-number floats lose their ``.0``."""
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a money cell; text may carry thousands separators."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        amount = Decimal(str(value))
        return amount if amount.is_finite() else None
    text = str(value).replace(",", "").replace(" ", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
