"""
Spreadsheet parser: uploaded CSV / XLSX bytes to a list of rows.

Rows are plain dicts keyed by the cleaned header names, in column order.
CSV cells are kept as raw strings so locale-formatted numbers ("1.000,50")
reach the normalizer untouched; XLSX cells keep their native types.
"""
import csv
import logging
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import UploadFile
from openpyxl import load_workbook

from sheetlens.core.config import Settings, get_settings
from sheetlens.core.errors import ErrorCodes, ParseError
from sheetlens.core.performance import track_performance
from sheetlens.core.sanitization import clean_column_name, sanitize_filename, validate_column_name

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.csv', '.xlsx'}

DANGEROUS_CONTENT_TYPES = {
    'application/x-executable',
    'application/x-sharedlib',
    'application/x-msdownload',
    'text/html',
    'application/javascript',
}

CSV_DELIMITERS = [',', ';', '\t', '|']


def validate_file_extension(filename: Optional[str]) -> str:
    """Return the lowercased extension, or raise ParseError for unsupported files."""
    if not filename:
        raise ParseError("Filename is required", ErrorCodes.INVALID_FILE_TYPE)

    file_ext = Path(filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        raise ParseError(
            f"Unsupported file format: {file_ext or 'none'}. Allowed formats: CSV, XLSX",
            ErrorCodes.INVALID_FILE_TYPE,
        )
    return file_ext


def _decode(contents: bytes) -> str:
    try:
        return contents.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.info("CSV is not valid UTF-8, decoding as latin-1")
        return contents.decode('latin-1')


def detect_delimiter(text: str) -> str:
    """Delimiter occurring most often in the header line (',' on ties)."""
    header = text.split('\n', 1)[0]
    counts = {d: header.count(d) for d in CSV_DELIMITERS}
    best = max(CSV_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ','


def read_csv(contents: bytes) -> pd.DataFrame:
    text = _decode(contents)
    try:
        return pd.read_csv(
            StringIO(text),
            sep=detect_delimiter(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as e:
        logger.error(f"Error parsing CSV file: {e}")
        raise ParseError("Unable to parse CSV file. Please ensure the file is properly formatted.") from e


def read_xlsx(contents: bytes) -> pd.DataFrame:
    """
    Read the largest worksheet with openpyxl.

    Merged cells are filled with the value of their top-left cell.
    """
    try:
        wb = load_workbook(BytesIO(contents), data_only=True)
    except Exception as e:
        logger.error(f"Error opening Excel file: {e}")
        raise ParseError("Unable to parse Excel file. Please ensure the file is not corrupted.") from e

    if not wb.sheetnames:
        raise ParseError("No worksheets found")

    largest_sheet = max(wb.sheetnames, key=lambda name: wb[name].max_row)
    ws = wb[largest_sheet]
    if len(wb.sheetnames) > 1:
        logger.info(f"Multi-sheet Excel file detected. Selected '{largest_sheet}' from {len(wb.sheetnames)} sheets")

    merged_ranges = list(ws.merged_cells.ranges)
    for merged_range in merged_ranges:
        top_left_value = ws.cell(merged_range.min_row, merged_range.min_col).value
        ws.unmerge_cells(str(merged_range))
        for row in range(merged_range.min_row, merged_range.max_row + 1):
            for col in range(merged_range.min_col, merged_range.max_col + 1):
                ws.cell(row, col, top_left_value)
    if merged_ranges:
        logger.info(f"Unmerged {len(merged_ranges)} cell ranges in sheet '{largest_sheet}'")

    values = list(ws.values)
    if not values:
        raise ParseError("File appears to be empty or contains no data", ErrorCodes.FILE_EMPTY)
    return pd.DataFrame(values[1:], columns=list(values[0]))


def _unique_names(names: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    unique = []
    for name in names:
        if name in seen:
            seen[name] += 1
            unique.append(f"{name}_{seen[name]}")
        else:
            seen[name] = 1
            unique.append(name)
    return unique


def frame_to_rows(df: pd.DataFrame, settings: Settings) -> List[Dict[str, Any]]:
    """Clean headers, drop empty rows/columns and convert to a list of row dicts."""
    if len(df.columns) > settings.max_file_columns:
        raise ParseError(
            f"File contains too many columns ({len(df.columns)}). Maximum allowed: {settings.max_file_columns} columns."
        )

    columns = _unique_names([clean_column_name(col, i) for i, col in enumerate(df.columns)])
    for col in columns:
        if not validate_column_name(col):
            raise ParseError(f"Invalid column name: '{col}'")
    df = df.astype(object)
    df.columns = columns

    blank = df.apply(lambda col: col.map(lambda v: isinstance(v, str) and not v.strip()))
    df = df.mask(blank)
    df = df.dropna(how='all', axis=0)
    df = df.dropna(how='all', axis=1)
    if df.empty:
        raise ParseError("File appears to be empty or contains no data", ErrorCodes.FILE_EMPTY)
    df = df.astype(object).where(df.notna(), None)

    if len(df) > settings.max_file_rows:
        logger.info(f"Keeping the first {settings.max_file_rows:,} of {len(df):,} rows")
        df = df.head(settings.max_file_rows)

    return df.to_dict(orient='records')


def parse_contents(contents: bytes, filename: str, settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    """Parse raw file bytes. Raises ParseError on any failure."""
    settings = settings or get_settings()
    file_ext = validate_file_extension(filename)

    if len(contents) == 0:
        raise ParseError("File is empty", ErrorCodes.FILE_EMPTY)
    if len(contents) > settings.max_file_size_bytes:
        raise ParseError(
            f"File exceeds the {settings.max_file_size_mb}MB limit",
            ErrorCodes.FILE_TOO_LARGE,
        )

    df = read_csv(contents) if file_ext == '.csv' else read_xlsx(contents)
    rows = frame_to_rows(df, settings)
    logger.info(f"Successfully parsed file: {sanitize_filename(filename)}, {len(rows)} rows x {len(df.columns)} columns")
    return rows


@track_performance("parse_file")
async def parse_file(file: UploadFile, settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    """
    Parse an uploaded spreadsheet into rows.

    Raises:
        ParseError: Unsupported type, empty or oversized file, or unreadable content
    """
    file_ext = validate_file_extension(file.filename)
    if file.content_type and file.content_type.lower() in DANGEROUS_CONTENT_TYPES:
        raise ParseError(
            f"File type '{file.content_type}' is not allowed. Only CSV and Excel files are supported.",
            ErrorCodes.INVALID_FILE_TYPE,
        )
    logger.debug(f"Reading {file_ext} upload")
    contents = await file.read()
    return parse_contents(contents, file.filename, settings)
