import json
import logging
import math
import time
import uuid
from collections.abc import Mapping
from typing import Any, Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from utils.cells import EMPTY_CELL, CellValue
from utils.result import Result
from utils.sheet_writer import OpenpyxlSheetWriter, SheetWriter

logger = logging.getLogger(__name__)

DEFAULT_SHEET_NAME = "Sheet1"
DEFAULT_FILENAME = "export.xlsx"
FALLBACK_HEADER = "data"
ARRAY_PLACEHOLDER = "[Array]"
OBJECT_PLACEHOLDER = "[Object]"

# Records materialized at once; peak memory is bounded by BATCH_SIZE x column count
BATCH_SIZE = 1000
PROGRESS_LOG_INTERVAL = 10000

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

ProgressCallback = Callable[[int, int], None]


class LogContext:
    """Context manager for tracking and logging operation metrics"""
    def __init__(self, operation_name: str, **kwargs):
        self.operation_name = operation_name
        self.start_time = None
        self.request_id = kwargs.get('request_id', str(uuid.uuid4())[:8])
        self.extra = kwargs

    def __enter__(self):
        self.start_time = time.time()
        logger.info(f"Starting {self.operation_name}", extra={**self.extra, "request_id": self.request_id})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if exc_type:
            logger.error(
                f"Failed {self.operation_name} in {duration:.2f}s: {str(exc_val)}",
                extra={**self.extra, "request_id": self.request_id, "duration": duration},
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            logger.info(
                f"Completed {self.operation_name} in {duration:.2f}s",
                extra={**self.extra, "request_id": self.request_id, "duration": duration}
            )


class ExportOptions(BaseModel):
    """
    Options controlling how records are laid out in the workbook.

    Attributes:
        filename: Suggested download name, only used for the Content-Disposition header
        sheet_name: Title of the worksheet (``sheetName`` in JSON), defaults to "Sheet1"
        headers: Explicit column names and order; auto-detected when missing or empty
        numeric_cells: Write JSON numbers as numeric cells instead of text (``numericCells`` in JSON)
    """
    model_config = ConfigDict(populate_by_name=True)

    filename: str = DEFAULT_FILENAME
    sheet_name: Optional[str] = Field(default=None, alias="sheetName")
    headers: Optional[List[str]] = None
    numeric_cells: bool = Field(default=False, alias="numericCells")


class ExportRequest(BaseModel):
    """
    Body of a spreadsheet generation request.

    Attributes:
        data: JSON records, one spreadsheet row each
        options: Layout options for the generated workbook
    """
    data: List[Any]
    options: ExportOptions = Field(default_factory=ExportOptions)


def resolve_headers(records: Sequence[Any], explicit_headers: Optional[List[str]] = None) -> List[str]:
    """
    Determine the ordered column names of the output sheet.

    Explicit headers win and are returned as given, duplicates included.
    Otherwise the keys of the first record are used, sorted so that the
    column order does not depend on key insertion order. Later records are
    never inspected.

    Args:
        records: The input records
        explicit_headers: Caller supplied column names, if any

    Returns:
        List of column names; ``["data"]`` when nothing better is available
    """
    if explicit_headers:
        return list(explicit_headers)

    if records and isinstance(records[0], Mapping):
        return sorted(records[0].keys())

    return [FALLBACK_HEADER]


def _number_text(value: Any) -> str:
    # json.dumps gives the canonical JSON spelling: 1, 1.5, 1e+20
    return json.dumps(value)


def coerce_value(value: Any, numeric_cells: bool = False) -> CellValue:
    """
    Convert one JSON value into a typed cell.

    Numbers become text unless ``numeric_cells`` is set, in which case an
    integer within the signed 64-bit range becomes an integer cell and a
    finite float becomes a float cell. Nested arrays and objects are not
    expanded; a placeholder string marks them.

    Args:
        value: Decoded JSON value (None, bool, int, float, str, list or dict)
        numeric_cells: Whether numbers are written as numeric cells

    Returns:
        CellValue: The coerced cell, never raises
    """
    if value is None:
        return EMPTY_CELL
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return CellValue.boolean(value)
    if isinstance(value, int):
        if numeric_cells and INT64_MIN <= value <= INT64_MAX:
            return CellValue.integer(value)
        return CellValue.string(_number_text(value))
    if isinstance(value, float):
        if numeric_cells and math.isfinite(value):
            return CellValue.floating(value)
        return CellValue.string(_number_text(value))
    if isinstance(value, str):
        return CellValue.string(value)
    if isinstance(value, (list, tuple)):
        return CellValue.string(ARRAY_PLACEHOLDER)
    if isinstance(value, Mapping):
        return CellValue.string(OBJECT_PLACEHOLDER)
    return CellValue.string(str(value))


def materialize_row(record: Any, headers: Sequence[str], numeric_cells: bool = False) -> List[CellValue]:
    """
    Map a record onto the header columns.

    Always returns exactly ``len(headers)`` cells in header order. Missing keys
    produce empty cells and keys outside the headers are ignored. A record
    that is not a JSON object has no fields, so its row is entirely empty.

    Args:
        record: One input record
        headers: Column names in output order
        numeric_cells: Whether numbers are written as numeric cells

    Returns:
        List[CellValue]: One cell per header
    """
    if not isinstance(record, Mapping):
        return [EMPTY_CELL] * len(headers)
    return [coerce_value(record.get(header), numeric_cells) for header in headers]


def log_progress(rows_written: int, total_rows: int) -> None:
    """Default progress observer: log the number of rows written so far."""
    logger.info(
        f"Progress: {rows_written} / {total_rows} rows processed",
        extra={"rows_written": rows_written, "total_rows": total_rows}
    )


def write_rows(
    writer: SheetWriter,
    records: Sequence[Any],
    headers: Sequence[str],
    batch_size: int = BATCH_SIZE,
    numeric_cells: bool = False,
    on_progress: Optional[ProgressCallback] = None
) -> int:
    """
    Write all records below the header row, one batch at a time.

    Each batch is materialized completely, written in order and then
    released before the next one is built. Record ``i`` lands on sheet row
    ``i + 1``. ``on_progress`` is called whenever a batch crosses a multiple
    of PROGRESS_LOG_INTERVAL rows, and once more after the final batch.

    Args:
        writer: Destination sheet writer, header row already written
        records: The input records
        headers: Column names in output order
        batch_size: Number of records materialized at once
        numeric_cells: Whether numbers are written as numeric cells
        on_progress: Observer called with (rows_written, total_rows)

    Returns:
        int: Number of data rows written

    Raises:
        ValueError: If batch_size is smaller than 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    total = len(records)
    for start in range(0, total, batch_size):
        end = min(start + batch_size, total)
        batch = [materialize_row(record, headers, numeric_cells) for record in records[start:end]]

        for offset, cells in enumerate(batch, start=start):
            writer.write_row(offset + 1, cells)
        del batch

        if on_progress is not None and (end // PROGRESS_LOG_INTERVAL > start // PROGRESS_LOG_INTERVAL or end == total):
            on_progress(end, total)

    return total


class SpreadsheetGenerator:
    """
    Converts JSON records into an xlsx workbook.

    The workflow is:
    - Resolve the header columns
    - Write the styled header row
    - Materialize and write data rows batch by batch
    - Serialize the workbook to bytes
    """

    @staticmethod
    def convert_to_spreadsheet(
        records: Sequence[Any],
        options: Optional[ExportOptions] = None,
        on_progress: Optional[ProgressCallback] = log_progress
    ) -> Result[bytes]:
        """
        Build a single-sheet workbook from the given records.

        Args:
            records: JSON records, one row each
            options: Layout options; defaults apply when None
            on_progress: Observer for batch progress, logs by default

        Returns:
            Result[bytes]: The xlsx file contents, or a 500 failure carrying the underlying error
        """
        if options is None:
            options = ExportOptions()
        sheet_name = options.sheet_name or DEFAULT_SHEET_NAME

        log_context = {
            "request_id": str(uuid.uuid4())[:8],
            "record_count": len(records),
            "sheet_name": sheet_name,
            "export_filename": options.filename
        }
        logger.info(f"Starting Excel generation for {len(records)} records", extra=log_context)

        try:
            with LogContext("spreadsheet generation", **log_context):
                headers = resolve_headers(records, options.headers)
                logger.info(f"Detected {len(headers)} columns: {headers}", extra=log_context)

                with OpenpyxlSheetWriter(sheet_name, len(headers)) as writer:
                    writer.write_header(headers)
                    rows = write_rows(
                        writer,
                        records,
                        headers,
                        numeric_cells=options.numeric_cells,
                        on_progress=on_progress
                    )
                    logger.info(f"Finalizing workbook with {rows} data rows", extra=log_context)
                    excel_data = writer.to_bytes()

            logger.info(f"Excel file generated, size: {len(excel_data)} bytes", extra=log_context)
            return Result.ok(excel_data)

        except Exception as e:
            logger.error(f"Excel generation failed: {str(e)}", extra={**log_context, "error_type": type(e).__name__})
            return Result.generation_failed(str(e))
