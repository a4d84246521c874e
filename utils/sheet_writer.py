"""
Sheet writers used by the spreadsheet generation pipeline.

The pipeline only talks to the ``SheetWriter`` protocol: one header row,
then data rows in order, then the serialized workbook. ``OpenpyxlSheetWriter``
is the production implementation built on an openpyxl write-only workbook, so
rows are streamed to the worksheet instead of being kept in memory, and the
finished file is saved to an in-memory buffer.
"""
import logging
import os
from io import BytesIO
from typing import Any, Protocol, Sequence

from openpyxl import Workbook
from openpyxl.cell import Cell, WriteOnlyCell
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from utils.cells import CellKind, CellValue

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_WIDTH = 15.0
HEADER_FILL_COLOR = "E0E0E0"
MAX_SHEET_NAME_LENGTH = 31


def escape_control_characters(text: str) -> str:
    """
    Replace characters XML cannot carry with their ``_xHHHH_`` escape.

    Args:
        text: Cell or header text

    Returns:
        str: Text that openpyxl accepts, e.g. "\\x07" becomes "_x0007_"
    """
    return ILLEGAL_CHARACTERS_RE.sub(lambda match: f"_x{ord(match.group()):04X}_", text)


class SheetWriter(Protocol):
    """Capability the pipeline needs from a spreadsheet encoder."""

    def write_header(self, headers: Sequence[str]) -> None:
        ...

    def write_row(self, row: int, cells: Sequence[CellValue]) -> None:
        ...

    def to_bytes(self) -> bytes:
        ...


class OpenpyxlSheetWriter:
    """
    Write a single worksheet with openpyxl in write-only mode.

    Row 0 is the header row; data rows must follow in order (1, 2, 3...),
    since a write-only worksheet can only be appended to. The instance owns
    its workbook: call ``close`` (or use it as a context manager) once done.

    Args:
        sheet_name: Title of the only worksheet in the workbook, at most 31 characters
        column_count: Number of columns that get the fixed default width

    Raises:
        ValueError: If the sheet name is too long or contains characters Excel forbids
    """

    def __init__(self, sheet_name: str, column_count: int = 0):
        if len(sheet_name) > MAX_SHEET_NAME_LENGTH:
            raise ValueError(
                f"Sheet name must be at most {MAX_SHEET_NAME_LENGTH} characters, got {len(sheet_name)}"
            )
        self.sheet_name = sheet_name
        self._workbook = Workbook(write_only=True)
        self._sheet = self._workbook.create_sheet(title=sheet_name)
        self._next_row = 0
        self._saved = False

        # Column widths have to be declared before the first row is appended
        for col in range(1, column_count + 1):
            self._sheet.column_dimensions[get_column_letter(col)].width = DEFAULT_COLUMN_WIDTH

        thin = Side(style="thin")
        self._header_font = Font(bold=True)
        self._header_fill = PatternFill(fill_type="solid", fgColor=HEADER_FILL_COLOR)
        self._header_border = Border(left=thin, right=thin, top=thin, bottom=thin)

    def __enter__(self) -> "OpenpyxlSheetWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def write_header(self, headers: Sequence[str]) -> None:
        """
        Write the styled header row (bold, shaded, thin border) at row 0.

        Args:
            headers: Column names in output order
        """
        self._check_row(0)
        row = []
        for header in headers:
            cell = self._text_cell(header)
            cell.font = self._header_font
            cell.fill = self._header_fill
            cell.border = self._header_border
            row.append(cell)
        self._sheet.append(row)
        self._next_row = 1

    def write_row(self, row: int, cells: Sequence[CellValue]) -> None:
        """
        Append one data row.

        Args:
            row: Zero-based sheet row index, must be the next row in sequence
            cells: Coerced cell values in column order

        Raises:
            ValueError: If ``row`` is not the next row of the worksheet
        """
        self._check_row(row)
        self._sheet.append([self._to_openpyxl(cell) for cell in cells])
        self._next_row += 1

    def to_bytes(self) -> bytes:
        """
        Serialize the workbook to xlsx bytes.

        A write-only workbook can be saved exactly once.
        """
        buffer = BytesIO()
        self._workbook.save(buffer)
        self._saved = True
        data = buffer.getvalue()
        logger.debug("Serialized workbook", extra={"sheet_name": self.sheet_name, "size_bytes": len(data)})
        return data

    def close(self) -> None:
        """Release the workbook, removing the sheet's temporary buffer if it was never saved."""
        if not self._saved:
            self._discard_sheet_buffer()
        self._workbook.close()

    def _discard_sheet_buffer(self) -> None:
        # openpyxl streams write-only rows into a temp file that only a successful save deletes
        rows = getattr(self._sheet, "_rows", None)
        if rows is not None:
            rows.close()
        writer = getattr(self._sheet, "_writer", None)
        if writer is None:
            return
        writer.close()
        path = getattr(writer, "out", None)
        if isinstance(path, str) and os.path.exists(path):
            os.remove(path)
            logger.debug("Removed unsaved sheet buffer", extra={"sheet_name": self.sheet_name})

    def _check_row(self, row: int) -> None:
        if row != self._next_row:
            raise ValueError(f"Rows must be written in order: expected row {self._next_row}, got {row}")

    def _text_cell(self, text: str) -> Cell:
        cell = WriteOnlyCell(self._sheet, value=escape_control_characters(text))
        # openpyxl treats a leading "=" as a formula; keep it as literal text
        if cell.data_type == "f":
            cell.data_type = "s"
        return cell

    def _to_openpyxl(self, cell: CellValue) -> Any:
        if cell.kind is CellKind.EMPTY:
            return None
        if cell.kind is CellKind.STRING:
            if cell.value.startswith("="):
                return self._text_cell(cell.value)
            return escape_control_characters(cell.value)
        return cell.value
