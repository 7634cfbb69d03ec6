from __future__ import annotations
import csv
import io
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from openpyxl import load_workbook

from .errors import UserInputError


XLSX_EXTENSIONS = (".xlsx", ".xlsm", ".xltx", ".xltm")


@dataclass
class Table:
    headers: List[str] = field(default_factory=list)
    rows: List[dict] = field(default_factory=list)

    def sample(self, n: int) -> List[dict]:
        return self.rows[: max(0, n)]

    def __len__(self) -> int:
        return len(self.rows)


def _cell_to_str(v) -> str:
    # Spreadsheet numbers: 170.0 -> '170'
    if isinstance(v, bool):
        return str(v)
    if isinstance(v, numbers.Number):
        if float(v).is_integer():
            return str(int(v))
        return str(v)
    return "" if v is None else str(v)


def _rows_to_table(grid: List[List[str]], limit: Optional[int] = None) -> Table:
    header_idx = -1
    header: List[str] = []
    for i, row in enumerate(grid):
        if any(c.strip() for c in row):
            header_idx = i
            header = [c.strip() for c in row]
            break
    if header_idx == -1:
        return Table()

    rows: List[dict] = []
    for raw in grid[header_idx + 1 :]:
        if not raw or not any(c.strip() for c in raw):
            continue
        d: dict = {}
        for i, name in enumerate(header):
            if not name:
                continue
            d[name] = raw[i].strip() if i < len(raw) else ""
        rows.append(d)
        if limit is not None and len(rows) >= limit:
            break
    return Table([h for h in header if h], rows)


def read_csv_text(text: str, limit: Optional[int] = None) -> Table:
    """Parse CSV text; the first non-empty line is the header, blank lines are dropped."""
    grid = list(csv.reader(io.StringIO(text, newline="")))
    return _rows_to_table(grid, limit)


def read_xlsx_bytes(data: bytes, limit: Optional[int] = None) -> Table:
    """First worksheet of a workbook, read the same way as a CSV."""
    wb = load_workbook(filename=io.BytesIO(data), read_only=True, data_only=True)
    try:
        if not wb.worksheets:
            return Table()
        ws = wb.worksheets[0]
        grid = [[_cell_to_str(v) for v in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()
    return _rows_to_table(grid, limit)


def read_table(data: bytes, filename: str, limit: Optional[int] = None) -> Table:
    """Read an uploaded file by its extension; anything not a workbook is treated as CSV."""
    if not data:
        raise UserInputError("Uploaded file is empty")
    ext = Path(filename or "").suffix.lower()
    if ext in XLSX_EXTENSIONS:
        return read_xlsx_bytes(data, limit)
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return read_csv_text(text, limit)
