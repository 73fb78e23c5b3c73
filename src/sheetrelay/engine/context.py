"""SheetContext: in-memory openpyxl workbook standing in for the spreadsheet editor."""

from __future__ import annotations

from typing import Any

from openpyxl.cell.cell import Cell, MergedCell
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

CacheKey = tuple[str, int, int]


def _cell_store(ws: Worksheet) -> dict[tuple[int, int], Cell | MergedCell]:
    # openpyxl keeps stored cells in a private dict keyed by 1-based (row, col).
    # ws.cell() and ws.iter_rows() create missing cells, so side-effect free
    # lookups and bulk clearing go through this one accessor.
    return ws._cells


class SheetContext:
    """Wraps an openpyxl workbook with the state openpyxl does not track.

    Coordinates passed in and out are zero-based; openpyxl is one-based.
    The context never touches disk.
    """

    def __init__(self, sheets: list[str] | None = None) -> None:
        names = sheets or ["Sheet1"]
        self.wb = Workbook()
        self.wb.active.title = names[0]
        for name in names[1:]:
            self.wb.create_sheet(name)
        self.active_index = 0
        # Displayed values of formula cells, keyed by (sheet, row, col).
        self._cached: dict[CacheKey, Any] = {}
        self.charts: dict[str, list[dict[str, Any]]] = {}

    # ------------------------------------------------------------------
    # sheets
    # ------------------------------------------------------------------
    @property
    def sheet_names(self) -> list[str]:
        return list(self.wb.sheetnames)

    def get_sheet(self, name: str) -> Worksheet | None:
        if name not in self.wb.sheetnames:
            return None
        return self.wb[name]

    def active_sheet(self) -> Worksheet | None:
        if not self.wb.worksheets:
            return None
        if not 0 <= self.active_index < len(self.wb.worksheets):
            self.active_index = 0
        return self.wb.worksheets[self.active_index]

    def resolve(self, sheet_name: str | None = None, sheet_index: int | None = None) -> Worksheet | None:
        """Pick a sheet by name, then by index, else the active sheet. None if absent."""
        if sheet_name:
            return self.get_sheet(sheet_name)
        if sheet_index is not None:
            if 0 <= sheet_index < len(self.wb.worksheets):
                return self.wb.worksheets[sheet_index]
            return None
        return self.active_sheet()

    def index_of(self, ws: Worksheet) -> int:
        return self.wb.worksheets.index(ws)

    def add_sheet(self, name: str | None = None, at_index: int | None = None) -> Worksheet:
        if name is None:
            n = len(self.wb.worksheets) + 1
            while f"Sheet{n}" in self.wb.sheetnames:
                n += 1
            name = f"Sheet{n}"
        ws = self.wb.create_sheet(name, at_index)
        if len(self.wb.worksheets) == 1:
            self.active_index = 0
        return ws

    def remove_sheet(self, ws: Worksheet) -> None:
        idx = self.index_of(ws)
        self.forget_sheet(ws.title)
        self.wb.remove(ws)
        if idx < self.active_index or self.active_index >= len(self.wb.worksheets):
            self.active_index = max(0, self.active_index - 1)

    def forget_sheet(self, title: str) -> None:
        """Drop cached values and charts belonging to a sheet."""
        for key in [k for k in self._cached if k[0] == title]:
            del self._cached[key]
        self.charts.pop(title, None)

    def sheet_meta(self, ws: Worksheet) -> dict[str, Any]:
        rows, cols = self.extent(ws)
        return {
            "name": ws.title,
            "index": self.index_of(ws),
            "rowCount": rows,
            "columnCount": cols,
        }

    def extent(self, ws: Worksheet) -> tuple[int, int]:
        """(row_count, col_count) of the used area; (0, 0) for an empty sheet."""
        if not _cell_store(ws):
            return 0, 0
        return ws.max_row, ws.max_column

    # ------------------------------------------------------------------
    # cells
    # ------------------------------------------------------------------
    @staticmethod
    def peek(ws: Worksheet, row: int, col: int) -> Cell | MergedCell | None:
        """Read a cell without creating it."""
        return _cell_store(ws).get((row + 1, col + 1))

    @staticmethod
    def stored_cells(ws: Worksheet) -> list[tuple[int, int, Cell | MergedCell]]:
        """Existing cells as zero-based (row, col, cell), in row-major order."""
        return [(r - 1, c - 1, cell) for (r, c), cell in sorted(_cell_store(ws).items())]

    @staticmethod
    def cell(ws: Worksheet, row: int, col: int) -> Cell | MergedCell:
        return ws.cell(row=row + 1, column=col + 1)

    @staticmethod
    def is_formula(cell: Cell | MergedCell | None) -> bool:
        return cell is not None and cell.data_type == "f"

    def cached_value(self, title: str, row: int, col: int) -> Any:
        return self._cached.get((title, row, col))

    def set_cached(self, title: str, row: int, col: int, value: Any) -> None:
        if value is None:
            self._cached.pop((title, row, col), None)
        else:
            self._cached[(title, row, col)] = value

    def shift_cached(self, title: str, axis: str, at: int, delta: int) -> None:
        """Move cached values after a row/column insert (delta > 0) or delete (delta < 0)."""
        pos = 1 if axis == "row" else 2
        moved: dict[CacheKey, Any] = {}
        for key, value in self._cached.items():
            if key[0] != title:
                moved[key] = value
                continue
            idx = key[pos]
            if delta < 0 and at <= idx < at - delta:
                continue
            if idx >= at:
                idx += delta
            new_key = (title, idx, key[2]) if axis == "row" else (title, key[1], idx)
            moved[new_key] = value
        self._cached = moved

    def clear_cells(self, ws: Worksheet) -> None:
        """Remove all cell contents, styles, and merges from a sheet."""
        for mr in list(ws.merged_cells.ranges):
            ws.unmerge_cells(mr.coord)
        _cell_store(ws).clear()
        for key in [k for k in self._cached if k[0] == ws.title]:
            del self._cached[key]

    def close(self) -> None:
        self.wb.close()
