"""openpyxl-based sheet operations backing every registry command.

All coordinates are zero-based. Operations addressing a sheet that does not
exist return a neutral value ([], "", None) instead of raising.
"""

from __future__ import annotations

import csv
import io
import re
from typing import Any, Callable

from openpyxl.cell.cell import MergedCell
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheetrelay.engine.context import SheetContext

Grid = list[list[Any]]

COPY_OPTIONS = frozenset({"all", "values", "formulas", "styles"})
DEFAULT_ROW_HEIGHT = 15.0
DEFAULT_COLUMN_WIDTH = 8.43


# ---------------------------------------------------------------------------
# sheet management
# ---------------------------------------------------------------------------
def get_sheet_names(ctx: SheetContext) -> list[str]:
    return ctx.sheet_names


def get_sheet_count(ctx: SheetContext) -> int:
    return len(ctx.sheet_names)


def get_active_sheet(ctx: SheetContext) -> dict[str, Any] | None:
    ws = ctx.active_sheet()
    return ctx.sheet_meta(ws) if ws is not None else None


def get_active_sheet_index(ctx: SheetContext) -> int:
    return ctx.active_index if ctx.sheet_names else -1


def set_active_sheet_index(ctx: SheetContext, index: int) -> int | None:
    if not 0 <= index < len(ctx.sheet_names):
        return None
    ctx.active_index = index
    return index


def add_sheet(ctx: SheetContext, sheet_name: str | None = None, at_index: int | None = None) -> dict[str, Any]:
    """Add a sheet. Adding a name that already exists leaves the workbook unchanged."""
    if sheet_name and ctx.get_sheet(sheet_name) is not None:
        return ctx.sheet_meta(ctx.get_sheet(sheet_name))
    ws = ctx.add_sheet(sheet_name, at_index)
    return ctx.sheet_meta(ws)


def remove_sheet(ctx: SheetContext, sheet: str | int) -> str | None:
    if isinstance(sheet, int) and not isinstance(sheet, bool):
        ws = ctx.resolve(sheet_index=sheet)
    else:
        ws = ctx.get_sheet(str(sheet))
    if ws is None:
        return None
    title = ws.title
    ctx.remove_sheet(ws)
    return title


def clear_sheets(ctx: SheetContext, sheet_index: int | None = None) -> int:
    """Clear one sheet's contents, or remove every sheet when no index is given."""
    if sheet_index is not None:
        ws = ctx.resolve(sheet_index=sheet_index)
        if ws is None:
            return 0
        ctx.clear_cells(ws)
        return 1
    removed = 0
    for ws in list(ctx.wb.worksheets):
        ctx.remove_sheet(ws)
        removed += 1
    ctx.active_index = 0
    return removed


# ---------------------------------------------------------------------------
# processed / raw data
# ---------------------------------------------------------------------------
def _processed(ctx: SheetContext, ws: Worksheet, row: int, col: int) -> Any:
    cell = ctx.peek(ws, row, col)
    if cell is None:
        return None
    if ctx.is_formula(cell):
        return ctx.cached_value(ws.title, row, col)
    return cell.value


def _raw(ctx: SheetContext, ws: Worksheet, row: int, col: int) -> Any:
    cell = ctx.peek(ws, row, col)
    return None if cell is None else cell.value


def _read_grid(
    ctx: SheetContext,
    ws: Worksheet,
    start_row: int,
    start_col: int,
    row_count: int,
    col_count: int,
    reader: Callable[[SheetContext, Worksheet, int, int], Any],
) -> Grid:
    return [
        [reader(ctx, ws, r, c) for c in range(start_col, start_col + col_count)]
        for r in range(start_row, start_row + row_count)
    ]


def get_processed_data(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int = 1,
    col_count: int = 1,
    sheet: Worksheet | None = None,
) -> Grid:
    """Displayed values; formula cells yield their cached value."""
    if sheet is None:
        return []
    return _read_grid(ctx, sheet, start_row, start_col, row_count, col_count, _processed)


def get_raw_data(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int = 1,
    col_count: int = 1,
    sheet: Worksheet | None = None,
) -> Grid:
    """Formula text for formula cells, literal values otherwise."""
    if sheet is None:
        return []
    return _read_grid(ctx, sheet, start_row, start_col, row_count, col_count, _raw)


def get_processed_data_whole_sheet(ctx: SheetContext, sheet: Worksheet | None) -> Grid:
    if sheet is None:
        return []
    rows, cols = ctx.extent(sheet)
    return _read_grid(ctx, sheet, 0, 0, rows, cols, _processed)


def get_raw_data_whole_sheet(ctx: SheetContext, sheet: Worksheet | None) -> Grid:
    if sheet is None:
        return []
    rows, cols = ctx.extent(sheet)
    return _read_grid(ctx, sheet, 0, 0, rows, cols, _raw)


def _as_grid(data: Any, name: str) -> Grid:
    if not isinstance(data, list):
        raise ValueError(f"'{name}' must be a 2D array")
    return [row if isinstance(row, list) else [row] for row in data]


def set_processed_data(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    values: Any,
    sheet: Worksheet | None = None,
) -> int | None:
    """Write literal values. A string starting with '=' is stored as text, not a formula."""
    if sheet is None:
        return None
    written = 0
    for r, row in enumerate(_as_grid(values, "values")):
        for c, value in enumerate(row):
            cell = ctx.cell(sheet, start_row + r, start_col + c)
            if isinstance(cell, MergedCell):
                continue
            cell.value = value
            if isinstance(value, str) and value.startswith("="):
                cell.data_type = "s"
            ctx.set_cached(sheet.title, start_row + r, start_col + c, value)
            written += 1
    return written


def set_raw_data(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    formulas: Any,
    sheet: Worksheet | None = None,
) -> int | None:
    """Write formulas (and literals). None entries leave the cell untouched.

    A formula keeps the cell's cached displayed value, so writing values then
    formulas over the same range reproduces both.
    """
    if sheet is None:
        return None
    written = 0
    for r, row in enumerate(_as_grid(formulas, "formulas")):
        for c, entry in enumerate(row):
            if entry is None:
                continue
            cell = ctx.cell(sheet, start_row + r, start_col + c)
            if isinstance(cell, MergedCell):
                continue
            cell.value = entry
            if not ctx.is_formula(cell):
                ctx.set_cached(sheet.title, start_row + r, start_col + c, None)
            written += 1
    return written


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")


def _coerce_csv_value(text: str) -> Any:
    if text == "":
        return None
    if _NUMBER_RE.match(text):
        return float(text) if any(ch in text for ch in ".eE") else int(text)
    return text


def _format_csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return value


def _to_csv(grid: Grid, new_line: str, delimiter: str) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter, lineterminator=new_line)
    for row in grid:
        writer.writerow([_format_csv_value(v) for v in row])
    text = buf.getvalue()
    return text[: -len(new_line)] if text.endswith(new_line) else text


def _from_csv(text: str, new_line: str, delimiter: str) -> Grid:
    lines = text.split(new_line) if new_line else text.splitlines()
    if lines and lines[-1] == "":
        lines.pop()
    return [
        [_coerce_csv_value(field) for field in row]
        for row in csv.reader(lines, delimiter=delimiter)
    ]


def _write_csv_grid(ctx: SheetContext, ws: Worksheet, start_row: int, start_col: int, grid: Grid) -> int:
    """Cells from CSV: '=' fields become formulas, everything else literal."""
    written = 0
    for r, row in enumerate(grid):
        for c, value in enumerate(row):
            cell = ctx.cell(ws, start_row + r, start_col + c)
            if isinstance(cell, MergedCell):
                continue
            cell.value = value
            ctx.set_cached(ws.title, start_row + r, start_col + c, None if ctx.is_formula(cell) else value)
            written += 1
    return written


def get_sheet_csv(ctx: SheetContext, sheet: Worksheet | None) -> str:
    if sheet is None:
        return ""
    return _to_csv(get_processed_data_whole_sheet(ctx, sheet), "\r\n", ",")


def set_sheet_csv(ctx: SheetContext, csv_text: str, sheet: Worksheet | None) -> int | None:
    if sheet is None:
        return None
    ctx.clear_cells(sheet)
    grid = _from_csv(csv_text.replace("\r\n", "\n"), "\n", ",")
    return _write_csv_grid(ctx, sheet, 0, 0, grid)


def get_sheet_csv_of_range(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int,
    col_count: int,
    *,
    new_line: str = "\r",
    delimiter: str = ",",
    sheet: Worksheet | None = None,
) -> str:
    if sheet is None:
        return ""
    grid = get_processed_data(ctx, start_row, start_col, row_count, col_count, sheet)
    return _to_csv(grid, new_line, delimiter)


def set_sheet_csv_of_range(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    csv_text: str,
    *,
    new_line: str = "\r",
    delimiter: str = ",",
    sheet: Worksheet | None = None,
) -> int | None:
    if sheet is None:
        return None
    grid = _from_csv(csv_text, new_line, delimiter)
    return _write_csv_grid(ctx, sheet, start_row, start_col, grid)


# ---------------------------------------------------------------------------
# styles and merges
# ---------------------------------------------------------------------------
def _rgb(color: Any) -> str | None:
    if color is None or getattr(color, "type", None) != "rgb":
        return None
    return color.rgb


def _font_to_string(font: Font) -> str | None:
    parts: list[str] = []
    if font.b:
        parts.append("bold")
    if font.i:
        parts.append("italic")
    if font.sz:
        parts.append(f"{float(font.sz):g}pt")
    if font.name:
        parts.append(font.name)
    return " ".join(parts) or None


def _font_from_string(text: str | None, color: str | None, decoration: str | None) -> Font:
    bold = italic = False
    size: float | None = None
    names: list[str] = []
    for token in (text or "").split():
        low = token.lower()
        if low == "bold":
            bold = True
        elif low == "italic":
            italic = True
        elif low.endswith("pt") and _NUMBER_RE.match(low[:-2]):
            size = float(low[:-2])
        else:
            names.append(token)
    return Font(
        name=" ".join(names) or None,
        sz=size,
        b=bold,
        i=italic,
        color=color,
        u="single" if decoration == "underline" else None,
        strike=decoration == "lineThrough",
    )


def _border_to_dict(side: Side | None) -> dict[str, Any] | None:
    if side is None or side.style is None:
        return None
    return {"lineStyle": side.style, "color": _rgb(side.color)}


def _side_from_dict(data: dict[str, Any] | None) -> Side:
    if not data:
        return Side()
    return Side(style=data.get("lineStyle"), color=data.get("color"))


def _style_of(cell: Any) -> dict[str, Any]:
    if cell is None:
        return {
            "backColor": None, "foreColor": None, "font": None,
            "hAlign": None, "vAlign": None, "wordWrap": False,
            "textDecoration": None,
            "borderTop": None, "borderBottom": None, "borderLeft": None, "borderRight": None,
        }
    font = cell.font
    decoration = None
    if font.u:
        decoration = "underline"
    elif font.strike:
        decoration = "lineThrough"
    fill = cell.fill
    return {
        "backColor": _rgb(fill.fgColor) if fill.fill_type == "solid" else None,
        "foreColor": _rgb(font.color),
        "font": _font_to_string(font),
        "hAlign": cell.alignment.horizontal,
        "vAlign": cell.alignment.vertical,
        "wordWrap": bool(cell.alignment.wrap_text),
        "textDecoration": decoration,
        "borderTop": _border_to_dict(cell.border.top),
        "borderBottom": _border_to_dict(cell.border.bottom),
        "borderLeft": _border_to_dict(cell.border.left),
        "borderRight": _border_to_dict(cell.border.right),
    }


def _apply_style(cell: Any, style: dict[str, Any]) -> None:
    """Overwrite a cell's style entirely from a style dict."""
    cell.font = _font_from_string(style.get("font"), style.get("foreColor"), style.get("textDecoration"))
    back = style.get("backColor")
    cell.fill = PatternFill(fill_type="solid", fgColor=back) if back else PatternFill()
    cell.alignment = Alignment(
        horizontal=style.get("hAlign"),
        vertical=style.get("vAlign"),
        wrap_text=bool(style.get("wordWrap")) or None,
    )
    cell.border = Border(
        top=_side_from_dict(style.get("borderTop")),
        bottom=_side_from_dict(style.get("borderBottom")),
        left=_side_from_dict(style.get("borderLeft")),
        right=_side_from_dict(style.get("borderRight")),
    )


def _merges_in(ws: Worksheet, start_row: int, start_col: int, row_count: int, col_count: int) -> list[Any]:
    """Merged ranges intersecting the zero-based rectangle."""
    min_r, min_c = start_row + 1, start_col + 1
    max_r, max_c = start_row + row_count, start_col + col_count
    return [
        mr for mr in ws.merged_cells.ranges
        if not (mr.max_row < min_r or mr.min_row > max_r or mr.max_col < min_c or mr.min_col > max_c)
    ]


def _span_dict(mr: Any) -> dict[str, int]:
    return {
        "row": mr.min_row - 1,
        "col": mr.min_col - 1,
        "rowCount": mr.max_row - mr.min_row + 1,
        "colCount": mr.max_col - mr.min_col + 1,
    }


def get_styles_and_merges(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int = 1,
    col_count: int = 1,
    sheet: Worksheet | None = None,
) -> dict[str, list]:
    if sheet is None:
        return {"styles": [], "merges": []}
    styles = [
        [_style_of(ctx.peek(sheet, r, c)) for c in range(start_col, start_col + col_count)]
        for r in range(start_row, start_row + row_count)
    ]
    merges = [_span_dict(mr) for mr in _merges_in(sheet, start_row, start_col, row_count, col_count)]
    return {"styles": styles, "merges": merges}


def merge_range(ws: Worksheet, row: int, col: int, row_count: int, col_count: int) -> None:
    if row_count < 1 or col_count < 1 or (row_count == 1 and col_count == 1):
        return
    ws.merge_cells(
        start_row=row + 1, start_column=col + 1,
        end_row=row + row_count, end_column=col + col_count,
    )


def reset_merging_status(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int,
    col_count: int,
    sheet: Worksheet | None = None,
) -> int | None:
    if sheet is None:
        return None
    found = _merges_in(sheet, start_row, start_col, row_count, col_count)
    for mr in found:
        sheet.unmerge_cells(mr.coord)
    return len(found)


def set_styles_and_merges(
    ctx: SheetContext,
    start_row: int,
    start_col: int,
    row_count: int,
    col_count: int,
    styles: Any = None,
    merges: Any = None,
    sheet: Worksheet | None = None,
) -> dict[str, int] | None:
    """Apply styles cell by cell, then replace the merges within the range."""
    if sheet is None:
        return None
    styled = 0
    for r, row in enumerate(_as_grid(styles or [], "styles")):
        for c, style in enumerate(row):
            if not isinstance(style, dict):
                continue
            _apply_style(ctx.cell(sheet, start_row + r, start_col + c), style)
            styled += 1
    reset_merging_status(ctx, start_row, start_col, row_count, col_count, sheet)
    merged = 0
    for span in merges or []:
        merge_range(
            sheet, int(span["row"]), int(span["col"]),
            int(span.get("rowCount", 1)), int(span.get("colCount", 1)),
        )
        merged += 1
    return {"styled": styled, "merged": merged}


# ---------------------------------------------------------------------------
# formatter
# ---------------------------------------------------------------------------
def get_formatter(ctx: SheetContext, row: int, col: int, sheet: Worksheet | None = None) -> str | None:
    if sheet is None:
        return None
    cell = ctx.peek(sheet, row, col)
    if cell is None or cell.number_format == "General":
        return None
    return cell.number_format


def set_formatter(ctx: SheetContext, row: int, col: int, fmt: str, sheet: Worksheet | None = None) -> str | None:
    if sheet is None:
        return None
    ctx.cell(sheet, row, col).number_format = fmt
    return fmt


# ---------------------------------------------------------------------------
# charts
# ---------------------------------------------------------------------------
def get_charts(ctx: SheetContext, sheet: Worksheet | None) -> list[dict[str, Any]]:
    if sheet is None:
        return []
    return [dict(chart) for chart in ctx.charts.get(sheet.title, [])]


def set_charts(ctx: SheetContext, charts_data: Any, sheet: Worksheet | None) -> int | None:
    """Add chart descriptors. A descriptor identical to an existing one is not added twice."""
    if sheet is None:
        return None
    if not isinstance(charts_data, list):
        raise ValueError("'chartsData' must be an array")
    charts = ctx.charts.setdefault(sheet.title, [])
    added = 0
    for chart in charts_data:
        entry = {
            "type": chart.get("type"),
            "data": chart.get("data"),
            "position": chart.get("position"),
        }
        if entry not in charts:
            charts.append(entry)
            added += 1
    return added


# ---------------------------------------------------------------------------
# rows and columns
# ---------------------------------------------------------------------------
def _shift_span(
    span: tuple[int, int, int, int], axis: str, at: int, delta: int,
) -> tuple[int, int, int, int] | None:
    """Move a one-based (min_row, min_col, max_row, max_col) span across an insert/delete."""
    min_r, min_c, max_r, max_c = span
    lo, hi = (min_r, max_r) if axis == "row" else (min_c, max_c)
    if delta > 0:
        if lo >= at:
            lo, hi = lo + delta, hi + delta
        elif hi >= at:
            hi += delta
    else:
        count = -delta
        end = at + count - 1
        if hi < at:
            pass
        elif lo > end:
            lo, hi = lo - count, hi - count
        else:
            lo = lo if lo < at else at
            hi = hi - count if hi > end else at - 1
            if hi < lo:
                return None
    if axis == "row":
        return lo, min_c, hi, max_c
    return min_r, lo, max_r, hi


def _restructure(ctx: SheetContext, ws: Worksheet, axis: str, at: int, delta: int) -> None:
    """Insert (delta > 0) or delete (delta < 0) rows/columns at zero-based ``at``."""
    spans = [(mr.min_row, mr.min_col, mr.max_row, mr.max_col) for mr in ws.merged_cells.ranges]
    for mr in list(ws.merged_cells.ranges):
        ws.unmerge_cells(mr.coord)
    if axis == "row":
        ws.insert_rows(at + 1, delta) if delta > 0 else ws.delete_rows(at + 1, -delta)
    else:
        ws.insert_cols(at + 1, delta) if delta > 0 else ws.delete_cols(at + 1, -delta)
    for span in spans:
        moved = _shift_span(span, axis, at + 1, delta)
        if moved is None:
            continue
        min_r, min_c, max_r, max_c = moved
        merge_range(ws, min_r - 1, min_c - 1, max_r - min_r + 1, max_c - min_c + 1)
    ctx.shift_cached(ws.title, axis, at, delta)


def _check_count(count: int) -> int:
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    return count


def add_rows(ctx: SheetContext, row: int, count: int, sheet: Worksheet | None = None) -> int | None:
    if sheet is None:
        return None
    _restructure(ctx, sheet, "row", row, _check_count(count))
    return count


def delete_rows(ctx: SheetContext, row: int, count: int, sheet: Worksheet | None = None) -> int | None:
    if sheet is None:
        return None
    _restructure(ctx, sheet, "row", row, -_check_count(count))
    return count


def add_columns(ctx: SheetContext, col: int, count: int, sheet: Worksheet | None = None) -> int | None:
    if sheet is None:
        return None
    _restructure(ctx, sheet, "col", col, _check_count(count))
    return count


def delete_columns(ctx: SheetContext, col: int, count: int, sheet: Worksheet | None = None) -> int | None:
    if sheet is None:
        return None
    _restructure(ctx, sheet, "col", col, -_check_count(count))
    return count


def set_row_height(ctx: SheetContext, row: int, height: float, sheet: Worksheet | None = None) -> float | None:
    if sheet is None:
        return None
    sheet.row_dimensions[row + 1].height = float(height)
    return float(height)


def set_column_width(ctx: SheetContext, col: int, width: float, sheet: Worksheet | None = None) -> float | None:
    if sheet is None:
        return None
    sheet.column_dimensions[get_column_letter(col + 1)].width = float(width)
    return float(width)


def auto_fit_row(ctx: SheetContext, row: int, sheet: Worksheet | None = None) -> float | None:
    """Size a row to its tallest cell: line count times font size."""
    if sheet is None:
        return None
    height = DEFAULT_ROW_HEIGHT
    _, cols = ctx.extent(sheet)
    for col in range(cols):
        cell = ctx.peek(sheet, row, col)
        value = _processed(ctx, sheet, row, col)
        if cell is None or value is None:
            continue
        lines = str(value).count("\n") + 1
        size = float(cell.font.sz or 11)
        height = max(height, round(lines * size * 1.35, 2))
    return set_row_height(ctx, row, height, sheet)


def auto_fit_column(ctx: SheetContext, col: int, sheet: Worksheet | None = None) -> float | None:
    """Size a column to its longest displayed text."""
    if sheet is None:
        return None
    width = DEFAULT_COLUMN_WIDTH
    rows, _ = ctx.extent(sheet)
    for row in range(rows):
        value = _processed(ctx, sheet, row, col)
        if value is None:
            continue
        longest = max(len(line) for line in str(value).split("\n"))
        width = max(width, longest + 2.0)
    return set_column_width(ctx, col, width, sheet)


# ---------------------------------------------------------------------------
# copy
# ---------------------------------------------------------------------------
_CELL_REF_RE = re.compile(
    r"(?<![A-Za-z0-9_])(\$?)([A-Z]{1,3})(\$?)(\d+)(?![A-Za-z0-9_(])"
)


def _adjust_formula_refs(formula: str, row_delta: int, col_delta: int) -> str:
    """Shift relative A1 references in a formula; $-anchored axes stay put.

    Text inside double-quoted string literals is left alone.
    """
    parts = formula.split('"')
    for i in range(0, len(parts), 2):
        parts[i] = _CELL_REF_RE.sub(
            lambda m: _adjust_match(m, row_delta, col_delta),
            parts[i],
        )
    return '"'.join(parts)


def _adjust_match(m: re.Match, row_delta: int, col_delta: int) -> str:
    col_abs, col_letters, row_abs, row_num = m.group(1), m.group(2), m.group(3), m.group(4)
    if col_abs != "$" and col_delta:
        col_letters = get_column_letter(max(1, column_index_from_string(col_letters) + col_delta))
    if row_abs != "$" and row_delta:
        row_num = str(max(1, int(row_num) + row_delta))
    return f"{col_abs}{col_letters}{row_abs}{row_num}"


def copy_to(
    ctx: SheetContext,
    from_row: int,
    from_column: int,
    to_row: int,
    to_column: int,
    row_count: int = 1,
    column_count: int = 1,
    option: str = "all",
    sheet: Worksheet | None = None,
) -> int | None:
    """Copy a block within a sheet. Source is snapshotted first, so overlapping blocks are safe."""
    if option not in COPY_OPTIONS:
        raise ValueError(f"Unknown copy option '{option}'. Valid: {', '.join(sorted(COPY_OPTIONS))}")
    if sheet is None:
        return None
    row_delta, col_delta = to_row - from_row, to_column - from_column
    snapshot = []
    for r in range(row_count):
        for c in range(column_count):
            src = ctx.peek(sheet, from_row + r, from_column + c)
            snapshot.append((
                r, c,
                _raw(ctx, sheet, from_row + r, from_column + c),
                _processed(ctx, sheet, from_row + r, from_column + c),
                ctx.is_formula(src),
                _style_of(src),
                src.number_format if src is not None else "General",
            ))

    copied = 0
    for r, c, raw, shown, is_formula, style, number_format in snapshot:
        row, col = to_row + r, to_column + c
        dst = ctx.cell(sheet, row, col)
        if isinstance(dst, MergedCell):
            continue
        if option in ("all", "formulas"):
            dst.value = _adjust_formula_refs(raw, row_delta, col_delta) if is_formula else raw
            ctx.set_cached(sheet.title, row, col, shown if is_formula else None)
        elif option == "values":
            dst.value = shown
            if isinstance(shown, str) and shown.startswith("="):
                dst.data_type = "s"
            ctx.set_cached(sheet.title, row, col, shown)
        if option in ("all", "styles"):
            _apply_style(dst, style)
            dst.number_format = number_format
        copied += 1
    return copied


# ---------------------------------------------------------------------------
# sheet JSON
# ---------------------------------------------------------------------------
def get_sheet_json(ctx: SheetContext, sheet: Worksheet | None) -> dict[str, Any] | None:
    """Serialize a sheet: cells (value, formula, style, formatter), spans, sizes, charts."""
    if sheet is None:
        return None
    rows, cols = ctx.extent(sheet)
    table: dict[str, dict[str, Any]] = {}
    for r, c, cell in ctx.stored_cells(sheet):
        if isinstance(cell, MergedCell):
            continue
        entry: dict[str, Any] = {"value": _processed(ctx, sheet, r, c)}
        if ctx.is_formula(cell):
            entry["formula"] = cell.value
        if cell.has_style:
            entry["style"] = _style_of(cell)
            if cell.number_format != "General":
                entry["formatter"] = cell.number_format
        table.setdefault(str(r), {})[str(c)] = entry
    return {
        "name": sheet.title,
        "rowCount": rows,
        "columnCount": cols,
        "data": {"dataTable": table},
        "spans": [_span_dict(mr) for mr in sheet.merged_cells.ranges],
        "rows": {
            str(idx - 1): {"size": dim.height}
            for idx, dim in sheet.row_dimensions.items() if dim.height is not None
        },
        "columns": {
            str(column_index_from_string(key) - 1): {"size": dim.width}
            for key, dim in sheet.column_dimensions.items() if dim.customWidth
        },
        "charts": get_charts(ctx, sheet),
    }


def set_sheet_json(ctx: SheetContext, data: Any, sheet: Worksheet | None) -> int | None:
    """Replace a sheet's contents from the structure produced by ``get_sheet_json``."""
    if sheet is None:
        return None
    if not isinstance(data, dict):
        raise ValueError("'json' must be an object")
    ctx.clear_cells(sheet)
    ctx.charts.pop(sheet.title, None)
    written = 0
    table = (data.get("data") or {}).get("dataTable") or {}
    for r_key, row in table.items():
        for c_key, entry in row.items():
            r, c = int(r_key), int(c_key)
            cell = ctx.cell(sheet, r, c)
            formula = entry.get("formula")
            value = entry.get("value")
            if formula:
                cell.value = formula
                ctx.set_cached(sheet.title, r, c, value)
            else:
                cell.value = value
                if isinstance(value, str) and value.startswith("="):
                    cell.data_type = "s"
            if entry.get("style"):
                _apply_style(cell, entry["style"])
            if entry.get("formatter"):
                cell.number_format = entry["formatter"]
            written += 1
    for span in data.get("spans") or []:
        merge_range(sheet, span["row"], span["col"], span.get("rowCount", 1), span.get("colCount", 1))
    for r_key, info in (data.get("rows") or {}).items():
        set_row_height(ctx, int(r_key), info["size"], sheet)
    for c_key, info in (data.get("columns") or {}).items():
        set_column_width(ctx, int(c_key), info["size"], sheet)
    if data.get("charts"):
        set_charts(ctx, data["charts"], sheet)
    return written
