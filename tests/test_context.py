"""Tests for SheetContext sheet bookkeeping and cached values."""

from sheetrelay.engine.context import SheetContext


def test_default_context_has_one_sheet():
    ctx = SheetContext()
    assert ctx.sheet_names == ["Sheet1"]
    assert ctx.extent(ctx.active_sheet()) == (0, 0)


def test_resolve_prefers_name_then_index():
    ctx = SheetContext(["A", "B"])
    assert ctx.resolve("B").title == "B"
    assert ctx.resolve(sheet_index=0).title == "A"
    assert ctx.resolve(sheet_index=5) is None
    assert ctx.resolve("Nope") is None
    assert ctx.resolve().title == "A"


def test_peek_does_not_create_cells():
    ctx = SheetContext()
    ws = ctx.active_sheet()
    assert ctx.peek(ws, 4, 4) is None
    assert ctx.extent(ws) == (0, 0)
    ctx.cell(ws, 4, 4).value = 1
    assert ctx.extent(ws) == (5, 5)


def test_removing_active_sheet_moves_selection():
    ctx = SheetContext(["A", "B", "C"])
    ctx.active_index = 2
    ctx.remove_sheet(ctx.get_sheet("C"))
    assert ctx.active_sheet().title == "B"


def test_removing_earlier_sheet_keeps_active_sheet():
    ctx = SheetContext(["A", "B", "C"])
    ctx.active_index = 2
    ctx.remove_sheet(ctx.get_sheet("A"))
    assert ctx.active_sheet().title == "C"


def test_shift_cached_rows():
    ctx = SheetContext()
    ctx.set_cached("Sheet1", 1, 0, "one")
    ctx.set_cached("Sheet1", 3, 0, "three")
    ctx.set_cached("Other", 3, 0, "other")

    ctx.shift_cached("Sheet1", "row", 2, 2)
    assert ctx.cached_value("Sheet1", 1, 0) == "one"
    assert ctx.cached_value("Sheet1", 5, 0) == "three"
    assert ctx.cached_value("Other", 3, 0) == "other"

    ctx.shift_cached("Sheet1", "row", 5, -1)
    assert ctx.cached_value("Sheet1", 5, 0) is None
    assert ctx.cached_value("Sheet1", 1, 0) == "one"


def test_shift_cached_columns():
    ctx = SheetContext()
    ctx.set_cached("Sheet1", 0, 4, "x")
    ctx.shift_cached("Sheet1", "col", 1, -2)
    assert ctx.cached_value("Sheet1", 0, 2) == "x"


def test_clear_cells_drops_cache_and_merges():
    ctx = SheetContext()
    ws = ctx.active_sheet()
    ctx.cell(ws, 0, 0).value = "=1"
    ctx.set_cached("Sheet1", 0, 0, 1)
    ws.merge_cells("A2:B2")
    ctx.clear_cells(ws)
    assert ctx.cached_value("Sheet1", 0, 0) is None
    assert not ws.merged_cells.ranges
    assert ctx.extent(ws) == (0, 0)


def test_stored_cells_are_zero_based_and_ordered():
    ctx = SheetContext()
    ws = ctx.active_sheet()
    ctx.cell(ws, 2, 0).value = "c"
    ctx.cell(ws, 0, 1).value = "b"
    ctx.cell(ws, 0, 0).value = "a"
    assert [(r, c, cell.value) for r, c, cell in ctx.stored_cells(ws)] == [
        (0, 0, "a"), (0, 1, "b"), (2, 0, "c"),
    ]
    assert ctx.peek(ws, 5, 5) is None
    assert len(ctx.stored_cells(ws)) == 3
