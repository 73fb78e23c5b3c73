"""SheetEditor: interactive edits against a SheetContext that raise change events.

Commands run through a CommandRegistry never raise events; only the user
actions below do. Replicated commands therefore cannot echo back into the
sync engine as new edits.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sheetrelay.contracts.events import RANGE_ACTION_CLEAR, ChangeEvent, ChangeKind, RangeSpec
from sheetrelay.engine.registry import CommandRegistry

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeEvent], None]


class SheetEditor:
    def __init__(self, registry: CommandRegistry | None = None) -> None:
        self.registry = registry or CommandRegistry()
        self._listeners: list[Listener] = []

    @property
    def ctx(self):
        return self.registry.ctx

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ChangeEvent) -> ChangeEvent:
        for listener in list(self._listeners):
            listener(event)
        return event

    def _apply(self, command: str, params: dict[str, Any]) -> None:
        result = self.registry.execute(command, params)
        if not result.success:
            raise ValueError(result.error)

    def _sheet_name(self, sheet_name: str | None) -> str | None:
        if sheet_name is not None:
            return sheet_name
        ws = self.ctx.active_sheet()
        return ws.title if ws is not None else None

    def _old_value(self, row: int, col: int, sheet_name: str | None) -> Any:
        rows = self.registry.execute(
            "getRawData", {"startRow": row, "startCol": col, "sheetName": sheet_name},
        ).result
        return rows[0][0] if rows else None

    # ------------------------------------------------------------------
    # user actions
    # ------------------------------------------------------------------
    def edit_cell(self, row: int, col: int, value: Any, sheet_name: str | None = None) -> ChangeEvent:
        """Type a value into a cell. A leading '=' enters a formula."""
        sheet_name = self._sheet_name(sheet_name)
        old = self._old_value(row, col, sheet_name)
        command = "setRawData" if isinstance(value, str) and value.startswith("=") else "setProcessedData"
        key = "formulas" if command == "setRawData" else "values"
        self._apply(command, {"startRow": row, "startCol": col, key: [[value]], "sheetName": sheet_name})
        return self._emit(ChangeEvent(
            kind=ChangeKind.VALUE_CHANGED, row=row, col=col,
            new_value=value, old_value=old, sheet_name=sheet_name,
        ))

    def enter_formula(
        self,
        row: int,
        col: int,
        formula: str,
        cached_value: Any = None,
        sheet_name: str | None = None,
    ) -> ChangeEvent:
        """Commit a formula. ``cached_value`` stands in for the editor's own evaluation."""
        sheet_name = self._sheet_name(sheet_name)
        if not formula.startswith("="):
            formula = "=" + formula
        at = {"startRow": row, "startCol": col, "sheetName": sheet_name}
        if cached_value is not None:
            self._apply("setProcessedData", {**at, "values": [[cached_value]]})
        self._apply("setRawData", {**at, "formulas": [[formula]]})
        return self._emit(ChangeEvent(
            kind=ChangeKind.FORMULA_ENTERED, row=row, col=col,
            formula=formula, sheet_name=sheet_name,
        ))

    def select(self, row: int, col: int, row_count: int = 1, col_count: int = 1) -> ChangeEvent:
        return self._emit(ChangeEvent(
            kind=ChangeKind.SELECTION_CHANGED, row=row, col=col,
            row_count=row_count, col_count=col_count,
            sheet_name=self._sheet_name(None),
        ))

    def merge(self, row: int, col: int, row_count: int, col_count: int, sheet_name: str | None = None) -> ChangeEvent:
        sheet_name = self._sheet_name(sheet_name)
        current = self.registry.execute("getStylesAndMerges", {
            "startRow": row, "startCol": col, "rowCount": row_count, "colCount": col_count,
            "sheetName": sheet_name,
        }).result
        self._apply("setStylesAndMerges", {
            "startRow": row, "startCol": col, "rowCount": row_count, "colCount": col_count,
            "styles": current["styles"],
            "merges": [{"row": row, "col": col, "rowCount": row_count, "colCount": col_count}],
            "sheetName": sheet_name,
        })
        return self._emit(ChangeEvent(
            kind=ChangeKind.RANGE_CHANGED, property_name="span", action="add",
            row=row, col=col, row_count=row_count, col_count=col_count, sheet_name=sheet_name,
        ))

    def unmerge(self, row: int, col: int, row_count: int, col_count: int, sheet_name: str | None = None) -> ChangeEvent:
        sheet_name = self._sheet_name(sheet_name)
        self._apply("resetMergingStatus", {
            "startRow": row, "startCol": col, "rowCount": row_count, "colCount": col_count,
            "sheetName": sheet_name,
        })
        return self._emit(ChangeEvent(
            kind=ChangeKind.RANGE_CHANGED, property_name="span", action="remove",
            row=row, col=col, row_count=row_count, col_count=col_count, sheet_name=sheet_name,
        ))

    def clear_range(self, row: int, col: int, row_count: int = 1, col_count: int = 1,
                    sheet_name: str | None = None) -> ChangeEvent:
        sheet_name = self._sheet_name(sheet_name)
        self._apply("setProcessedData", {
            "startRow": row, "startCol": col,
            "values": [[None] * col_count for _ in range(row_count)],
            "sheetName": sheet_name,
        })
        return self._emit(ChangeEvent(
            kind=ChangeKind.RANGE_CHANGED, action=RANGE_ACTION_CLEAR,
            row=row, col=col, row_count=row_count, col_count=col_count, sheet_name=sheet_name,
        ))

    def paste(self, row: int, col: int, values: list[list[Any]], sheet_name: str | None = None) -> ChangeEvent:
        """Paste a block of values (formulas allowed) with its top-left at (row, col)."""
        sheet_name = self._sheet_name(sheet_name)
        at = {"startRow": row, "startCol": col, "sheetName": sheet_name}
        literals = [[None if isinstance(v, str) and v.startswith("=") else v for v in r] for r in values]
        formulas = [[v if isinstance(v, str) and v.startswith("=") else None for v in r] for r in values]
        self._apply("setProcessedData", {**at, "values": literals})
        self._apply("setRawData", {**at, "formulas": formulas})
        rows = len(values) or 1
        cols = max((len(r) for r in values), default=1) or 1
        return self._emit(ChangeEvent(
            kind=ChangeKind.CLIPBOARD_PASTED, sheet_name=sheet_name,
            cell_range=RangeSpec(row=row, col=col, row_count=rows, col_count=cols),
        ))

    def touch_cell(self, row: int, col: int, property_name: str = "style") -> ChangeEvent:
        """Report a cell property change that is not replicated."""
        return self._emit(ChangeEvent(
            kind=ChangeKind.CELL_CHANGED, row=row, col=col, property_name=property_name,
            sheet_name=self._sheet_name(None),
        ))
