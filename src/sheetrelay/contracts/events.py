"""Change events emitted by the sheet collaborator and sync intents derived from them."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RangeSpec(BaseModel):
    """Zero-based rectangle of cells."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    row: int = Field(ge=0)
    col: int = Field(ge=0)
    row_count: int = Field(default=1, ge=1, alias="rowCount")
    col_count: int = Field(default=1, ge=1, alias="colCount")

    @classmethod
    def cell(cls, row: int, col: int) -> "RangeSpec":
        return cls(row=row, col=col)

    def to_params(self) -> dict[str, int]:
        return {
            "startRow": self.row,
            "startCol": self.col,
            "rowCount": self.row_count,
            "colCount": self.col_count,
        }


class ChangeKind(str, Enum):
    VALUE_CHANGED = "value_changed"
    FORMULA_ENTERED = "formula_entered"
    RANGE_CHANGED = "range_changed"
    SELECTION_CHANGED = "selection_changed"
    CLIPBOARD_PASTED = "clipboard_pasted"
    SHEET_CHANGED = "sheet_changed"
    CELL_CHANGED = "cell_changed"
    SHEET_NAME_CHANGED = "sheet_name_changed"
    ROW_HEIGHT_CHANGED = "row_height_changed"
    COLUMN_WIDTH_CHANGED = "column_width_changed"
    OTHER = "other"


# Numeric action code the editor uses for a range clear.
RANGE_ACTION_CLEAR = 2


class ChangeEvent(BaseModel):
    """One user-initiated edit reported by the collaborator. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: ChangeKind
    row: int | None = None
    col: int | None = None
    row_count: int | None = Field(default=None, alias="rowCount")
    col_count: int | None = Field(default=None, alias="colCount")
    new_value: Any | None = Field(default=None, alias="newValue")
    old_value: Any | None = Field(default=None, alias="oldValue")
    formula: str | None = None
    property_name: str | None = Field(default=None, alias="propertyName")
    action: str | int | None = None
    sheet_name: str | None = Field(default=None, alias="sheetName")
    cell_range: RangeSpec | None = Field(default=None, alias="cellRange")

    def range(self) -> RangeSpec | None:
        """RangeSpec from ``row``/``col`` with counts defaulting to 1."""
        if self.row is None or self.col is None:
            return None
        return RangeSpec(
            row=self.row,
            col=self.col,
            row_count=self.row_count or 1,
            col_count=self.col_count or 1,
        )


class SyncIntent(BaseModel):
    """What to copy from the source sheet for one event."""

    model_config = ConfigDict(frozen=True)

    range: RangeSpec
    values: bool = False
    formulas: bool = False
    styles: bool = False
    sheet_name: str | None = None
    reason: str = ""
