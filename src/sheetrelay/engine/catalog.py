"""Command descriptors: the fixed parameter contract of every sheet command."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field

GATEWAY_PREFIX = "/mcp/spreadsheet"

_KEBAB_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

# Gateway paths that do not follow the plain kebab-case rule.
PATH_OVERRIDES = {
    "getProcessedDataOfWholeSheet": "get-processed-data-whole-sheet",
    "getRawDataOfWholeSheet": "get-raw-data-whole-sheet",
    "getStylesAndMerges": "get-styles-merges",
    "setStylesAndMerges": "set-styles-merges",
}


def kebab_path(name: str) -> str:
    """``setProcessedData`` -> ``set-processed-data``."""
    return PATH_OVERRIDES.get(name) or _KEBAB_RE.sub("-", name).lower()


class ParamSpec(BaseModel):
    """One command parameter. ``aliases`` are legacy names accepted in its place."""

    name: str
    required: bool = True
    default: Any = None
    aliases: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return self.name if self.required else f"{self.name}?"


class CommandDescriptor(BaseModel):
    name: str
    params: list[ParamSpec] = Field(default_factory=list)
    group: str = "sheet"
    description: str = ""
    mutating: bool = False

    @property
    def method(self) -> str:
        return "POST" if self.mutating else "GET"

    @property
    def path(self) -> str:
        return kebab_path(self.name)

    @property
    def endpoint(self) -> str:
        return f"{GATEWAY_PREFIX}/{self.path}"

    @property
    def required(self) -> list[ParamSpec]:
        return [p for p in self.params if p.required]


def _req(name: str, *aliases: str) -> ParamSpec:
    return ParamSpec(name=name, aliases=aliases)


def _opt(name: str, default: Any = None, *aliases: str) -> ParamSpec:
    return ParamSpec(name=name, required=False, default=default, aliases=aliases)


_SHEET = _opt("sheetName", None, "sheetIndex")
_START = [_req("startRow", "row"), _req("startCol", "col")]
_RANGE = [*_START, _req("rowCount"), _req("colCount")]
_RANGE_DEFAULTS = [*_START, _opt("rowCount", 1), _opt("colCount", 1)]


def _cmd(
    name: str,
    group: str,
    description: str,
    params: list[ParamSpec] | None = None,
    *,
    mutating: bool = False,
) -> CommandDescriptor:
    return CommandDescriptor(
        name=name, group=group, description=description,
        params=params or [], mutating=mutating,
    )


COMMANDS: list[CommandDescriptor] = [
    # sheet
    _cmd("getSheetNames", "sheet", "Get all sheet names"),
    _cmd("getSheetCount", "sheet", "Get total number of sheets"),
    _cmd("getActiveSheet", "sheet", "Get active sheet object"),
    _cmd("getActiveSheetIndex", "sheet", "Get active sheet index"),
    _cmd("setActiveSheetIndex", "sheet", "Set active sheet by index",
         [_req("index", "sheetIndex")], mutating=True),
    _cmd("addSheet", "sheet", "Add new sheet",
         [_opt("sheetName"), _opt("atIndex")], mutating=True),
    _cmd("removeSheet", "sheet", "Remove sheet",
         [_req("sheet", "sheetName", "sheetIndex")], mutating=True),
    _cmd("clearSheets", "sheet", "Clear one sheet's contents, or remove all sheets",
         [_opt("sheetIndex")], mutating=True),
    _cmd("getSheetJSON", "sheet", "Get sheet as JSON", [_SHEET]),
    _cmd("setSheetJSON", "sheet", "Set sheet from JSON",
         [_req("json", "template"), _SHEET], mutating=True),
    _cmd("getSheetCSV", "sheet", "Get sheet as CSV", [_SHEET]),
    _cmd("setSheetCSV", "sheet", "Set sheet from CSV",
         [_req("csv"), _SHEET], mutating=True),
    # range
    _cmd("getSheetCSVOfRange", "range", "Get CSV data from a specific range",
         [*_RANGE, _opt("newLine", "\r"), _opt("delimiter", ","), _SHEET]),
    _cmd("setSheetCSVOfRange", "range", "Set CSV data in a specific range",
         [*_START, _req("csv"), _opt("newLine", "\r"), _opt("delimiter", ","), _SHEET],
         mutating=True),
    _cmd("getProcessedDataOfWholeSheet", "range", "Get all processed data from sheet", [_SHEET]),
    _cmd("getRawDataOfWholeSheet", "range", "Get all raw data (formulas) from sheet", [_SHEET]),
    _cmd("getProcessedData", "range", "Get processed data from range", [*_RANGE_DEFAULTS, _SHEET]),
    _cmd("getRawData", "range", "Get raw data (formulas) from range", [*_RANGE_DEFAULTS, _SHEET]),
    _cmd("setProcessedData", "range", "Set processed data in range",
         [*_START, _req("values"), _SHEET], mutating=True),
    _cmd("setRawData", "range", "Set raw data (formulas) in range",
         [*_START, _req("formulas"), _SHEET], mutating=True),
    _cmd("copyTo", "range", "Copy data from one range to another",
         [_req("fromRow"), _req("fromColumn"), _req("toRow"), _req("toColumn"),
          _opt("rowCount", 1), _opt("columnCount", 1), _opt("option", "all"), _SHEET],
         mutating=True),
    # style
    _cmd("getStylesAndMerges", "style", "Get styles and merges from range", [*_RANGE_DEFAULTS, _SHEET]),
    _cmd("setStylesAndMerges", "style", "Set styles and merges in range",
         [*_RANGE, _opt("styles"), _opt("merges"), _SHEET], mutating=True),
    _cmd("resetMergingStatus", "style", "Reset merging status in range",
         [*_RANGE, _SHEET], mutating=True),
    _cmd("getFormatter", "style", "Get cell formatter", [_req("row"), _req("col"), _SHEET]),
    _cmd("setFormatter", "style", "Set cell formatter",
         [_req("row"), _req("col"), _req("format"), _SHEET], mutating=True),
    # chart
    _cmd("getCharts", "chart", "Get charts from sheet", [_SHEET]),
    _cmd("setCharts", "chart", "Set charts in sheet",
         [_req("chartsData"), _SHEET], mutating=True),
    # rows and columns
    _cmd("addRows", "row/column", "Add rows at position",
         [_req("row"), _req("count"), _SHEET], mutating=True),
    _cmd("addColumns", "row/column", "Add columns at position",
         [_req("col"), _req("count"), _SHEET], mutating=True),
    _cmd("deleteRows", "row/column", "Delete rows from position",
         [_req("row"), _req("count"), _SHEET], mutating=True),
    _cmd("deleteColumns", "row/column", "Delete columns from position",
         [_req("col"), _req("count"), _SHEET], mutating=True),
    _cmd("autoFitRow", "row/column", "Auto-fit row height", [_req("row"), _SHEET], mutating=True),
    _cmd("autoFitColumn", "row/column", "Auto-fit column width", [_req("col"), _SHEET], mutating=True),
    _cmd("setRowHeight", "row/column", "Set row height",
         [_req("row"), _req("height"), _SHEET], mutating=True),
    _cmd("setColumnWidth", "row/column", "Set column width",
         [_req("col"), _req("width"), _SHEET], mutating=True),
]

CATALOG: dict[str, CommandDescriptor] = {d.name: d for d in COMMANDS}


def get_descriptor(name: str) -> CommandDescriptor | None:
    return CATALOG.get(name)
