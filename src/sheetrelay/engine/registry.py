"""Command registry: validates parameters and runs commands against a SheetContext."""

from __future__ import annotations

import logging
from typing import Any, Callable

from openpyxl.worksheet.worksheet import Worksheet

from sheetrelay.adapters import openpyxl_engine as ops
from sheetrelay.contracts.common import (
    CommandResult,
    MissingParamsError,
    RelayError,
    UnknownCommandError,
)
from sheetrelay.engine.catalog import CATALOG, CommandDescriptor
from sheetrelay.engine.context import SheetContext

logger = logging.getLogger(__name__)

Args = dict[str, Any]
Handler = Callable[[SheetContext, Args], Any]

_HANDLERS: dict[str, Handler] = {}


def _handler(name: str) -> Callable[[Handler], Handler]:
    def register(fn: Handler) -> Handler:
        _HANDLERS[name] = fn
        return fn
    return register


def _present(params: dict[str, Any], key: str) -> bool:
    return params.get(key) is not None


def bind_params(descriptor: CommandDescriptor, params: dict[str, Any]) -> Args:
    """Map raw params (legacy aliases included) onto the descriptor's canonical names.

    Raises MissingParamsError listing every absent required parameter.
    """
    args: Args = {}
    missing: list[str] = []
    for spec in descriptor.params:
        key = next((k for k in (spec.name, *spec.aliases) if _present(params, k)), None)
        if key is not None:
            args[spec.name] = params[key]
        elif spec.required:
            missing.append(spec.name)
        else:
            args[spec.name] = spec.default
    if missing:
        raise MissingParamsError(descriptor.name, missing)
    return args


def _sheet(ctx: SheetContext, args: Args) -> Worksheet | None:
    ref = args.get("sheetName")
    if isinstance(ref, int) and not isinstance(ref, bool):
        return ctx.resolve(sheet_index=ref)
    return ctx.resolve(sheet_name=ref)


def _range(args: Args) -> tuple[int, int, int, int]:
    return (
        int(args["startRow"]), int(args["startCol"]),
        int(args["rowCount"]), int(args["colCount"]),
    )


# ---------------------------------------------------------------------------
# sheet
# ---------------------------------------------------------------------------
@_handler("getSheetNames")
def _get_sheet_names(ctx: SheetContext, args: Args) -> Any:
    return ops.get_sheet_names(ctx)


@_handler("getSheetCount")
def _get_sheet_count(ctx: SheetContext, args: Args) -> Any:
    return ops.get_sheet_count(ctx)


@_handler("getActiveSheet")
def _get_active_sheet(ctx: SheetContext, args: Args) -> Any:
    return ops.get_active_sheet(ctx)


@_handler("getActiveSheetIndex")
def _get_active_sheet_index(ctx: SheetContext, args: Args) -> Any:
    return ops.get_active_sheet_index(ctx)


@_handler("setActiveSheetIndex")
def _set_active_sheet_index(ctx: SheetContext, args: Args) -> Any:
    return ops.set_active_sheet_index(ctx, int(args["index"]))


@_handler("addSheet")
def _add_sheet(ctx: SheetContext, args: Args) -> Any:
    at = args.get("atIndex")
    return ops.add_sheet(ctx, args.get("sheetName"), int(at) if at is not None else None)


@_handler("removeSheet")
def _remove_sheet(ctx: SheetContext, args: Args) -> Any:
    return ops.remove_sheet(ctx, args["sheet"])


@_handler("clearSheets")
def _clear_sheets(ctx: SheetContext, args: Args) -> Any:
    idx = args.get("sheetIndex")
    return ops.clear_sheets(ctx, int(idx) if idx is not None else None)


@_handler("getSheetJSON")
def _get_sheet_json(ctx: SheetContext, args: Args) -> Any:
    return ops.get_sheet_json(ctx, _sheet(ctx, args))


@_handler("setSheetJSON")
def _set_sheet_json(ctx: SheetContext, args: Args) -> Any:
    return ops.set_sheet_json(ctx, args["json"], _sheet(ctx, args))


@_handler("getSheetCSV")
def _get_sheet_csv(ctx: SheetContext, args: Args) -> Any:
    return ops.get_sheet_csv(ctx, _sheet(ctx, args))


@_handler("setSheetCSV")
def _set_sheet_csv(ctx: SheetContext, args: Args) -> Any:
    return ops.set_sheet_csv(ctx, str(args["csv"]), _sheet(ctx, args))


# ---------------------------------------------------------------------------
# range
# ---------------------------------------------------------------------------
@_handler("getSheetCSVOfRange")
def _get_sheet_csv_of_range(ctx: SheetContext, args: Args) -> Any:
    return ops.get_sheet_csv_of_range(
        ctx, *_range(args),
        new_line=args["newLine"], delimiter=args["delimiter"], sheet=_sheet(ctx, args),
    )


@_handler("setSheetCSVOfRange")
def _set_sheet_csv_of_range(ctx: SheetContext, args: Args) -> Any:
    return ops.set_sheet_csv_of_range(
        ctx, int(args["startRow"]), int(args["startCol"]), str(args["csv"]),
        new_line=args["newLine"], delimiter=args["delimiter"], sheet=_sheet(ctx, args),
    )


@_handler("getProcessedDataOfWholeSheet")
def _get_processed_whole(ctx: SheetContext, args: Args) -> Any:
    return ops.get_processed_data_whole_sheet(ctx, _sheet(ctx, args))


@_handler("getRawDataOfWholeSheet")
def _get_raw_whole(ctx: SheetContext, args: Args) -> Any:
    return ops.get_raw_data_whole_sheet(ctx, _sheet(ctx, args))


@_handler("getProcessedData")
def _get_processed_data(ctx: SheetContext, args: Args) -> Any:
    return ops.get_processed_data(ctx, *_range(args), sheet=_sheet(ctx, args))


@_handler("getRawData")
def _get_raw_data(ctx: SheetContext, args: Args) -> Any:
    return ops.get_raw_data(ctx, *_range(args), sheet=_sheet(ctx, args))


@_handler("setProcessedData")
def _set_processed_data(ctx: SheetContext, args: Args) -> Any:
    return ops.set_processed_data(
        ctx, int(args["startRow"]), int(args["startCol"]), args["values"], _sheet(ctx, args),
    )


@_handler("setRawData")
def _set_raw_data(ctx: SheetContext, args: Args) -> Any:
    return ops.set_raw_data(
        ctx, int(args["startRow"]), int(args["startCol"]), args["formulas"], _sheet(ctx, args),
    )


@_handler("copyTo")
def _copy_to(ctx: SheetContext, args: Args) -> Any:
    return ops.copy_to(
        ctx,
        int(args["fromRow"]), int(args["fromColumn"]),
        int(args["toRow"]), int(args["toColumn"]),
        int(args["rowCount"]), int(args["columnCount"]),
        str(args["option"]), _sheet(ctx, args),
    )


# ---------------------------------------------------------------------------
# style
# ---------------------------------------------------------------------------
@_handler("getStylesAndMerges")
def _get_styles_and_merges(ctx: SheetContext, args: Args) -> Any:
    return ops.get_styles_and_merges(ctx, *_range(args), sheet=_sheet(ctx, args))


@_handler("setStylesAndMerges")
def _set_styles_and_merges(ctx: SheetContext, args: Args) -> Any:
    return ops.set_styles_and_merges(
        ctx, *_range(args), args.get("styles"), args.get("merges"), _sheet(ctx, args),
    )


@_handler("resetMergingStatus")
def _reset_merging_status(ctx: SheetContext, args: Args) -> Any:
    return ops.reset_merging_status(ctx, *_range(args), sheet=_sheet(ctx, args))


@_handler("getFormatter")
def _get_formatter(ctx: SheetContext, args: Args) -> Any:
    return ops.get_formatter(ctx, int(args["row"]), int(args["col"]), _sheet(ctx, args))


@_handler("setFormatter")
def _set_formatter(ctx: SheetContext, args: Args) -> Any:
    return ops.set_formatter(
        ctx, int(args["row"]), int(args["col"]), str(args["format"]), _sheet(ctx, args),
    )


# ---------------------------------------------------------------------------
# chart
# ---------------------------------------------------------------------------
@_handler("getCharts")
def _get_charts(ctx: SheetContext, args: Args) -> Any:
    return ops.get_charts(ctx, _sheet(ctx, args))


@_handler("setCharts")
def _set_charts(ctx: SheetContext, args: Args) -> Any:
    return ops.set_charts(ctx, args["chartsData"], _sheet(ctx, args))


# ---------------------------------------------------------------------------
# rows and columns
# ---------------------------------------------------------------------------
@_handler("addRows")
def _add_rows(ctx: SheetContext, args: Args) -> Any:
    return ops.add_rows(ctx, int(args["row"]), int(args["count"]), _sheet(ctx, args))


@_handler("deleteRows")
def _delete_rows(ctx: SheetContext, args: Args) -> Any:
    return ops.delete_rows(ctx, int(args["row"]), int(args["count"]), _sheet(ctx, args))


@_handler("addColumns")
def _add_columns(ctx: SheetContext, args: Args) -> Any:
    return ops.add_columns(ctx, int(args["col"]), int(args["count"]), _sheet(ctx, args))


@_handler("deleteColumns")
def _delete_columns(ctx: SheetContext, args: Args) -> Any:
    return ops.delete_columns(ctx, int(args["col"]), int(args["count"]), _sheet(ctx, args))


@_handler("autoFitRow")
def _auto_fit_row(ctx: SheetContext, args: Args) -> Any:
    return ops.auto_fit_row(ctx, int(args["row"]), _sheet(ctx, args))


@_handler("autoFitColumn")
def _auto_fit_column(ctx: SheetContext, args: Args) -> Any:
    return ops.auto_fit_column(ctx, int(args["col"]), _sheet(ctx, args))


@_handler("setRowHeight")
def _set_row_height(ctx: SheetContext, args: Args) -> Any:
    return ops.set_row_height(ctx, int(args["row"]), float(args["height"]), _sheet(ctx, args))


@_handler("setColumnWidth")
def _set_column_width(ctx: SheetContext, args: Args) -> Any:
    return ops.set_column_width(ctx, int(args["col"]), float(args["width"]), _sheet(ctx, args))


class CommandRegistry:
    """Fixed table of sheet commands bound to one SheetContext."""

    def __init__(self, ctx: SheetContext | None = None) -> None:
        self.ctx = ctx if ctx is not None else SheetContext()
        self._descriptors = CATALOG
        self._handlers = _HANDLERS

    def get(self, name: str) -> CommandDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None or name not in self._handlers:
            raise UnknownCommandError(name)
        return descriptor

    def list_commands(self) -> list[str]:
        return [name for name in self._descriptors if name in self._handlers]

    def describe(self) -> list[CommandDescriptor]:
        return [self._descriptors[name] for name in self.list_commands()]

    def missing_params(self, name: str, params: dict[str, Any] | None) -> list[str]:
        try:
            bind_params(self.get(name), params or {})
        except MissingParamsError as e:
            return e.missing
        return []

    def is_mutating(self, name: str) -> bool:
        descriptor = self._descriptors.get(name)
        return descriptor is not None and descriptor.mutating

    def execute(self, name: str, params: dict[str, Any] | None = None) -> CommandResult:
        """Run one command. Never raises; failures come back as ``success=False``."""
        try:
            args = bind_params(self.get(name), params or {})
            result = self._handlers[name](self.ctx, args)
        except RelayError as e:
            return CommandResult(success=False, command=name, error=str(e))
        except Exception as e:
            logger.warning("Command %s failed: %s", name, e)
            return CommandResult(success=False, command=name, error=str(e))
        return CommandResult(success=True, command=name, result=result)
