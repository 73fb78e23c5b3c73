"""Tests for the command catalog and registry dispatch."""

import string

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from sheetrelay.contracts.common import MissingParamsError, UnknownCommandError
from sheetrelay.engine.catalog import CATALOG, COMMANDS, get_descriptor, kebab_path
from sheetrelay.engine.context import SheetContext
from sheetrelay.engine.registry import CommandRegistry, bind_params


class TestCatalog:
    def test_command_names_are_unique(self):
        assert len(CATALOG) == len(COMMANDS) == 36

    @pytest.mark.parametrize("name, path", [
        ("setProcessedData", "set-processed-data"),
        ("getSheetCSVOfRange", "get-sheet-csv-of-range"),
        ("getSheetJSON", "get-sheet-json"),
        ("getProcessedDataOfWholeSheet", "get-processed-data-whole-sheet"),
        ("getStylesAndMerges", "get-styles-merges"),
        ("autoFitColumn", "auto-fit-column"),
    ])
    def test_kebab_paths(self, name, path):
        assert kebab_path(name) == path

    def test_reads_are_get_and_writes_are_post(self):
        assert get_descriptor("getRawData").method == "GET"
        assert get_descriptor("setRawData").method == "POST"
        assert get_descriptor("setRawData").endpoint == "/mcp/spreadsheet/set-raw-data"

    def test_optional_params_are_labelled(self):
        labels = [p.label for p in get_descriptor("getProcessedData").params]
        assert labels == ["startRow", "startCol", "rowCount?", "colCount?", "sheetName?"]


class TestBindParams:
    def test_aliases_map_to_canonical_names(self):
        args = bind_params(get_descriptor("setProcessedData"), {"row": 1, "col": 2, "values": [[1]], "sheetIndex": 0})
        assert args == {"startRow": 1, "startCol": 2, "values": [[1]], "sheetName": 0}

    def test_canonical_name_wins_over_alias(self):
        args = bind_params(get_descriptor("getProcessedData"), {"startRow": 4, "row": 9, "startCol": 0})
        assert args["startRow"] == 4

    def test_defaults_fill_optional_params(self):
        args = bind_params(get_descriptor("getSheetCSVOfRange"), {"startRow": 0, "startCol": 0, "rowCount": 1, "colCount": 1})
        assert args["newLine"] == "\r"
        assert args["delimiter"] == ","
        assert args["sheetName"] is None

    def test_none_counts_as_absent(self):
        with pytest.raises(MissingParamsError) as exc:
            bind_params(get_descriptor("setProcessedData"), {"startRow": 0, "startCol": 0, "values": None})
        assert exc.value.missing == ["values"]

    def test_every_missing_param_is_listed(self):
        with pytest.raises(MissingParamsError) as exc:
            bind_params(get_descriptor("copyTo"), {"fromRow": 0})
        assert exc.value.missing == ["fromColumn", "toRow", "toColumn"]


class TestRegistry:
    def test_list_commands_matches_catalog(self, registry: CommandRegistry):
        assert registry.list_commands() == [d.name for d in COMMANDS]
        assert [d.name for d in registry.describe()] == registry.list_commands()

    def test_unknown_command(self, registry: CommandRegistry):
        result = registry.execute("bogus")
        assert result.success is False
        assert result.error == "Unknown command: bogus"
        with pytest.raises(UnknownCommandError):
            registry.get("bogus")

    def test_missing_params_result(self, registry: CommandRegistry):
        result = registry.execute("setProcessedData", {"startRow": 0})
        assert result.success is False
        assert result.error == "Missing required parameters: startCol, values"
        assert registry.missing_params("setProcessedData", {"startRow": 0}) == ["startCol", "values"]
        assert registry.missing_params("getSheetNames", None) == []

    def test_is_mutating(self, registry: CommandRegistry):
        assert registry.is_mutating("setRawData")
        assert not registry.is_mutating("getRawData")
        assert not registry.is_mutating("bogus")

    def test_read_and_write(self, registry: CommandRegistry):
        write = registry.execute("setProcessedData", {"row": 3, "col": 0, "values": [["East", 5]]})
        assert write.success and write.result == 2
        read = registry.execute("getProcessedData", {"startRow": 3, "startCol": 0, "colCount": 2})
        assert read.result == [["East", 5]]

    def test_sheet_by_index_alias(self, registry: CommandRegistry):
        registry.execute("setProcessedData", {"startRow": 0, "startCol": 0, "values": [[1]], "sheetIndex": 1})
        result = registry.execute("getProcessedData", {"startRow": 0, "startCol": 0, "sheetName": "Sheet2"})
        assert result.result == [[1]]

    def test_unknown_sheet_is_neutral(self, registry: CommandRegistry):
        result = registry.execute("getProcessedData", {"startRow": 0, "startCol": 0, "sheetName": "Nope"})
        assert result.success is True
        assert result.result == []

    def test_template_alias_for_sheet_json(self, registry: CommandRegistry):
        data = registry.execute("getSheetJSON").result
        result = registry.execute("setSheetJSON", {"template": data, "sheetName": "Sheet2"})
        assert result.success
        assert registry.execute("getSheetCSV", {"sheetName": "Sheet2"}).result == "Region,Sales\r\nNorth,10\r\nSouth,20"

    def test_handler_errors_become_failed_results(self, registry: CommandRegistry):
        result = registry.execute("copyTo", {
            "fromRow": 0, "fromColumn": 0, "toRow": 1, "toColumn": 1, "option": "everything",
        })
        assert result.success is False
        assert "Unknown copy option" in result.error

    def test_remove_sheet_by_alias(self, registry: CommandRegistry):
        assert registry.execute("removeSheet", {"sheetName": "Sheet2"}).result == "Sheet2"
        assert registry.execute("getSheetCount").result == 1

    def test_set_active_sheet_index_alias(self, registry: CommandRegistry):
        assert registry.execute("setActiveSheetIndex", {"sheetIndex": 1}).result == 1
        assert registry.execute("getActiveSheetIndex").result == 1


_cell_values = st.one_of(
    st.integers(min_value=-1000, max_value=1000),
    st.text(alphabet=string.ascii_letters, min_size=1, max_size=8),
)


@settings(max_examples=40, deadline=None)
@given(
    row=st.integers(min_value=0, max_value=20),
    col=st.integers(min_value=0, max_value=10),
    values=st.lists(st.lists(_cell_values, min_size=1, max_size=3), min_size=1, max_size=3),
)
def test_replaying_a_write_is_idempotent(row, col, values):
    registry = CommandRegistry(SheetContext())
    params = {"startRow": row, "startCol": col, "values": values}

    registry.execute("setProcessedData", params)
    once = registry.execute("getProcessedDataOfWholeSheet").result
    registry.execute("setProcessedData", params)
    twice = registry.execute("getProcessedDataOfWholeSheet").result

    assert once == twice
    assert registry.execute("getProcessedData", {"startRow": row, "startCol": col}).result == [[values[0][0]]]
