"""sheetrelay: command relay and sync protocol for spreadsheet editors."""

__version__ = "0.3.0"
