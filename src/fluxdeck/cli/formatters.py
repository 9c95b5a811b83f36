"""Renderers behind ``--output``: a rich table, JSON or YAML.

Every command hands a formatter either a list of rows (pydantic models or
plain dicts) with the columns to show, or a single mapping.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import StrEnum
from typing import Any

import yaml
from rich.console import Console
from rich.table import Table

Columns = list[tuple[str, str]]

# Lists longer than this are elided in table cells
CELL_LIST_LIMIT = 3


class OutputFormat(StrEnum):
    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


def as_data(row: Any) -> Any:
    """JSON-ready form of a row; models drop their unset fields."""
    if hasattr(row, "model_dump"):
        return row.model_dump(mode="json", exclude_none=True)
    return row


def lookup(data: Any, path: str) -> Any:
    """Follow a dotted ``path`` through nested dicts; None when it breaks."""
    for key in path.split("."):
        if not isinstance(data, dict) or key not in data:
            return None
        data = data[key]
    return data


def cell_text(value: Any) -> str:
    """Compact single-line text for a table cell."""
    if value is None or value == "" or value == []:
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, dict):
        return str(value["name"]) if "name" in value else json.dumps(value, default=str)
    if isinstance(value, list):
        text = ", ".join(str(v) for v in value[:CELL_LIST_LIMIT])
        hidden = len(value) - CELL_LIST_LIMIT
        return f"{text} (+{hidden})" if hidden > 0 else text
    return str(value)


def detail_text(value: Any) -> str:
    """Multi-line text for the value column of a key/value table."""
    if value is None:
        return "[dim]-[/dim]"
    if isinstance(value, bool):
        return "[green]true[/green]" if value else "[red]false[/red]"
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return ", ".join(value) or "[]"
    if isinstance(value, dict | list):
        return json.dumps(value, indent=2, default=str)
    return str(value)


class Formatter(ABC):
    def __init__(self, console: Console) -> None:
        self.console = console

    @abstractmethod
    def format_list(self, resources: Sequence[Any], columns: Columns, title: str = "") -> None:
        """Show ``resources``; table output is limited to ``columns``."""

    @abstractmethod
    def format_dict(self, data: dict[str, Any], title: str = "") -> None:
        """Show a single mapping."""


class TableFormatter(Formatter):
    def format_list(self, resources: Sequence[Any], columns: Columns, title: str = "") -> None:
        table = Table(title=title or None, show_header=True)
        for _, header in columns:
            key_column = header.lower() in ("name", "namespace")
            table.add_column(header, style="cyan" if key_column else None, overflow="fold")

        for resource in resources:
            data = as_data(resource)
            table.add_row(*(cell_text(lookup(data, field)) for field, _ in columns))

        self.console.print(table)
        self.console.print(f"\n[dim]Total: {len(resources)} resources[/dim]")

    def format_dict(self, data: dict[str, Any], title: str = "") -> None:
        table = Table(title=title or None, show_header=True)
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", overflow="fold")
        for key, value in data.items():
            table.add_row(key, detail_text(value))
        self.console.print(table)


class StructuredFormatter(Formatter):
    """Machine-readable output; titles and columns are ignored."""

    @abstractmethod
    def emit(self, data: Any) -> None: ...

    def format_list(self, resources: Sequence[Any], columns: Columns, title: str = "") -> None:
        rows = [as_data(r) for r in resources]
        self.emit(self.wrap_list(rows))

    def format_dict(self, data: dict[str, Any], title: str = "") -> None:
        self.emit(data)

    def wrap_list(self, rows: list[Any]) -> Any:
        return rows


class JsonFormatter(StructuredFormatter):
    def wrap_list(self, rows: list[Any]) -> Any:
        return {"data": rows, "total": len(rows)}

    def emit(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))


class YamlFormatter(StructuredFormatter):
    def emit(self, data: Any) -> None:
        self.console.print(
            yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
            markup=False,
            soft_wrap=True,
        )


FORMATTERS: dict[OutputFormat, type[Formatter]] = {
    OutputFormat.TABLE: TableFormatter,
    OutputFormat.JSON: JsonFormatter,
    OutputFormat.YAML: YamlFormatter,
}


def get_formatter(format_type: OutputFormat, console: Console | None = None) -> Formatter:
    """Formatter for ``format_type``, printing to ``console``."""
    return FORMATTERS.get(format_type, TableFormatter)(console or Console())
