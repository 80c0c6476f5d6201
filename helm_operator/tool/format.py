"""Formatting of command output."""

from collections.abc import Generator
import sys
from typing import Any, TextIO

import yaml

__all__ = [
    "PrintFormatter",
    "YamlFormatter",
]

PADDING = 3


def column_format_string(rows: list[list[str]]) -> str:
    """Produce a format string fitting the widest value of each column."""
    widths = [0] * len(rows[0])
    for row in rows:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(value))
    return "".join(f"{{:{w + PADDING}}}" for w in widths[:-1]) + "{}"


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the rows lined up in columns below the headers."""
    data = [headers] + rows
    format_string = column_format_string(data)
    for row in data:
        yield format_string.format(*row)


class PrintFormatter:
    """A formatter that prints a table of the given keys of each object."""

    def __init__(self, keys: list[str]):
        """Initialize the PrintFormatter with the keys to print."""
        self._keys = keys

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        """Format the data objects."""
        if not data:
            return
        rows = [
            ["" if row.get(key) is None else str(row[key]) for key in self._keys]
            for row in data
        ]
        yield from format_columns([key.upper() for key in self._keys], rows)

    def print(self, data: list[dict[str, Any]], file: TextIO | None = None) -> None:
        """Output the data objects."""
        for result in self.format(data):
            print(result.rstrip(), file=file or sys.stdout)


class YamlFormatter:
    """A formatter that prints each object as a yaml document."""

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        """Format the data objects."""
        content = yaml.dump_all(data, sort_keys=False, explicit_start=True)
        yield from content.splitlines()

    def print(self, data: list[dict[str, Any]], file: TextIO | None = None) -> None:
        """Output the data objects."""
        print(
            yaml.dump_all(data, sort_keys=False, explicit_start=True),
            end="",
            file=file or sys.stdout,
        )
