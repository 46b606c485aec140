"""Shared serializer contract."""

from typing import Optional


class ConnectionSerializer:
    """Renders linked connection dicts, one text record per connection.

    `header()` is written once before the first record (CSV column names,
    JSON-LD context, Turtle prefixes).
    """

    name = ""

    def header(self) -> Optional[str]:
        return None

    def format(self, lc: dict) -> str:
        raise NotImplementedError
