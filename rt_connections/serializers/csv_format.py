"""CSV with a fixed column order."""

import csv
import io
from typing import Optional

from rt_connections.serializers.base import ConnectionSerializer

CSV_COLUMNS = [
    "id", "departureStop", "departureTime", "departureDelay",
    "arrivalStop", "arrivalTime", "arrivalDelay", "direction", "trip", "route",
]

# column -> linked connection key
_KEYS = {"id": "@id"}


def _row(values) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="").writerow(values)
    return buf.getvalue()


class CsvSerializer(ConnectionSerializer):
    name = "csv"

    def header(self) -> Optional[str]:
        return _row(CSV_COLUMNS)

    def format(self, lc: dict) -> str:
        values = []
        for column in CSV_COLUMNS:
            value = lc.get(_KEYS.get(column, column))
            values.append("" if value is None else value)
        return _row(values)
