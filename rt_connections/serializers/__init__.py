"""
Output formats for linked connections.

    serialize(connections, "turtle", sys.stdout)
"""

from typing import Iterable, TextIO

from rt_connections.errors import ConfigError
from rt_connections.serializers.base import ConnectionSerializer
from rt_connections.serializers.csv_format import CsvSerializer
from rt_connections.serializers.json_format import JsonLdSerializer, JsonSerializer
from rt_connections.serializers.triples import NTriplesSerializer, TurtleSerializer

SERIALIZERS = {
    cls.name: cls
    for cls in (JsonSerializer, JsonLdSerializer, CsvSerializer, NTriplesSerializer, TurtleSerializer)
}


def get_serializer(fmt: str) -> ConnectionSerializer:
    try:
        return SERIALIZERS[fmt]()
    except KeyError:
        raise ConfigError(
            f"Unknown output format {fmt!r}, choose from {', '.join(SERIALIZERS)}"
        ) from None


def serialize(connections: Iterable[dict], fmt: str, out: TextIO) -> int:
    """Write connections to `out` as they arrive. Returns the number written."""
    serializer = get_serializer(fmt)
    header = serializer.header()
    if header:
        out.write(header + "\n")
    count = 0
    for lc in connections:
        out.write(serializer.format(lc) + "\n")
        count += 1
    out.flush()
    return count
