"""JSON and JSON-LD (newline delimited)."""

import json
from typing import Optional

from rt_connections.serializers.base import ConnectionSerializer

JSONLD_CONTEXT = {
    "@context": {
        "xsd": "http://www.w3.org/2001/XMLSchema#",
        "lc": "http://semweb.mmlab.be/ns/linkedconnections#",
        "gtfs": "http://vocab.gtfs.org/terms#",
        "Connection": "lc:Connection",
        "CancelledConnection": "lc:CancelledConnection",
        "departureStop": {"@type": "@id", "@id": "lc:departureStop"},
        "arrivalStop": {"@type": "@id", "@id": "lc:arrivalStop"},
        "departureTime": {"@id": "lc:departureTime", "@type": "xsd:dateTime"},
        "arrivalTime": {"@id": "lc:arrivalTime", "@type": "xsd:dateTime"},
        "departureDelay": {"@id": "lc:departureDelay", "@type": "xsd:integer"},
        "arrivalDelay": {"@id": "lc:arrivalDelay", "@type": "xsd:integer"},
        "direction": {"@id": "gtfs:headsign", "@type": "xsd:string"},
        "gtfs:trip": {"@type": "@id"},
        "gtfs:route": {"@type": "@id"},
        "gtfs:pickupType": {"@type": "@id"},
        "gtfs:dropOffType": {"@type": "@id"},
    }
}


class JsonSerializer(ConnectionSerializer):
    name = "json"

    def format(self, lc: dict) -> str:
        return json.dumps(lc, ensure_ascii=False)


class JsonLdSerializer(ConnectionSerializer):
    name = "jsonld"

    def header(self) -> Optional[str]:
        return json.dumps(JSONLD_CONTEXT)

    def format(self, lc: dict) -> str:
        return json.dumps(
            {
                "@id": lc["@id"],
                "@type": lc["@type"],
                "departureStop": lc["departureStop"],
                "arrivalStop": lc["arrivalStop"],
                "departureTime": lc["departureTime"],
                "arrivalTime": lc["arrivalTime"],
                "departureDelay": lc["departureDelay"],
                "arrivalDelay": lc["arrivalDelay"],
                "direction": lc.get("direction"),
                "gtfs:trip": lc["trip"],
                "gtfs:route": lc["route"],
                "gtfs:pickupType": lc.get("gtfs:pickupType"),
                "gtfs:dropOffType": lc.get("gtfs:dropOffType"),
            },
            ensure_ascii=False,
        )
