"""
N-Triples and Turtle.

No RDF library is involved: the predicate set is fixed, so triples are
written directly as lines of text.
"""

from typing import List, Optional, Tuple

from rt_connections.serializers.base import ConnectionSerializer

RDF_TYPE = "http://www.w3.org/1999/02/22-rdf-syntax-ns#type"
XSD = "http://www.w3.org/2001/XMLSchema#"
LC = "http://semweb.mmlab.be/ns/linkedconnections#"
GTFS = "http://vocab.gtfs.org/terms#"

PREFIXES = {"xsd": XSD, "lc": LC, "gtfs": GTFS}

# (predicate, linked connection key, object kind)
PREDICATES = [
    (LC + "departureStop", "departureStop", "iri"),
    (LC + "arrivalStop", "arrivalStop", "iri"),
    (LC + "departureTime", "departureTime", XSD + "dateTime"),
    (LC + "arrivalTime", "arrivalTime", XSD + "dateTime"),
    (LC + "departureDelay", "departureDelay", XSD + "integer"),
    (LC + "arrivalDelay", "arrivalDelay", XSD + "integer"),
    (GTFS + "headsign", "direction", XSD + "string"),
    (GTFS + "trip", "trip", "iri"),
    (GTFS + "route", "route", "iri"),
    (GTFS + "pickupType", "gtfs:pickupType", "iri"),
    (GTFS + "dropOffType", "gtfs:dropOffType", "iri"),
]

Term = Tuple[str, str]  # (kind, value): kind is "iri" or a datatype IRI


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def _expand(value: str) -> str:
    """gtfs:Regular -> http://vocab.gtfs.org/terms#Regular"""
    prefix, sep, local = value.partition(":")
    if sep and prefix in PREFIXES and not local.startswith("//"):
        return PREFIXES[prefix] + local
    return value


def connection_triples(lc: dict) -> List[Tuple[str, str, Term]]:
    subject = lc["@id"]
    connection_class = "Connection" if lc["@type"] == "Connection" else "CancelledConnection"
    triples = [(subject, RDF_TYPE, ("iri", LC + connection_class))]
    for predicate, key, kind in PREDICATES:
        value = lc.get(key)
        if value is None or value == "":
            continue
        if kind == "iri":
            value = _expand(str(value))
        triples.append((subject, predicate, (kind, str(value))))
    return triples


def _ntriples_term(term: Term) -> str:
    kind, value = term
    if kind == "iri":
        return f"<{value}>"
    return f'"{_escape(value)}"^^<{kind}>'


def _turtle_name(iri: str) -> str:
    for prefix, namespace in PREFIXES.items():
        local = iri[len(namespace):]
        if iri.startswith(namespace) and local.replace("_", "").isalnum():
            return f"{prefix}:{local}"
    return f"<{iri}>"


def _turtle_term(term: Term) -> str:
    kind, value = term
    if kind == "iri":
        return _turtle_name(value)
    return f'"{_escape(value)}"^^{_turtle_name(kind)}'


class NTriplesSerializer(ConnectionSerializer):
    name = "ntriples"

    def format(self, lc: dict) -> str:
        return "\n".join(
            f"<{s}> <{p}> {_ntriples_term(o)} ." for s, p, o in connection_triples(lc)
        )


class TurtleSerializer(ConnectionSerializer):
    name = "turtle"

    def header(self) -> Optional[str]:
        return "\n".join(f"@prefix {prefix}: <{iri}> ." for prefix, iri in PREFIXES.items())

    def format(self, lc: dict) -> str:
        triples = connection_triples(lc)
        lines = [f"<{triples[0][0]}>"]
        for i, (_, predicate, obj) in enumerate(triples):
            verb = "a" if predicate == RDF_TYPE else _turtle_name(predicate)
            end = " ." if i == len(triples) - 1 else " ;"
            lines.append(f"    {verb} {_turtle_term(obj)}{end}")
        return "\n".join(lines)
