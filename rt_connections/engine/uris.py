"""
URI templates for linked connection identifiers.

Templates use RFC 6570 simple expansion: every `{var}` is replaced by
its percent-encoded value. Variables name a GTFS table and attribute:

    {trips.trip_id}  {routes.route_short_name}  {stops.stop_id}
    {connection.departureStop}
    {trips.startTime(yyyyMMdd)}  {connection.departureTime(yyyyMMddTHHmm)}

A template file may carry a "resolve" block that post-processes a
variable with named transforms instead of the plain lookup:

    "resolve": {
        "routes.route_long_name": "routes.route_long_name | replace-dash-with-endash"
    }
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from rt_connections.errors import ConfigError

logger = logging.getLogger(__name__)

TEMPLATE_NAMES = ("stop", "route", "trip", "connection")
VARIABLE_SOURCES = ("trips", "routes", "stops", "connection")

DEFAULT_URI_TEMPLATES = {
    "stop": "http://example.org/stops/{stops.stop_id}",
    "route": "http://example.org/routes/{routes.route_id}",
    "trip": "http://example.org/trips/{trips.trip_id}/{trips.startTime(yyyyMMdd)}",
    "connection": (
        "http://example.org/connections/{trips.startTime(yyyyMMdd)}/"
        "{connection.departureStop}/{trips.trip_id}"
    ),
}

TRANSFORMS: Dict[str, Callable[[str], str]] = {
    "strip-whitespace": lambda s: s.strip(),
    "replace-dash-with-endash": lambda s: s.replace("--", "–"),
    "lowercase": lambda s: s.lower(),
    "uppercase": lambda s: s.upper(),
    "strip-leading-zeros": lambda s: s.lstrip("0") or "0",
}

_VARIABLE = re.compile(r"\{([^{}]+)\}")
_FORMATTED = re.compile(r"^(\w+)\((.*)\)$")
_DATE_TOKENS = re.compile(r"yyyy|YYYY|MM|dd|DD|HH|mm|ss")
_DATE_FIELDS = {
    "yyyy": "%Y", "YYYY": "%Y",
    "MM": "%m",
    "dd": "%d", "DD": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
}


def format_date(value: datetime, pattern: str) -> str:
    """Format with yyyy/MM/dd/HH/mm/ss tokens, other characters are literal."""
    return _DATE_TOKENS.sub(lambda m: value.strftime(_DATE_FIELDS[m.group(0)]), pattern)


@dataclass
class UriContext:
    """Everything a template variable can refer to for one connection."""

    trip: dict = field(default_factory=dict)
    route: dict = field(default_factory=dict)
    stop: dict = field(default_factory=dict)
    start_time: Optional[datetime] = None
    connection: dict = field(default_factory=dict)


def lookup(variable: str, context: UriContext) -> Optional[str]:
    source, _, attr = variable.strip().partition(".")
    formatted = _FORMATTED.match(attr)

    if source == "trips":
        if formatted and formatted.group(1) == "startTime":
            return format_date(context.start_time, formatted.group(2)) if context.start_time else None
        return context.trip.get(attr)
    if source == "routes":
        return context.route.get(attr)
    if source == "stops":
        return context.stop.get(attr)
    if source == "connection":
        if formatted and formatted.group(1) in ("departureTime", "arrivalTime"):
            value = context.connection.get(formatted.group(1))
            return format_date(value, formatted.group(2)) if value else None
        value = context.connection.get(attr)
        return value.isoformat() if isinstance(value, datetime) else value
    raise KeyError(f"Unknown template variable source: {source!r} in {variable!r}")


def parse_resolve_expression(expression: str) -> Tuple[str, List[str]]:
    """'source.attr | t1 | t2' -> ('source.attr', ['t1', 't2'])"""
    parts = [p.strip() for p in expression.split("|")]
    variable, transforms = parts[0], parts[1:]
    if not variable:
        raise ValueError(f"Empty variable in resolve expression {expression!r}")
    for name in transforms:
        if name not in TRANSFORMS:
            raise ValueError(
                f"Unknown transform {name!r} in {expression!r}, choose from {', '.join(TRANSFORMS)}"
            )
    return variable, transforms


class UriTemplates:
    """The four templates (stop, route, trip, connection) plus resolve overrides."""

    def __init__(self, templates: dict):
        missing = [name for name in TEMPLATE_NAMES if name not in templates]
        if missing:
            raise ConfigError(f"URI templates missing: {', '.join(missing)}")
        self.templates = {name: templates[name] for name in TEMPLATE_NAMES}
        try:
            self.resolve = {
                var: parse_resolve_expression(expr)
                for var, expr in (templates.get("resolve") or {}).items()
            }
        except ValueError as e:
            raise ConfigError(str(e)) from e

        for name in TEMPLATE_NAMES:
            for variable in self.variables(name):
                if variable not in self.resolve:
                    self._check_source(variable, name)
        for variable, (source, _) in self.resolve.items():
            self._check_source(source, f"resolve.{variable}")

    @staticmethod
    def _check_source(variable: str, where: str):
        source = variable.strip().partition(".")[0]
        if source not in VARIABLE_SOURCES:
            raise ConfigError(
                f"Unknown template variable {{{variable}}} in {where}, "
                f"sources are {', '.join(VARIABLE_SOURCES)}"
            )

    @classmethod
    def from_file(cls, path: str) -> "UriTemplates":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Please provide a valid path to a template file ({path}): {e}") from e

    def variables(self, name: str) -> List[str]:
        return _VARIABLE.findall(self.templates[name])

    def value(self, variable: str, context: UriContext) -> str:
        if variable in self.resolve:
            source, transforms = self.resolve[variable]
            value = lookup(source, context)
            for name in transforms:
                value = TRANSFORMS[name]("" if value is None else str(value))
        else:
            value = lookup(variable, context)
        return "" if value is None else str(value)

    def expand(self, name: str, context: UriContext) -> str:
        return _VARIABLE.sub(
            lambda m: quote(self.value(m.group(1), context), safe=""),
            self.templates[name],
        )


def load_templates(path: Optional[str] = None) -> UriTemplates:
    if not path:
        logger.info("No URI templates given, using the example.org defaults")
        return UriTemplates(DEFAULT_URI_TEMPLATES)
    return UriTemplates.from_file(path)
