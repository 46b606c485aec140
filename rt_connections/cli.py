"""
Command-line tools.

    gtfsrt2lc -r <gtfs-rt feed> -s <static gtfs> [-f turtle] > connections.ttl
    gtfsrt2json -r <gtfs-rt feed> > feed.json

Connections go to stdout, logs to stderr.
"""

import argparse
import dataclasses
import json
import logging
import sys
import time
from typing import Dict, Optional

from rt_connections.config import LEADING_STOP_MODES, OUTPUT_FORMATS, Config
from rt_connections.engine.history import DifferentialFilter
from rt_connections.engine.reconciler import ConnectionStream, TripUpdateReconciler
from rt_connections.engine.times import resolve_timezone
from rt_connections.engine.uris import load_templates
from rt_connections.errors import ConfigError, RtConnectionsError
from rt_connections.logging_utils import log_run_end, log_run_start, setup_logging
from rt_connections.realtime.feed import FeedSource, decode_feed, feed_to_dict, updated_trip_ids
from rt_connections.serializers import serialize
from rt_connections.static.index import build_static_index
from rt_connections.static.source import GtfsSource
from rt_connections.static.stores import open_store

logger = logging.getLogger(__name__)


def parse_headers(value: Optional[str]) -> Dict[str, str]:
    if not value:
        return {}
    try:
        headers = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Please provide a valid JSON string for the extra HTTP headers: {e}") from e
    if not isinstance(headers, dict):
        raise ConfigError("Extra HTTP headers must be a JSON object")
    return {str(k): str(v) for k, v in headers.items()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gtfsrt2lc",
        description="GTFS-RT to Linked Connections converter",
    )
    parser.add_argument("-r", "--real-time", dest="real_time", help="URL/path to gtfs-rt feed")
    parser.add_argument("-s", "--static", help="URL/path to static gtfs feed")
    parser.add_argument("-u", "--uris-template", dest="uris_template",
                        help="Templates for Linked Connection URIs following the RFC 6570 specification")
    parser.add_argument("-H", "--headers",
                        help='Extra HTTP headers for requesting the gtfs files, e.g. {"api-Key":"someApiKey"}')
    parser.add_argument("-f", "--format", choices=OUTPUT_FORMATS,
                        help="Output serialization format (default: json)")
    parser.add_argument("-S", "--store", help="Store type: MemStore (default) or DiskStore/LevelStore")
    parser.add_argument("--store-path", dest="store_path", help="SQLite file for DiskStore indexes")
    parser.add_argument("-g", "--grep", action="store_true",
                        help="Index only the trips present in the GTFS-RT feed")
    parser.add_argument("-d", "--deduce", action="store_true",
                        help="Create additional indexes to identify trips without a trip_id")
    parser.add_argument("--history", help="Path to the connection history store for differential updates")
    parser.add_argument("--timezone", help="Timezone of the service days (default: agency_timezone)")
    parser.add_argument("--leading-stops", dest="leading_stops", choices=LEADING_STOP_MODES,
                        help="How stops before the first live update are emitted")
    parser.add_argument("--log-level", dest="log_level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[Config] = None) -> Config:
    """Environment settings overridden by whatever was given on the command line."""
    base = base or Config.from_environment()
    overrides = {
        "feed_path": args.real_time,
        "static_path": args.static,
        "uris_template_path": args.uris_template,
        "output_format": args.format,
        "store_kind": args.store,
        "store_path": args.store_path,
        "history_path": args.history,
        "timezone": args.timezone,
        "leading_stops": args.leading_stops,
        "log_level": args.log_level,
    }
    config = dataclasses.replace(base, **{k: v for k, v in overrides.items() if v is not None})
    if not config.feed_path:
        raise ConfigError("Please provide a url or a path to a GTFS-RT feed")
    if not config.static_path:
        raise ConfigError("Please provide a url or a path to a GTFS feed")
    return config


def convert(config: Config, headers: Dict[str, str], grep: bool = False, deduce: bool = False, out=None) -> int:
    """Run one conversion and write the connections to `out`. Returns the count."""
    out = out or sys.stdout
    t0 = time.time()

    feed = FeedSource(config.feed_path, headers=headers, timeout=config.request_timeout_seconds)
    try:
        snapshot = decode_feed(feed.fetch())
    finally:
        feed.close()

    trip_ids = updated_trip_ids(snapshot) if grep else None

    logger.info("Creating the GTFS indexes needed for the conversion")
    with GtfsSource(config.static_path, headers=headers) as source:
        index = build_static_index(
            source,
            store_kind=config.store_kind,
            store_path=config.store_path,
            trip_ids=trip_ids,
            deduce=deduce,
        )
    logger.info(f"GTFS indexing process took {(time.time() - t0) * 1000:.0f} ms")

    history = None
    if config.history_path:
        history = DifferentialFilter(open_store("DiskStore", config.history_path, table="history"))

    try:
        reconciler = TripUpdateReconciler(
            index,
            uris=load_templates(config.uris_template_path),
            tz=resolve_timezone(config.timezone) if config.timezone else None,
            leading_stops=config.leading_stops,
            history=history,
        )
        t1 = time.time()
        stream = ConnectionStream(reconciler, snapshot, queue_size=config.queue_size)
        count = serialize(stream, config.output_format, out)
        logger.info(
            f"Linked Connections conversion process took {(time.time() - t1) * 1000:.0f} ms "
            f"({count} connections)"
        )
        return count
    finally:
        index.close()
        if history is not None:
            history.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
        setup_logging(config.log_level)
        headers = parse_headers(args.headers)
    except (ConfigError, ValueError) as e:
        print(f"{e}\nGTFS-RT to linked connections converter use --help to discover how to use it",
              file=sys.stderr)
        return 2

    log_run_start(
        logger,
        "GTFS-RT to Linked Connections",
        feed=config.feed_path,
        static=config.static_path,
        format=config.output_format,
        store=config.store_kind,
    )
    t0 = time.time()
    try:
        convert(config, headers, grep=args.grep, deduce=args.deduce)
    except RtConnectionsError as e:
        logger.error(str(e))
        log_run_end(logger, "Conversion", time.time() - t0, success=False)
        return 1
    except BrokenPipeError:
        # Downstream reader went away (e.g. `| head`)
        return 0
    log_run_end(logger, "Conversion", time.time() - t0)
    return 0


def main_json(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="gtfsrt2json", description="GTFS-RT to JSON converter")
    parser.add_argument("-r", "--real-time", dest="real_time", required=True,
                        help="URL/path to gtfs-rt feed")
    parser.add_argument("-H", "--headers", help="Extra HTTP headers as a JSON object")
    parser.add_argument("--log-level", dest="log_level", default="INFO")
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level)
        headers = parse_headers(args.headers)
    except (ConfigError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    feed = FeedSource(args.real_time, headers=headers)
    try:
        print(json.dumps(feed_to_dict(feed.fetch())))
    except RtConnectionsError as e:
        logger.error(str(e))
        return 1
    finally:
        feed.close()
    return 0


def run():
    sys.exit(main())


def run_json():
    sys.exit(main_json())


if __name__ == "__main__":
    run()
