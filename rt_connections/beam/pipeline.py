"""
Batch Beam pipeline: one GTFS-RT snapshot -> linked connection files.

    python -m rt_connections.beam.pipeline \
        --realtime feed.pb --static gtfs.zip \
        --output out/connections --output_format parquet

Any extra arguments are handed to Beam (e.g. --runner DataflowRunner).
"""

import argparse
import json
import logging

import apache_beam as beam
import pyarrow as pa
from apache_beam.options.pipeline_options import PipelineOptions, SetupOptions

from rt_connections.engine.reconciler import ReconcileTripUpdateFn
from rt_connections.realtime.feed import FeedSource, decode_feed, updated_trip_ids
from rt_connections.serializers import SERIALIZERS, get_serializer

logger = logging.getLogger(__name__)

FILE_SUFFIXES = {
    "json": ".json",
    "jsonld": ".jsonld",
    "csv": ".csv",
    "ntriples": ".nt",
    "turtle": ".ttl",
    "parquet": ".parquet",
}

# --- define schema for parquet export ---
output_schema = pa.schema([
    ('id', pa.string()),
    ('type', pa.string()),
    ('departureStop', pa.string()),
    ('arrivalStop', pa.string()),
    ('departureTime', pa.string()),  # ISO-8601 UTC
    ('arrivalTime', pa.string()),
    ('departureDelay', pa.int64()),
    ('arrivalDelay', pa.int64()),
    ('direction', pa.string()),
    ('trip', pa.string()),
    ('route', pa.string()),
    ('pickupType', pa.string()),
    ('dropOffType', pa.string()),
])


def to_parquet_record(lc: dict) -> dict:
    """Flatten JSON-LD style keys into parquet column names."""
    return {
        'id': lc['@id'],
        'type': lc['@type'],
        'departureStop': lc['departureStop'],
        'arrivalStop': lc['arrivalStop'],
        'departureTime': lc['departureTime'],
        'arrivalTime': lc['arrivalTime'],
        'departureDelay': lc['departureDelay'],
        'arrivalDelay': lc['arrivalDelay'],
        'direction': lc.get('direction'),
        'trip': lc['trip'],
        'route': lc['route'],
        'pickupType': lc.get('gtfs:pickupType'),
        'dropOffType': lc.get('gtfs:dropOffType'),
    }


class ReconcileSnapshot(beam.PTransform):
    """(snapshot_timestamp, TripUpdateEvent) -> linked connection dicts"""

    def __init__(self, reconcile_fn: ReconcileTripUpdateFn):
        super().__init__()
        self.reconcile_fn = reconcile_fn

    def expand(self, pcoll):
        return pcoll | 'Reconcile' >> beam.ParDo(self.reconcile_fn)


def run(argv=None):
    # 1. Parse arguments
    parser = argparse.ArgumentParser()
    parser.add_argument('--realtime', required=True, help='URL/path to the GTFS-RT feed')
    parser.add_argument('--static', required=True, help='URL/path/gs:// URI of the static GTFS feed')
    parser.add_argument('--output', required=True, help='Output file prefix (local or gs://)')
    parser.add_argument('--output_format', default='json',
                        choices=sorted(list(SERIALIZERS) + ['parquet']))
    parser.add_argument('--uris_template', default=None, help='URI templates JSON file')
    parser.add_argument('--headers', default=None, help='Extra HTTP headers as a JSON object')
    parser.add_argument('--timezone', default=None, help='Timezone of the service days')
    parser.add_argument('--leading_stops', default='scheduled', choices=['scheduled', 'seed'])
    parser.add_argument('--deduce', action='store_true', help='Deduce trips without trip_id')
    parser.add_argument('--grep', action='store_true', help='Index only trips present in the feed')
    known_args, pipeline_args = parser.parse_known_args(argv)

    # 2. configure beam pipeline
    pipeline_options = PipelineOptions(pipeline_args)
    pipeline_options.view_as(SetupOptions).save_main_session = True

    # 3. fetch and decode the snapshot on the driver
    headers = json.loads(known_args.headers) if known_args.headers else {}
    feed = FeedSource(known_args.realtime, headers=headers)
    try:
        snapshot = decode_feed(feed.fetch())
    finally:
        feed.close()
    trip_ids = updated_trip_ids(snapshot) if known_args.grep else None
    elements = [(snapshot.timestamp, event) for event in snapshot.events]
    logger.info(f"Reconciling {len(elements)} trip updates")

    reconcile_fn = ReconcileTripUpdateFn(
        static_path=known_args.static,
        uris_template_path=known_args.uris_template,
        timezone_name=known_args.timezone,
        leading_stops=known_args.leading_stops,
        deduce=known_args.deduce,
        trip_ids=trip_ids,
    )
    suffix = FILE_SUFFIXES[known_args.output_format]

    # 4. Build the pipeline
    with beam.Pipeline(options=pipeline_options) as p:
        connections = (
            p
            | 'CreateTripUpdates' >> beam.Create(elements)
            | 'ReconcileSnapshot' >> ReconcileSnapshot(reconcile_fn)
        )

        if known_args.output_format == 'parquet':
            (
                connections
                | 'ToParquetRecord' >> beam.Map(to_parquet_record)
                | 'WriteToParquet' >> beam.io.WriteToParquet(
                    file_path_prefix=known_args.output,
                    schema=output_schema,
                    file_name_suffix=suffix,
                    num_shards=1,  # one snapshot is small
                )
            )
        else:
            serializer = get_serializer(known_args.output_format)
            (
                connections
                | 'Serialize' >> beam.Map(serializer.format)
                | 'WriteToText' >> beam.io.WriteToText(
                    known_args.output,
                    file_name_suffix=suffix,
                    header=serializer.header(),
                    num_shards=1,
                )
            )


if __name__ == '__main__':
    logging.getLogger().setLevel(logging.INFO)
    run()
