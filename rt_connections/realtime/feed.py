"""
GTFS-RT feed source and codec.

Fetches the raw protobuf (local file or HTTP) and decodes the TripUpdate
entities into TripUpdateEvent objects. Vehicle positions and alerts in a
mixed feed are ignored.
"""

import gzip
import logging
import os
import time
from typing import Dict, List, Optional

import requests
from google.protobuf.json_format import MessageToDict
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from rt_connections.errors import FeedDecodeError, FeedFetchError
from rt_connections.realtime.models import (
    FeedSnapshot,
    StopTimeEvent,
    StopTimeUpdate,
    TripUpdateEvent,
)

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


class FeedSource:
    """Fetches the raw GTFS-RT feed.

    Args:
        path: Local file or http(s) URL of the feed
        headers: Extra HTTP headers (e.g. API keys)
        timeout: HTTP timeout in seconds
    """

    def __init__(self, path: str, headers: Optional[Dict[str, str]] = None, timeout: int = 30):
        if not path:
            raise FeedFetchError("Please provide a valid url or a path to a GTFS-RT feed")
        self.path = path
        self.headers = headers or {}
        self.timeout = timeout
        self._session = requests.Session()

    def fetch(self) -> bytes:
        """Fetch the raw feed. No retries; re-invoke to try again."""
        if self.path.startswith(("http://", "https://")):
            raw = self._fetch_http()
        else:
            raw = self._fetch_file()
        # Some servers gzip the body without declaring Content-Encoding
        if raw[:2] == GZIP_MAGIC:
            try:
                raw = gzip.decompress(raw)
            except OSError as e:
                raise FeedFetchError(f"Corrupt gzip payload from {self.path}: {e}") from e
        return raw

    def _fetch_http(self) -> bytes:
        try:
            response = self._session.get(
                self.path,
                headers=self.headers,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            raise FeedFetchError(f"Fetch failed for {self.path}: {e}") from e

        if response.status_code >= 400:
            raise FeedFetchError(
                f"Request {self.path} failed with HTTP response code {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug(f"Fetched {len(response.content):,} bytes from {self.path}")
        return response.content

    def _fetch_file(self) -> bytes:
        if not os.path.isfile(self.path):
            raise FeedFetchError(f"GTFS-RT feed not found: {self.path}")
        with open(self.path, "rb") as f:
            return f.read()

    def close(self):
        self._session.close()


# ---------- codec ----------

def _parse_message(raw: bytes) -> "gtfs_realtime_pb2.FeedMessage":
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(raw)
    except DecodeError as e:
        raise FeedDecodeError(f"Failed to parse protobuf: {e}") from e
    return feed


def _stop_time_event(message) -> StopTimeEvent:
    return StopTimeEvent(
        delay=message.delay if message.HasField("delay") else None,
        time=message.time if message.HasField("time") else None,
    )


def _trip_update_event(entity, feed_timestamp: int) -> TripUpdateEvent:
    trip_update = entity.trip_update
    trip = trip_update.trip

    stop_time_updates = []
    for stop_update in trip_update.stop_time_update:
        stop_time_updates.append(
            StopTimeUpdate(
                stop_id=stop_update.stop_id if stop_update.HasField("stop_id") else None,
                stop_sequence=stop_update.stop_sequence if stop_update.HasField("stop_sequence") else None,
                arrival=_stop_time_event(stop_update.arrival) if stop_update.HasField("arrival") else None,
                departure=_stop_time_event(stop_update.departure) if stop_update.HasField("departure") else None,
                schedule_relationship=(
                    stop_update.schedule_relationship
                    if stop_update.HasField("schedule_relationship") else None
                ),
            )
        )

    return TripUpdateEvent(
        entity_id=entity.id,
        trip_id=trip.trip_id if trip.HasField("trip_id") and trip.trip_id else None,
        route_id=trip.route_id if trip.HasField("route_id") else None,
        direction_id=trip.direction_id if trip.HasField("direction_id") else None,
        start_time=trip.start_time if trip.HasField("start_time") else None,
        start_date=trip.start_date if trip.HasField("start_date") else None,
        schedule_relationship=trip.schedule_relationship if trip.HasField("schedule_relationship") else None,
        is_deleted=entity.is_deleted,
        timestamp=trip_update.timestamp if trip_update.HasField("timestamp") else feed_timestamp,
        stop_time_updates=stop_time_updates,
    )


def decode_feed(raw: bytes) -> FeedSnapshot:
    """Decode GTFS-RT protobuf bytes into a FeedSnapshot.

    The snapshot timestamp is the feed header timestamp, or the current
    time when the producer left it unset.
    """
    feed = _parse_message(raw)
    timestamp = feed.header.timestamp if feed.header.HasField("timestamp") else int(time.time())

    events: List[TripUpdateEvent] = []
    skipped = 0
    for entity in feed.entity:
        if entity.HasField("trip_update"):
            events.append(_trip_update_event(entity, timestamp))
        else:
            skipped += 1

    if skipped:
        logger.debug(f"Ignored {skipped} non trip-update entities")
    logger.info(f"Decoded {len(events)} trip updates (feed timestamp {timestamp})")
    return FeedSnapshot(timestamp=timestamp, events=events)


def feed_to_dict(raw: bytes) -> dict:
    """Decode the whole feed (all entity kinds) to a JSON-ready dict."""
    return MessageToDict(_parse_message(raw), preserving_proto_field_name=True)


def updated_trip_ids(snapshot: FeedSnapshot) -> List[str]:
    """Trip ids explicitly referenced by the feed, in feed order."""
    seen = {}
    for event in snapshot.events:
        if event.trip_id:
            seen[event.trip_id] = None
    return list(seen)
