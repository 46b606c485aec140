"""
Trip update reconciliation.

Turns one GTFS-RT trip update into the linked connections of its trip:

  1. identify the trip (explicit trip_id, or deduced from route/start time)
  2. anchor the service day
  3. align live stop updates with the static stop times
  4. build connections from adjacent completed updates
  5. drop unchanged connections (optional history)
  6. mint URIs and render linked connection dicts

ConnectionStream runs this for every entity of a snapshot on a thread
pool and hands the results to a consumer through a bounded queue.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, tzinfo
from typing import Callable, Iterator, List, Optional

import apache_beam as beam

from rt_connections.engine.aligner import LEADING_SCHEDULED, StopUpdateAligner
from rt_connections.engine.checker import UpdateConsistencyChecker
from rt_connections.engine.connections import Connection, ConnectionBuilder, connection_type
from rt_connections.engine.history import DifferentialFilter
from rt_connections.engine.identity import TripIdentity, TripIdentityResolver, resolve_service_day
from rt_connections.engine.times import ServiceDay, parse_gtfs_duration, resolve_timezone, to_iso_utc
from rt_connections.engine.uris import UriContext, UriTemplates, load_templates
from rt_connections.errors import (
    InsufficientStopTimes,
    TripIdentityNotFound,
    TripNotFound,
    TripReconciliationError,
)
from rt_connections.realtime.models import FeedSnapshot, TripUpdateEvent
from rt_connections.static.index import build_static_index
from rt_connections.static.source import GtfsSource

logger = logging.getLogger(__name__)


# ---------- core logic ----------

class TripUpdateReconciler:
    """Reconciles trip updates against a StaticIndex.

    Args:
        index: StaticIndex (built with deduce=True to handle updates without trip_id)
        uris: URI templates (defaults when None)
        tz: Timezone anchoring service days (defaults to the agency timezone, then UTC)
        leading_stops: "scheduled" or "seed"
        history: Optional DifferentialFilter
        clock: Returns the current epoch seconds, used to infer missing service days
    """

    def __init__(
        self,
        index,
        uris: Optional[UriTemplates] = None,
        tz: Optional[tzinfo] = None,
        leading_stops: str = LEADING_SCHEDULED,
        history: Optional[DifferentialFilter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.index = index
        self.uris = uris or load_templates()
        self.tz = tz or resolve_timezone(index.timezone)
        self.history = history
        self.clock = clock
        self.aligner = StopUpdateAligner(UpdateConsistencyChecker(), leading_stops)
        self.builder = ConnectionBuilder()
        self.identity_resolver = TripIdentityResolver(index, self.tz)

    def reconcile(self, event: TripUpdateEvent, snapshot_timestamp: int) -> List[dict]:
        """Linked connections for one trip update. Recoverable errors yield []."""
        try:
            return self._reconcile(event, snapshot_timestamp)
        except TripReconciliationError as e:
            logger.warning(f"[{event.entity_id}] {e}")
            return []

    def identify(self, event: TripUpdateEvent) -> TripIdentity:
        if event.trip_id:
            return self._explicit_identity(event)

        if not event.route_id:
            raise TripIdentityNotFound(f"Entity {event.entity_id} has neither trip_id nor route_id")
        identity = self.identity_resolver.resolve(
            event.route_id,
            event.start_time,
            event.start_date,
            event.direction_id,
            now=self.clock(),
        )
        if identity is None:
            raise TripIdentityNotFound(
                f"Could not deduce trip for route {event.route_id} starting {event.start_time}"
            )
        return identity

    # ---------- internals ----------

    def _explicit_identity(self, event: TripUpdateEvent) -> TripIdentity:
        trip = self.index.get_trip(event.trip_id)
        if trip is None:
            raise TripNotFound(event.trip_id)
        start_time = event.start_time or self.index.first_departure(event.trip_id)
        if not start_time:
            raise InsufficientStopTimes(event.trip_id, 0)
        try:
            parse_gtfs_duration(start_time)
        except ValueError as e:
            raise TripReconciliationError(
                f"Invalid start time {start_time!r} for trip {event.trip_id}: {e}"
            ) from e

        try:
            if event.start_date:
                service_day = ServiceDay.from_gtfs(event.start_date, self.tz)
            else:
                service_day = resolve_service_day(self.index, trip, start_time, self.tz, self.clock())
        except ValueError as e:
            raise TripReconciliationError(
                f"Invalid start date {event.start_date!r} for trip {event.trip_id}: {e}"
            ) from e
        return TripIdentity(event.trip_id, service_day, start_time)

    def _reconcile(self, event: TripUpdateEvent, snapshot_timestamp: int) -> List[dict]:
        identity = self.identify(event)
        trip = self.index.get_trip(identity.trip_id)
        if trip is None:
            raise TripNotFound(identity.trip_id)
        static_stops = self.index.get_stop_times(identity.trip_id) or []
        if len(static_stops) < 2:
            raise InsufficientStopTimes(identity.trip_id, len(static_stops))

        type_ = connection_type(event)
        if event.is_cancelled and not event.stop_time_updates:
            completed = self.aligner.schedule_only(static_stops, identity.service_day, snapshot_timestamp)
        else:
            completed = self.aligner.align(
                static_stops, event.stop_time_updates, identity.service_day, snapshot_timestamp
            )

        connections = self.builder.build(completed, static_stops, trip, type_)
        route = self.index.get_route(trip.get("route_id")) or {}
        start = identity.service_day.to_datetime(identity.start_time)

        results = []
        for connection in connections:
            try:
                lc = self._linked_connection(connection, trip, route, start)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error building URIs for trip {identity.trip_id}: {e}")
                continue
            # Only connections that are actually emitted go into the history
            if self.history is not None and not self.history.is_new(
                connection, route, trip, identity.start_time, identity.service_day.gtfs_date()
            ):
                continue
            results.append(lc)

        logger.debug(
            f"Trip {identity.trip_id}: {len(completed)} stops, {len(results)} connections ({type_})"
        )
        return results

    def _stop(self, stop_id: str) -> dict:
        return self.index.get_stop(stop_id) or {"stop_id": stop_id}

    def _linked_connection(self, connection: Connection, trip: dict, route: dict, start: datetime) -> dict:
        raw = {
            "departureStop": connection.departure_stop,
            "arrivalStop": connection.arrival_stop,
            "departureTime": datetime.fromtimestamp(connection.departure_time, tz=self.tz),
            "arrivalTime": datetime.fromtimestamp(connection.arrival_time, tz=self.tz),
            "departureDelay": connection.departure_delay,
            "arrivalDelay": connection.arrival_delay,
        }
        base = UriContext(trip=trip, route=route, start_time=start, connection=raw)
        departure = UriContext(trip=trip, route=route, stop=self._stop(connection.departure_stop),
                               start_time=start, connection=raw)
        arrival = UriContext(trip=trip, route=route, stop=self._stop(connection.arrival_stop),
                             start_time=start, connection=raw)

        return {
            "@id": self.uris.expand("connection", base),
            "@type": connection.type,
            "departureStop": self.uris.expand("stop", departure),
            "arrivalStop": self.uris.expand("stop", arrival),
            "departureTime": to_iso_utc(connection.departure_time),
            "arrivalTime": to_iso_utc(connection.arrival_time),
            "departureDelay": connection.departure_delay,
            "arrivalDelay": connection.arrival_delay,
            "direction": connection.headsign,
            "trip": self.uris.expand("trip", base),
            "route": self.uris.expand("route", base),
            "gtfs:pickupType": connection.pickup_type,
            "gtfs:dropOffType": connection.drop_off_type,
        }


_END = object()


class ConnectionStream:
    """Iterates the linked connections of a whole snapshot.

    Entities are reconciled concurrently; each trip's connections are
    pushed into a bounded queue as soon as the trip is done, so the order
    across trips follows completion, not the feed. A slow consumer blocks
    the workers once the queue is full. Iteration ends after every entity
    settled or close() was called; close() also makes the workers stop producing.

    Usage:
        stream = ConnectionStream(reconciler, snapshot)
        for lc in stream:
            ...
    """

    def __init__(
        self,
        reconciler: TripUpdateReconciler,
        snapshot: FeedSnapshot,
        max_workers: Optional[int] = None,
        queue_size: int = 1000,
    ):
        self.reconciler = reconciler
        self.snapshot = snapshot
        self.max_workers = max_workers
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._stopped = threading.Event()
        self._producer: Optional[threading.Thread] = None
        self.failed = 0

    def __iter__(self) -> Iterator[dict]:
        if self._producer is not None:
            raise RuntimeError("ConnectionStream can only be iterated once")
        self._producer = threading.Thread(target=self._produce, name="connection-stream", daemon=True)
        self._producer.start()
        try:
            while True:
                try:
                    item = self._queue.get(timeout=0.1)
                except queue.Empty:
                    if self._stopped.is_set():
                        break
                    continue
                # close() may have been called from inside the consumer loop
                if item is _END or self._stopped.is_set():
                    break
                yield item
        finally:
            self.close()

    def close(self):
        self._stopped.set()
        # Unblock workers waiting on a full queue
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    # ---------- internals ----------

    def _put(self, item) -> bool:
        while not self._stopped.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _process(self, event: TripUpdateEvent):
        if self._stopped.is_set():
            return
        for lc in self.reconciler.reconcile(event, self.snapshot.timestamp):
            if not self._put(lc):
                return

    def _produce(self):
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self._process, event): event for event in self.snapshot.events
                }
                for future in as_completed(futures):
                    try:
                        future.result()
                    except Exception as e:
                        self.failed += 1
                        logger.error(
                            f"[{futures[future].entity_id}] Failed to reconcile trip update: {e}",
                            exc_info=True,
                        )
        finally:
            self._put(_END)


# ---------- Beam wrapper ----------

class ReconcileTripUpdateFn(beam.DoFn):
    """DoFn that wraps TripUpdateReconciler for batch pipelines.

    The static index is built once per worker in setup().

    Input:  (snapshot_timestamp, TripUpdateEvent)
    Output: linked connection dict per connection
    """

    def __init__(
        self,
        static_path: str,
        uris_template_path: Optional[str] = None,
        store_kind: str = "MemStore",
        store_path: Optional[str] = None,
        timezone_name: Optional[str] = None,
        leading_stops: str = LEADING_SCHEDULED,
        deduce: bool = False,
        trip_ids: Optional[List[str]] = None,
    ):
        self.static_path = static_path
        self.uris_template_path = uris_template_path
        self.store_kind = store_kind
        self.store_path = store_path
        self.timezone_name = timezone_name
        self.leading_stops = leading_stops
        self.deduce = deduce
        self.trip_ids = trip_ids
        self._reconciler = None

    def setup(self):
        with GtfsSource(self.static_path, progress=False) as source:
            index = build_static_index(
                source,
                store_kind=self.store_kind,
                store_path=self.store_path,
                trip_ids=self.trip_ids,
                deduce=self.deduce,
            )
        tz = resolve_timezone(self.timezone_name) if self.timezone_name else None
        self._reconciler = TripUpdateReconciler(
            index,
            uris=load_templates(self.uris_template_path),
            tz=tz,
            leading_stops=self.leading_stops,
        )

    def process(self, element):
        snapshot_timestamp, event = element
        try:
            connections = self._reconciler.reconcile(event, snapshot_timestamp)
        except Exception as e:
            # One bad entity must not fail the bundle
            logger.error(f"[{event.entity_id}] Failed to reconcile trip update: {e}", exc_info=True)
            return
        for lc in connections:
            yield lc

    def teardown(self):
        if self._reconciler is not None:
            self._reconciler.index.close()
