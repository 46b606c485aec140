"""
Differential filter over a history store.

Remembers, per connection signature and service date, the last emitted
delays and type. A connection is only emitted again when one of them
changed.
"""

import logging
import threading

from rt_connections.engine.connections import Connection
from rt_connections.static.stores import KeyValueStore

logger = logging.getLogger(__name__)


def connection_signature(connection: Connection, route: dict, trip: dict, start_time: str) -> str:
    """Structural key, stable across feed snapshots of the same scheduled hop."""
    parts = [
        route.get("route_short_name") or route.get("route_long_name") or route.get("route_id", ""),
        trip.get("trip_short_name", ""),
        connection.departure_stop,
        connection.arrival_stop,
        connection.scheduled_departure_time,
        connection.scheduled_arrival_time,
        connection.pickup_type,
        connection.drop_off_type,
        start_time,
    ]
    return "/".join(str(p) for p in parts)


class DifferentialFilter:
    """Suppresses connections whose delays and type did not change.

    Safe to share between worker threads: check-and-record is atomic.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._lock = threading.Lock()

    def is_new(
        self,
        connection: Connection,
        route: dict,
        trip: dict,
        start_time: str,
        service_date: str,
    ) -> bool:
        key = connection_signature(connection, route, trip, start_time)
        observed = {
            "departureDelay": connection.departure_delay,
            "arrivalDelay": connection.arrival_delay,
            "type": connection.type,
        }
        with self._lock:
            record = self.store.get(key) or {}
            if record.get(service_date) == observed:
                return False
            record[service_date] = observed
            self.store.put(key, record)
        return True

    def close(self):
        self.store.close()
