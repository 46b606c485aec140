"""Connections: one hop between two consecutive completed stop updates."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from rt_connections.engine.updates import CompletedUpdates
from rt_connections.realtime.models import STOP_SKIPPED, TripUpdateEvent

logger = logging.getLogger(__name__)

CONNECTION = "Connection"
CANCELLED_CONNECTION = "CancelledConnection"

# GTFS pickup_type / drop_off_type
PICKUP_DROP_OFF_TYPES = {
    0: "gtfs:Regular",
    1: "gtfs:NotAvailable",
    2: "gtfs:MustPhone",
    3: "gtfs:MustCoordinateWithDriver",
}


def connection_type(event: TripUpdateEvent) -> str:
    # Feeds use the American spelling CANCELED
    return CANCELLED_CONNECTION if event.is_cancelled else CONNECTION


def resolve_schedule_relationship(value: Union[int, str, None], schedule_type) -> str:
    """Live SKIPPED wins, otherwise the static pickup/drop-off type applies."""
    if value == STOP_SKIPPED or value == "SKIPPED":
        return "gtfs:NotAvailable"
    try:
        schedule_type = int(schedule_type) if str(schedule_type).strip() else 0
    except (TypeError, ValueError):
        schedule_type = 0
    return PICKUP_DROP_OFF_TYPES.get(schedule_type, "gtfs:Regular")


@dataclass
class Connection:
    type: str
    trip_id: str
    route_id: Optional[str]
    departure_stop: str
    arrival_stop: str
    departure_time: int
    arrival_time: int
    departure_delay: int
    arrival_delay: int
    headsign: Optional[str]
    pickup_type: str
    drop_off_type: str
    # static schedule, used for history signatures
    scheduled_departure_time: str = ""
    scheduled_arrival_time: str = ""


class ConnectionBuilder:
    """Walks completed updates in adjacent pairs, one Connection per pair."""

    def build(
        self,
        completed: CompletedUpdates,
        static_stops: Sequence[dict],
        trip: dict,
        type_: str = CONNECTION,
    ) -> List[Connection]:
        connections = []
        trip_id = trip.get("trip_id")

        for j in range(len(completed) - 1):
            current, following = completed[j], completed[j + 1]
            try:
                if current.departure is None or following.arrival is None:
                    raise ValueError(
                        f"incomplete update between {current.stop_id} and {following.stop_id}"
                    )
                departure_static = static_stops[current.static_index]
                arrival_static = static_stops[following.static_index]
                connections.append(
                    Connection(
                        type=type_,
                        trip_id=trip_id,
                        route_id=trip.get("route_id"),
                        departure_stop=current.stop_id,
                        arrival_stop=following.stop_id,
                        departure_time=int(current.departure.time),
                        arrival_time=int(following.arrival.time),
                        departure_delay=int(current.departure.delay),
                        arrival_delay=int(following.arrival.delay),
                        headsign=trip.get("trip_headsign"),
                        pickup_type=resolve_schedule_relationship(
                            current.schedule_relationship, departure_static.get("pickup_type")
                        ),
                        drop_off_type=resolve_schedule_relationship(
                            following.schedule_relationship, arrival_static.get("drop_off_type")
                        ),
                        scheduled_departure_time=departure_static.get("departure_time", ""),
                        scheduled_arrival_time=arrival_static.get("arrival_time", ""),
                    )
                )
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.error(f"Error parsing update for trip {trip_id}: {e}")
                continue

        return connections
