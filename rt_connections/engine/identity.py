"""
Trip identity and service day resolution.

Some producers publish trip updates without a trip_id, identifying the
trip by route, nominal start time, start date and direction instead.
Others omit start_date, leaving the service day to be inferred.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from rt_connections.engine.times import SECONDS_PER_DAY, ServiceDay, format_gtfs_duration, parse_gtfs_duration
from rt_connections.errors import NoTripsForRoute
from rt_connections.static.calendar import is_trip_active

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripIdentity:
    trip_id: str
    service_day: ServiceDay
    start_time: str
    start_time_corrected: bool = False

    def start_epoch(self) -> int:
        return self.service_day.epoch(self.start_time)


def _same_direction(trip: dict, direction_id: Optional[int]) -> bool:
    if direction_id is None:
        return True
    value = str(trip.get("direction_id", "")).strip()
    # Feeds without direction_id in trips.txt cannot be filtered on it
    if not value:
        return True
    try:
        return int(value) == int(direction_id)
    except ValueError:
        return False


def resolve_service_day(
    index,
    trip: dict,
    start_time: str,
    tz: tzinfo = timezone.utc,
    now: Optional[float] = None,
) -> ServiceDay:
    """Best-effort service day for a trip update without start_date.

    Looks at yesterday, today and tomorrow (in the agency timezone) and
    keeps the days the trip runs on, then picks the one whose trip start
    lies closest to now. Without calendar data every day qualifies.
    """
    now = time.time() if now is None else now
    today = ServiceDay(datetime.fromtimestamp(now, tz=tz).date(), tz)
    candidates = [today.shift(-1), today, today.shift(1)]

    if index.has_calendar:
        active = [day for day in candidates if is_trip_active(index, trip, day.day)]
        if active:
            candidates = active
        else:
            logger.debug(f"Trip {trip.get('trip_id')} not active around {today.day}, using closest day")

    return min(candidates, key=lambda day: abs(day.epoch(start_time) - now))


class TripIdentityResolver:
    """Deduces the trip a trip update refers to when it carries no trip_id.

    Needs a StaticIndex built with deduce=True (trips_by_route present).

    Args:
        index: StaticIndex
        tz: Timezone the service days are anchored in
    """

    def __init__(self, index, tz: tzinfo = timezone.utc):
        self.index = index
        self.tz = tz

    def resolve(
        self,
        route_id: str,
        start_time: Optional[str],
        start_date: Optional[str],
        direction_id: Optional[int] = None,
        now: Optional[float] = None,
    ) -> Optional[TripIdentity]:
        """Match (route, start time, date, direction) to a single static trip.

        Returns None when nothing matches.

        Raises:
            NoTripsForRoute: the route has no indexed trips.
        """
        trip_ids = self.index.trips_for_route(route_id) if route_id else None
        if not trip_ids:
            raise NoTripsForRoute(route_id)

        if not start_time:
            logger.warning(f"Cannot deduce trip of route {route_id} without a start time")
            return None
        try:
            start_seconds = parse_gtfs_duration(start_time)
        except ValueError:
            logger.warning(f"Invalid start time {start_time!r} for route {route_id}")
            return None

        fixed_day = ServiceDay.from_gtfs(start_date, self.tz) if start_date else None

        match = None
        for trip_id in trip_ids:
            trip = self.index.get_trip(trip_id)
            if trip is None or not _same_direction(trip, direction_id):
                continue

            first_departure = self.index.first_departure(trip_id)
            if not first_departure:
                continue
            try:
                first_seconds = parse_gtfs_duration(first_departure)
            except ValueError:
                continue

            if first_seconds == start_seconds:
                corrected = False
            elif first_seconds == start_seconds + SECONDS_PER_DAY:
                # Producer wrapped a past-midnight start time (e.g. 00:30 for 24:30)
                corrected = True
            else:
                continue

            trip_start = format_gtfs_duration(first_seconds)
            if fixed_day is not None:
                if not is_trip_active(self.index, trip, fixed_day.day):
                    continue
                service_day = fixed_day
            else:
                service_day = resolve_service_day(self.index, trip, trip_start, self.tz, now)

            if match is not None:
                logger.warning(
                    f"Ambiguous trip for route {route_id} at {start_time}: "
                    f"{match.trip_id} and {trip_id} both match, keeping {trip_id}"
                )
            match = TripIdentity(trip_id, service_day, trip_start, corrected)

        if match is None:
            logger.warning(
                f"No trip found for route {route_id} starting {start_time} on {start_date} "
                f"(direction {direction_id})"
            )
        elif match.start_time_corrected:
            logger.debug(f"Trip {match.trip_id}: start time corrected {start_time} -> {match.start_time}")
        return match
