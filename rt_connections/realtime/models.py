"""In-memory shape of a decoded GTFS-RT TripUpdates feed."""

from dataclasses import dataclass, field
from typing import List, Optional, Union

# GTFS-RT TripDescriptor.ScheduleRelationship
TRIP_SCHEDULED = 0
TRIP_ADDED = 1
TRIP_UNSCHEDULED = 2
TRIP_CANCELED = 3

# GTFS-RT StopTimeUpdate.ScheduleRelationship
STOP_SCHEDULED = 0
STOP_SKIPPED = 1
STOP_NO_DATA = 2


@dataclass
class StopTimeEvent:
    """Arrival or departure prediction. 0/None means the field was not set."""

    delay: Optional[int] = None
    time: Optional[int] = None

    def to_dict(self) -> dict:
        return {"delay": self.delay, "time": self.time}


@dataclass
class StopTimeUpdate:
    stop_id: Optional[str] = None
    stop_sequence: Optional[int] = None
    arrival: Optional[StopTimeEvent] = None
    departure: Optional[StopTimeEvent] = None
    schedule_relationship: Union[int, str, None] = None


@dataclass
class TripUpdateEvent:
    entity_id: str
    trip_id: Optional[str] = None
    route_id: Optional[str] = None
    direction_id: Optional[int] = None
    start_time: Optional[str] = None
    start_date: Optional[str] = None
    schedule_relationship: Union[int, str, None] = None
    is_deleted: bool = False
    timestamp: Optional[int] = None
    stop_time_updates: List[StopTimeUpdate] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return (
            self.is_deleted
            or self.schedule_relationship == TRIP_CANCELED
            or self.schedule_relationship == "CANCELED"
        )


@dataclass
class FeedSnapshot:
    timestamp: int
    events: List[TripUpdateEvent] = field(default_factory=list)
