"""Completed stop updates: one fully populated record per covered static stop."""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Union

from rt_connections.realtime.models import StopTimeEvent


def copy_event(event: Optional[StopTimeEvent]) -> Optional[StopTimeEvent]:
    """Copy a feed event, treating one with neither delay nor time as absent."""
    if event is None or (event.delay is None and not event.time):
        return None
    return StopTimeEvent(delay=event.delay, time=event.time or None)


@dataclass
class CompletedUpdate:
    stop_id: Optional[str]
    static_index: int
    arrival: Optional[StopTimeEvent] = None
    departure: Optional[StopTimeEvent] = None
    schedule_relationship: Union[int, str, None] = None
    scheduled_arrival: Optional[int] = None
    scheduled_departure: Optional[int] = None
    live: bool = False

    def to_dict(self) -> dict:
        return {
            "stopId": self.stop_id,
            "arrival": self.arrival.to_dict() if self.arrival else None,
            "departure": self.departure.to_dict() if self.departure else None,
            "scheduleRelationship": self.schedule_relationship,
        }


class CompletedUpdates:
    """Aligner output for one trip, in static stop order.

    Append-only except for amend_previous(), which lets the consistency
    check of stop i correct the departure of stop i-1.
    """

    def __init__(self):
        self._items: List[CompletedUpdate] = []

    def append(self, update: CompletedUpdate):
        self._items.append(update)

    @property
    def last(self) -> Optional[CompletedUpdate]:
        return self._items[-1] if self._items else None

    def amend_previous(self, departure: StopTimeEvent):
        if not self._items:
            raise IndexError("No previous update to amend")
        self._items[-1].departure = departure

    def __getitem__(self, i):
        return self._items[i]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CompletedUpdate]:
        return iter(self._items)

    def to_list(self) -> List[dict]:
        return [u.to_dict() for u in self._items]
