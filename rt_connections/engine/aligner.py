"""
Stop update aligner.

Merges the complete static stop sequence of a trip with the sparse list
of live stop updates into one CompletedUpdate per covered static stop.

Single forward pass with two cursors (static position, live position):

  - live update targets this static stop   -> consume it, check, append
  - live update cannot be placed           -> skip it, re-evaluate the same static stop
  - live update targets a later stop       -> fill this stop:
        after the first emitted update: previous departure delay (GTFS-RT propagation)
        before it: zero delay ("scheduled" mode) or a single departure-only
        seed for the preceding stop ("seed" mode)
  - no live updates left                   -> keep propagating the last delay
"""

import logging
from typing import Optional, Sequence

from rt_connections.engine.checker import UpdateConsistencyChecker
from rt_connections.engine.times import ServiceDay
from rt_connections.engine.updates import CompletedUpdate, CompletedUpdates, copy_event
from rt_connections.realtime.models import StopTimeEvent, StopTimeUpdate

logger = logging.getLogger(__name__)

LEADING_SCHEDULED = "scheduled"
LEADING_SEED = "seed"


def find_stop_by_sequence(stop_sequence: int, static_stops: Sequence[dict]) -> Optional[int]:
    for i, stop in enumerate(static_stops):
        if int(stop["stop_sequence"]) == int(stop_sequence):
            return i
    return None


def find_stop_by_id(stop_id: str, static_stops: Sequence[dict], start: int = 0) -> Optional[int]:
    for i in range(start, len(static_stops)):
        if static_stops[i]["stop_id"] == stop_id:
            return i
    return None


class StopUpdateAligner:
    """Aligns live stop updates against the static stop sequence of a trip.

    Args:
        checker: Consistency checker applied to every update as it is finalized
        leading_stops: "scheduled" or "seed", how stops before the first
                       live update are handled
    """

    def __init__(
        self,
        checker: Optional[UpdateConsistencyChecker] = None,
        leading_stops: str = LEADING_SCHEDULED,
    ):
        if leading_stops not in (LEADING_SCHEDULED, LEADING_SEED):
            raise ValueError(f"Unknown leading stops mode: {leading_stops}")
        self.checker = checker or UpdateConsistencyChecker()
        self.leading_stops = leading_stops

    # ---------- public API ----------

    def align(
        self,
        static_stops: Sequence[dict],
        live_updates: Sequence[StopTimeUpdate],
        service_day: ServiceDay,
        snapshot_timestamp: int,
    ) -> CompletedUpdates:
        completed = CompletedUpdates()
        static_length = len(static_stops)
        live_index = 0
        i = 0

        while i < static_length:
            live = live_updates[live_index] if live_index < len(live_updates) else None
            target = None

            if live is not None:
                target = self.locate(live, static_stops, i)
                if target is None:
                    # Not part of this static trip (joined/split trains) or already passed
                    logger.debug(
                        f"Skipping stop update {live.stop_id}/{live.stop_sequence}: "
                        f"not found from static position {i}"
                    )
                    live_index += 1
                    continue

                if target == i:
                    update = CompletedUpdate(
                        stop_id=live.stop_id,
                        static_index=i,
                        arrival=copy_event(live.arrival),
                        departure=copy_event(live.departure),
                        schedule_relationship=live.schedule_relationship,
                        live=True,
                    )
                    self._finalize(completed, update, static_stops, i, service_day, snapshot_timestamp)
                    live_index += 1
                    i += 1
                    continue

            if completed.last is None and self.leading_stops == LEADING_SEED:
                seed = self._seed(static_stops, i, live, target, service_day)
                if seed is not None:
                    completed.append(seed)
                i += 1
                continue

            filler = self._filler(completed, static_stops, i, live, service_day)
            if filler is not None:
                self._finalize(completed, filler, static_stops, i, service_day, snapshot_timestamp)
            i += 1

        return completed

    def schedule_only(
        self,
        static_stops: Sequence[dict],
        service_day: ServiceDay,
        snapshot_timestamp: int,
    ) -> CompletedUpdates:
        """The whole static trip with zero delay (cancelled trips without stop updates)."""
        completed = CompletedUpdates()
        for i in range(len(static_stops)):
            update = self._propagated(static_stops, i, service_day, 0)
            self._finalize(completed, update, static_stops, i, service_day, snapshot_timestamp)
        return completed

    @staticmethod
    def locate(live: StopTimeUpdate, static_stops: Sequence[dict], start: int) -> Optional[int]:
        """Static position targeted by a live update, at or after `start`.

        stop_sequence wins over stop_id when it resolves, so loops that
        visit a stop twice map to the right visit.
        """
        if live.stop_sequence is not None:
            position = find_stop_by_sequence(live.stop_sequence, static_stops)
            if position is not None:
                return position if position >= start else None
        if live.stop_id:
            return find_stop_by_id(live.stop_id, static_stops, start)
        return None

    # ---------- internals ----------

    def _finalize(self, completed, update, static_stops, i, service_day, snapshot_timestamp):
        result = self.checker.check(
            update,
            completed.last,
            static_stops[i],
            i,
            len(static_stops),
            service_day,
            snapshot_timestamp,
        )
        if result.previous_departure is not None and completed.last is not None:
            completed.amend_previous(result.previous_departure)
        completed.append(result.update)

    def _filler(self, completed, static_stops, i, live, service_day) -> Optional[CompletedUpdate]:
        previous = completed.last
        if previous is not None:
            event = previous.departure or previous.arrival
            delay = event.delay if event is not None and event.delay is not None else 0
            return self._propagated(static_stops, i, service_day, delay)
        # Nothing emitted yet: only fill ahead of a live update that will match later
        if live is None:
            return None
        return self._propagated(static_stops, i, service_day, 0)

    @staticmethod
    def _seed(static_stops, i, live, target, service_day) -> Optional[CompletedUpdate]:
        """Zero-delay departure-only entry for the stop right before the first live update."""
        if target != i + 1 or copy_event(live.arrival) is None:
            return None
        scheduled = service_day.epoch(static_stops[i]["departure_time"])
        return CompletedUpdate(
            stop_id=static_stops[i]["stop_id"],
            static_index=i,
            departure=StopTimeEvent(delay=0, time=scheduled),
            scheduled_departure=scheduled,
        )

    @staticmethod
    def _propagated(static_stops, i, service_day, delay: int) -> CompletedUpdate:
        """Static stop i shifted by a uniform delay, respecting trip boundaries."""
        stop = static_stops[i]
        update = CompletedUpdate(stop_id=stop["stop_id"], static_index=i)
        if i > 0:
            scheduled = service_day.epoch(stop["arrival_time"])
            update.arrival = StopTimeEvent(delay=delay, time=scheduled + delay)
        if i < len(static_stops) - 1:
            scheduled = service_day.epoch(stop["departure_time"])
            update.departure = StopTimeEvent(delay=delay, time=scheduled + delay)
        return update

