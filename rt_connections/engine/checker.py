"""
Consistency checks for completed stop updates.

GTFS-RT producers routinely send partial stop updates: only a delay,
only an absolute time, only the departure, or an arrival that lands
before the previous stop's departure. Each update is completed from the
static schedule and corrected against the previous stop so that

    arrival.time <= departure.time              (same stop)
    previous.departure.time <= arrival.time     (adjacent stops)

The first static stop only keeps a departure, the last only an arrival.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from rt_connections.engine.times import ServiceDay
from rt_connections.engine.updates import CompletedUpdate
from rt_connections.realtime.models import StopTimeEvent

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    update: CompletedUpdate
    # Replacement departure for the previous update, when this stop proved it wrong
    previous_departure: Optional[StopTimeEvent] = None


def _event(scheduled: int, delay: int) -> StopTimeEvent:
    return StopTimeEvent(delay=delay, time=scheduled + delay)


def _scheduled_departure(update: CompletedUpdate) -> Optional[int]:
    if update.scheduled_departure is not None:
        return update.scheduled_departure
    if update.departure and update.departure.time and update.departure.delay is not None:
        return update.departure.time - update.departure.delay
    return None


def amended_departure(previous: CompletedUpdate, delay: int) -> Optional[StopTimeEvent]:
    """Departure for `previous` shifted to `delay`, never before its own arrival."""
    scheduled = _scheduled_departure(previous)
    if scheduled is None:
        return None
    departure = _event(scheduled, delay)
    if previous.arrival and previous.arrival.time and departure.time < previous.arrival.time:
        departure = StopTimeEvent(delay=previous.arrival.time - scheduled, time=previous.arrival.time)
    return departure


class UpdateConsistencyChecker:
    """Completes and corrects one stop update given the previous one."""

    def check(
        self,
        update: CompletedUpdate,
        previous: Optional[CompletedUpdate],
        static_stop: dict,
        static_index: int,
        static_length: int,
        service_day: ServiceDay,
        snapshot_timestamp: int,
    ) -> CheckResult:
        result = CheckResult(update)
        try:
            self._check(result, previous, static_stop, static_index, static_length,
                        service_day, snapshot_timestamp)
        except Exception as e:
            logger.error(
                f"Could not complete update for stop {update.stop_id} "
                f"(position {static_index}): {e}",
                exc_info=True,
            )
        return result

    def _check(self, result, previous, static_stop, static_index, static_length,
               service_day, snapshot_timestamp):
        update = result.update
        is_first = static_index == 0
        is_last = static_index == static_length - 1

        if not update.stop_id:
            update.stop_id = static_stop["stop_id"]

        sched_arr = service_day.epoch(static_stop["arrival_time"])
        sched_dep = service_day.epoch(static_stop["departure_time"])
        update.scheduled_arrival = sched_arr
        update.scheduled_departure = sched_dep

        # delay from absolute time, absolute time from delay
        for attr, scheduled in (("arrival", sched_arr), ("departure", sched_dep)):
            event = getattr(update, attr)
            if event is None:
                continue
            if event.delay is None and event.time:
                event.delay = event.time - scheduled
            if not event.time and event.delay is not None:
                event.time = scheduled + event.delay
            if event.delay is None or not event.time:
                setattr(update, attr, None)

        if update.departure is None and not is_last:
            if update.arrival is not None:
                update.departure = _event(sched_dep, update.arrival.delay)
            else:
                update.departure = _event(sched_dep, 0)

        if update.arrival is None and not is_first:
            self._derive_arrival(result, previous, sched_arr, sched_dep, snapshot_timestamp)

        # residual inconsistency with the previous departure
        previous_departure = result.previous_departure
        if previous_departure is None and previous is not None:
            previous_departure = previous.departure
        if previous_departure is not None and update.arrival is not None:
            if previous_departure.time > update.arrival.time:
                arrival_time = max(sched_arr + previous_departure.delay, previous_departure.time)
                update.arrival = StopTimeEvent(delay=arrival_time - sched_arr, time=arrival_time)
                if update.departure is not None and update.arrival.time > update.departure.time:
                    update.departure = _event(sched_dep, previous_departure.delay)

        if update.arrival is not None and update.departure is not None:
            if update.departure.time < update.arrival.time:
                departure_time = max(sched_dep + update.arrival.delay, update.arrival.time)
                update.departure = StopTimeEvent(delay=departure_time - sched_dep, time=departure_time)

        if is_first:
            update.arrival = None
        if is_last:
            update.departure = None

    def _derive_arrival(self, result, previous, sched_arr, sched_dep, snapshot_timestamp):
        update = result.update
        prev_delay = previous.departure.delay if previous is not None and previous.departure else 0
        candidate = _event(sched_arr, prev_delay)
        departure = update.departure

        if departure is None or candidate.time <= departure.time:
            update.arrival = candidate
            return

        if departure.time < snapshot_timestamp:
            # Departure already happened: it is a fact, the previous stop was wrong
            update.arrival = _event(sched_arr, departure.delay)
            if previous is not None:
                result.previous_departure = amended_departure(previous, departure.delay)
            logger.debug(
                f"Stop {update.stop_id}: departed at {departure.time}, "
                f"previous departure corrected to delay {departure.delay}"
            )
        else:
            update.arrival = candidate
            update.departure = _event(sched_dep, prev_delay)
