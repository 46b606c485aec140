"""Service calendar checks (calendar.txt weekly pattern + calendar_dates.txt exceptions)."""

from datetime import date

from rt_connections.engine.times import format_gtfs_date, parse_gtfs_date

DAY_COLUMNS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

EXCEPTION_ADDED = 1
EXCEPTION_REMOVED = 2


def is_service_active(index, service_id: str, day: date) -> bool:
    """True if the service runs on the given date.

    An exception for the date wins over the weekly pattern: type 1 adds
    the service even outside its date range or weekday, type 2 removes it.
    """
    exception = index.get_calendar_exceptions(service_id).get(format_gtfs_date(day))
    if exception == EXCEPTION_ADDED:
        return True
    if exception == EXCEPTION_REMOVED:
        return False

    calendar = index.get_calendar(service_id)
    if not calendar:
        return False
    try:
        start = parse_gtfs_date(calendar["start_date"])
        end = parse_gtfs_date(calendar["end_date"])
    except (KeyError, ValueError):
        return False
    if not (start <= day <= end):
        return False
    return str(calendar.get(DAY_COLUMNS[day.weekday()], "0")).strip() == "1"


def is_trip_active(index, trip: dict, day: date) -> bool:
    service_id = trip.get("service_id")
    if not service_id:
        return False
    return is_service_active(index, service_id, day)
