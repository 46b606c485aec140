"""Pytest configuration and shared fixtures.

The static feed is a single route R1 over stops S1..S5, service day
2024-01-01 (a Monday) in UTC:

    T1  dir 0  WEEKDAY  departs S1 08:00, then every 5 min (arrival = departure - 1 min)
    T2  dir 0  WEEKDAY  same pattern from 09:00
    T3  dir 1  WEEKDAY  08:00, stops reversed
    T4  dir 0  WEEKEND  08:00
    T5  dir 0  WEEKDAY  24:30 (night service)
"""
import sys
from pathlib import Path

import pytest
from google.transit import gtfs_realtime_pb2

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rt_connections.engine.times import ServiceDay, format_gtfs_duration, parse_gtfs_duration
from rt_connections.realtime.models import StopTimeEvent, StopTimeUpdate, TripUpdateEvent
from rt_connections.static.index import build_static_index
from rt_connections.static.source import GtfsSource

SERVICE_DATE = "20240101"
MIDNIGHT = 1704067200  # 2024-01-01T00:00:00Z
SNAPSHOT = MIDNIGHT + 7 * 3600  # 07:00, before every departure


def at(gtfs_time: str) -> int:
    """Epoch seconds of a GTFS time on the test service day."""
    return MIDNIGHT + parse_gtfs_duration(gtfs_time)


def _stop_times(trip_id, first_departure, stops, drop_off=None):
    rows = []
    start = parse_gtfs_duration(first_departure)
    for i, stop_id in enumerate(stops):
        departure = start + i * 300
        arrival = departure - 60 if i > 0 else departure
        drop_off_type = (drop_off or {}).get(stop_id, "0")
        rows.append(
            f"{trip_id},{format_gtfs_duration(arrival)},{format_gtfs_duration(departure)},"
            f"{stop_id},{i + 1},0,{drop_off_type}"
        )
    return rows


STOPS = ["S1", "S2", "S3", "S4", "S5"]

GTFS_FILES = {
    "routes.txt": [
        "route_id,route_short_name,route_long_name,route_type",
        "R1,IC,Brussels--Ghent,2",
    ],
    "trips.txt": [
        "route_id,service_id,trip_id,trip_headsign,trip_short_name,direction_id",
        "R1,WEEKDAY,T1,Ghent,1001,0",
        "R1,WEEKDAY,T2,Ghent,1003,0",
        "R1,WEEKDAY,T3,Brussels,1002,1",
        "R1,WEEKEND,T4,Ghent,1005,0",
        "R1,WEEKDAY,T5,Ghent,1007,0",
    ],
    "stops.txt": ["stop_id,stop_name,stop_lat,stop_lon"] + [
        f"{s},Station {s[1]},51.0{i},3.7{i}" for i, s in enumerate(STOPS)
    ],
    "stop_times.txt": (
        ["trip_id,arrival_time,departure_time,stop_id,stop_sequence,pickup_type,drop_off_type"]
        + _stop_times("T1", "08:00:00", STOPS, drop_off={"S4": "2"})
        + _stop_times("T2", "09:00:00", STOPS)
        + _stop_times("T3", "08:00:00", list(reversed(STOPS)))
        + _stop_times("T4", "08:00:00", STOPS)
        + _stop_times("T5", "24:30:00", STOPS)
    ),
    "calendar.txt": [
        "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date",
        "WEEKDAY,1,1,1,1,1,0,0,20240101,20241231",
        "WEEKEND,0,0,0,0,0,1,1,20240101,20241231",
    ],
    "calendar_dates.txt": [
        "service_id,date,exception_type",
        "WEEKDAY,20240102,2",
        "WEEKEND,20240103,1",
    ],
}


def write_gtfs(directory: Path, files=None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, lines in (files or GTFS_FILES).items():
        (directory / name).write_text("\n".join(lines) + "\n", encoding="utf-8")
    return directory


@pytest.fixture
def static_dir(tmp_path):
    return write_gtfs(tmp_path / "gtfs")


@pytest.fixture
def static_index(static_dir):
    with GtfsSource(str(static_dir), progress=False) as source:
        index = build_static_index(source, deduce=True)
    yield index
    index.close()


@pytest.fixture
def service_day():
    return ServiceDay.from_gtfs(SERVICE_DATE)


@pytest.fixture
def t1_stops(static_index):
    return static_index.get_stop_times("T1")


@pytest.fixture
def make_event():
    """Factory for TripUpdateEvent with sensible defaults for trip T1."""

    def _make(stop_updates=(), **kwargs):
        params = dict(
            entity_id="e1",
            trip_id="T1",
            route_id="R1",
            start_time="08:00:00",
            start_date=SERVICE_DATE,
            timestamp=SNAPSHOT,
        )
        params.update(kwargs)
        return TripUpdateEvent(stop_time_updates=list(stop_updates), **params)

    return _make


def stop_update(stop_id=None, sequence=None, arrival=None, departure=None, relationship=None):
    """StopTimeUpdate from (delay, time) tuples."""
    return StopTimeUpdate(
        stop_id=stop_id,
        stop_sequence=sequence,
        arrival=StopTimeEvent(*arrival) if arrival is not None else None,
        departure=StopTimeEvent(*departure) if departure is not None else None,
        schedule_relationship=relationship,
    )


@pytest.fixture
def feed_message():
    """A FeedMessage with one trip update for T1 (delay 120s at S3) and one vehicle."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = SNAPSHOT

    entity = feed.entity.add()
    entity.id = "e1"
    trip = entity.trip_update.trip
    trip.trip_id = "T1"
    trip.route_id = "R1"
    trip.start_time = "08:00:00"
    trip.start_date = SERVICE_DATE
    update = entity.trip_update.stop_time_update.add()
    update.stop_id = "S3"
    update.stop_sequence = 3
    update.departure.delay = 120

    vehicle = feed.entity.add()
    vehicle.id = "v1"
    vehicle.vehicle.trip.trip_id = "T1"
    vehicle.vehicle.stop_id = "S2"
    return feed
