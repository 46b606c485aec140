"""Tests for the differential connection filter."""
import dataclasses

import pytest

from rt_connections.engine.connections import CANCELLED_CONNECTION, Connection
from rt_connections.engine.history import DifferentialFilter, connection_signature
from rt_connections.static.stores import MemStore, SqliteStore

ROUTE = {"route_id": "R1", "route_short_name": "IC"}
TRIP = {"trip_id": "T1", "trip_short_name": "1001"}


@pytest.fixture
def connection():
    return Connection(
        type="Connection",
        trip_id="T1",
        route_id="R1",
        departure_stop="S3",
        arrival_stop="S4",
        departure_time=1704096720,
        arrival_time=1704096960,
        departure_delay=120,
        arrival_delay=120,
        headsign="Ghent",
        pickup_type="gtfs:Regular",
        drop_off_type="gtfs:MustPhone",
        scheduled_departure_time="08:10:00",
        scheduled_arrival_time="08:14:00",
    )


def test_signature(connection):
    assert connection_signature(connection, ROUTE, TRIP, "08:00:00") == (
        "IC/1001/S3/S4/08:10:00/08:14:00/gtfs:Regular/gtfs:MustPhone/08:00:00"
    )


def test_signature_falls_back_to_route_id(connection):
    assert connection_signature(connection, {"route_id": "R1"}, {}, "08:00:00").startswith("R1//S3/S4")


class TestDifferentialFilter:

    def test_unchanged_connection_suppressed(self, connection):
        history = DifferentialFilter(MemStore())
        assert history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        assert not history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")

    def test_changed_delay_emitted_again(self, connection):
        history = DifferentialFilter(MemStore())
        history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        later = dataclasses.replace(connection, arrival_delay=180, arrival_time=connection.arrival_time + 60)
        assert history.is_new(later, ROUTE, TRIP, "08:00:00", "20240101")
        assert not history.is_new(later, ROUTE, TRIP, "08:00:00", "20240101")

    def test_cancellation_emitted_again(self, connection):
        history = DifferentialFilter(MemStore())
        history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        cancelled = dataclasses.replace(connection, type=CANCELLED_CONNECTION)
        assert history.is_new(cancelled, ROUTE, TRIP, "08:00:00", "20240101")

    def test_service_dates_tracked_separately(self, connection):
        history = DifferentialFilter(MemStore())
        assert history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        assert history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240102")
        assert not history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")

    def test_survives_reopening(self, connection, tmp_path):
        path = str(tmp_path / "history.db")
        history = DifferentialFilter(SqliteStore(path, table="history"))
        assert history.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        history.close()

        reopened = DifferentialFilter(SqliteStore(path, table="history"))
        try:
            assert not reopened.is_new(connection, ROUTE, TRIP, "08:00:00", "20240101")
        finally:
            reopened.close()
