"""Tests for the stop update aligner."""
import pytest

from conftest import SNAPSHOT, at, stop_update
from rt_connections.engine.aligner import StopUpdateAligner
from rt_connections.realtime.models import StopTimeEvent


@pytest.fixture
def aligner():
    return StopUpdateAligner()


def _delays(completed):
    return [
        (
            u.stop_id,
            u.arrival.delay if u.arrival else None,
            u.departure.delay if u.departure else None,
        )
        for u in completed
    ]


def assert_chronological(completed):
    for u in completed:
        if u.arrival and u.departure:
            assert u.arrival.time <= u.departure.time, u.stop_id
    for a, b in zip(completed, list(completed)[1:]):
        assert a.departure.time <= b.arrival.time, (a.stop_id, b.stop_id)


class TestAlign:

    def test_single_update_mid_trip(self, aligner, t1_stops, service_day):
        live = [stop_update("S3", departure=(120, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert _delays(completed) == [
            ("S1", None, 0),
            ("S2", 0, 0),
            ("S3", 0, 120),
            ("S4", 120, 120),
            ("S5", 120, None),
        ]
        assert completed[2].departure.time == at("08:12:00")
        assert completed[4].arrival.time == at("08:21:00")

    def test_gap_inherits_previous_departure_delay(self, aligner, t1_stops, service_day):
        live = [
            stop_update("S2", departure=(60, None)),
            stop_update("S4", arrival=(180, None)),
        ]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        s3 = completed[2]
        assert s3.stop_id == "S3"
        assert s3.arrival.delay == completed[1].departure.delay == 60
        assert s3.departure.delay == 60
        assert s3.arrival.time == at("08:10:00")

    def test_static_positions_recorded(self, aligner, t1_stops, service_day):
        live = [stop_update("S3", departure=(120, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert [u.static_index for u in completed] == [0, 1, 2, 3, 4]
        assert [u.live for u in completed] == [False, False, True, False, False]

    def test_stop_outside_static_trip_is_skipped(self, aligner, t1_stops, service_day):
        # e.g. the other half of a train that splits
        live = [
            stop_update("X9", departure=(900, None)),
            stop_update("S3", departure=(120, None)),
        ]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert [u.stop_id for u in completed] == ["S1", "S2", "S3", "S4", "S5"]
        assert completed[2].departure.delay == 120

    def test_update_for_passed_stop_is_skipped(self, aligner, t1_stops, service_day):
        live = [
            stop_update("S3", departure=(120, None)),
            stop_update("S2", departure=(600, None)),
        ]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert _delays(completed)[3:] == [("S4", 120, 120), ("S5", 120, None)]

    def test_update_without_stop_reference_is_skipped(self, aligner, t1_stops, service_day):
        live = [stop_update(departure=(900, None)), stop_update("S3", departure=(120, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert completed[2].departure.delay == 120

    def test_stop_sequence_wins_over_stop_id(self, aligner, t1_stops, service_day):
        live = [stop_update("S1", sequence=3, departure=(120, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert completed[2].stop_id == "S1"
        assert completed[2].departure.delay == 120

    def test_loop_route_resolved_by_sequence(self, aligner, service_day):
        loop = [
            {"stop_id": "A", "stop_sequence": 1, "arrival_time": "08:00:00", "departure_time": "08:00:00"},
            {"stop_id": "B", "stop_sequence": 2, "arrival_time": "08:05:00", "departure_time": "08:06:00"},
            {"stop_id": "A", "stop_sequence": 3, "arrival_time": "08:10:00", "departure_time": "08:11:00"},
            {"stop_id": "C", "stop_sequence": 4, "arrival_time": "08:15:00", "departure_time": "08:15:00"},
        ]
        live = [stop_update("A", sequence=3, arrival=(60, None))]
        completed = aligner.align(loop, live, service_day, SNAPSHOT)
        assert _delays(completed) == [("A", None, 0), ("B", 0, 0), ("A", 60, 60), ("C", 60, None)]

    def test_no_live_updates(self, aligner, t1_stops, service_day):
        assert len(aligner.align(t1_stops, [], service_day, SNAPSHOT)) == 0

    def test_update_on_first_stop_propagates_to_the_end(self, aligner, t1_stops, service_day):
        live = [stop_update("S1", departure=(240, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert _delays(completed) == [
            ("S1", None, 240), ("S2", 240, 240), ("S3", 240, 240), ("S4", 240, 240), ("S5", 240, None)
        ]

    def test_messy_feed_stays_chronological(self, aligner, t1_stops, service_day):
        live = [
            stop_update("S2", departure=(300, None)),
            stop_update("S3", arrival=(0, None)),
            stop_update("S4", arrival=(None, at("08:13:00"))),
        ]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert len(completed) == 5
        assert_chronological(completed)

    def test_feed_events_are_not_mutated(self, aligner, t1_stops, service_day):
        update = stop_update("S3", departure=(120, None))
        aligner.align(t1_stops, [update], service_day, SNAPSHOT)
        assert update.departure == StopTimeEvent(120, None)
        assert update.arrival is None


class TestLeadingStops:

    def test_seed_mode_adds_only_the_preceding_stop(self, t1_stops, service_day):
        aligner = StopUpdateAligner(leading_stops="seed")
        live = [stop_update("S3", arrival=(60, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert _delays(completed) == [("S2", None, 0), ("S3", 60, 60), ("S4", 60, 60), ("S5", 60, None)]

    def test_seed_mode_needs_arrival_info(self, t1_stops, service_day):
        aligner = StopUpdateAligner(leading_stops="seed")
        live = [stop_update("S3", departure=(60, None))]
        completed = aligner.align(t1_stops, live, service_day, SNAPSHOT)
        assert [u.stop_id for u in completed] == ["S3", "S4", "S5"]

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            StopUpdateAligner(leading_stops="guess")


def test_schedule_only(aligner, t1_stops, service_day):
    completed = aligner.schedule_only(t1_stops, service_day, SNAPSHOT)
    assert _delays(completed) == [
        ("S1", None, 0), ("S2", 0, 0), ("S3", 0, 0), ("S4", 0, 0), ("S5", 0, None)
    ]


def test_amend_previous_patches_the_last_update(aligner, t1_stops, service_day):
    # S3 already departed on time, S2 was predicted 5 minutes late
    live = [
        stop_update("S2", departure=(300, None)),
        stop_update("S3", departure=(0, None)),
    ]
    completed = aligner.align(t1_stops, live, service_day, at("08:30:00"))
    assert completed[1].departure == StopTimeEvent(0, at("08:05:00"))
    assert completed[2].arrival == StopTimeEvent(0, at("08:09:00"))
    assert_chronological(completed)
