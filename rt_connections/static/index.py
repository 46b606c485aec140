"""
Static GTFS indexes.

Builds read-only lookups from one static snapshot:

  routes          route_id   -> route row
  trips           trip_id    -> trip row
  stops           stop_id    -> stop row
  stop_times      trip_id    -> [stop time rows], ordered by stop_sequence
  calendar        service_id -> calendar row
  calendar_dates  service_id -> {YYYYMMDD: exception_type}
  trips_by_route  route_id   -> [trip_id]            (only when deducing trips)
  first_departure trip_id    -> first departure_time

Indexes are rebuilt wholesale for every run; nothing is updated in place.
"""

import logging
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from rt_connections.errors import MissingStaticFile
from rt_connections.engine.times import format_gtfs_duration, parse_gtfs_duration
from rt_connections.static.source import GtfsSource
from rt_connections.static.stores import KeyValueStore, open_store

logger = logging.getLogger(__name__)

REQUIRED_FILES = ("routes.txt", "trips.txt", "stops.txt", "stop_times.txt")
CALENDAR_FILES = ("calendar.txt", "calendar_dates.txt")

STOP_TIME_FIELDS = [
    "trip_id", "stop_id", "stop_sequence", "arrival_time", "departure_time",
    "pickup_type", "drop_off_type",
]

INDEX_NAMES = (
    "routes", "trips", "stops", "stop_times", "calendar",
    "calendar_dates", "trips_by_route", "first_departure",
)


class StaticIndex:
    """Read-only view over the static stores. All lookups return None when absent."""

    def __init__(
        self,
        stores: Dict[str, KeyValueStore],
        timezone: Optional[str] = None,
        has_calendar: bool = False,
    ):
        missing = [name for name in INDEX_NAMES if name not in stores]
        if missing:
            raise ValueError(f"Missing index stores: {missing}")
        self._stores = stores
        self.timezone = timezone
        self.has_calendar = has_calendar

    def get_route(self, route_id: str) -> Optional[dict]:
        return self._stores["routes"].get(route_id)

    def get_trip(self, trip_id: str) -> Optional[dict]:
        return self._stores["trips"].get(trip_id)

    def get_stop(self, stop_id: str) -> Optional[dict]:
        return self._stores["stops"].get(stop_id)

    def get_stop_times(self, trip_id: str) -> Optional[List[dict]]:
        return self._stores["stop_times"].get(trip_id)

    def get_calendar(self, service_id: str) -> Optional[dict]:
        return self._stores["calendar"].get(service_id)

    def get_calendar_exceptions(self, service_id: str) -> Dict[str, int]:
        return self._stores["calendar_dates"].get(service_id) or {}

    def trips_for_route(self, route_id: str) -> Optional[List[str]]:
        return self._stores["trips_by_route"].get(route_id)

    def first_departure(self, trip_id: str) -> Optional[str]:
        return self._stores["first_departure"].get(trip_id)

    def size(self, name: str) -> int:
        return len(self._stores[name])

    def close(self):
        for store in self._stores.values():
            store.close()


# ---------- building ----------

def _valid_rows(df: pd.DataFrame, key: str, filename: str) -> pd.DataFrame:
    """Drop rows whose primary key is missing or blank."""
    if df.empty:
        return df
    if key not in df.columns:
        logger.warning(f"{filename} has no '{key}' column, all {len(df)} rows skipped")
        return df.iloc[0:0]
    valid = df[df[key].str.strip() != ""]
    skipped = len(df) - len(valid)
    if skipped:
        logger.warning(f"Skipped {skipped} malformed row(s) in {filename} (missing {key})")
    return valid


def _records(df: pd.DataFrame) -> List[dict]:
    return df.to_dict("records") if not df.empty else []


def _seconds_or_nan(value: str) -> float:
    try:
        return float(parse_gtfs_duration(value))
    except ValueError:
        return np.nan


def normalize_stop_times(df: pd.DataFrame) -> pd.DataFrame:
    """Order stop times per trip and make sure every row has both times.

    A missing arrival takes the departure and vice versa. Rows with
    neither (non-timepoint stops) are linearly interpolated between the
    surrounding timepoints of the same trip.
    """
    df = _valid_rows(df, "trip_id", "stop_times.txt")
    df = _valid_rows(df, "stop_id", "stop_times.txt")
    if df.empty:
        return df

    df = df.copy()
    for col in STOP_TIME_FIELDS:
        if col not in df.columns:
            df[col] = ""

    df["stop_sequence"] = pd.to_numeric(df["stop_sequence"], errors="coerce")
    bad_sequence = df["stop_sequence"].isna()
    if bad_sequence.any():
        logger.warning(f"Skipped {int(bad_sequence.sum())} stop time(s) with invalid stop_sequence")
        df = df[~bad_sequence]
    df["stop_sequence"] = df["stop_sequence"].astype(int)

    df = df.sort_values(["trip_id", "stop_sequence"], kind="stable")

    arr = df["arrival_time"].str.strip()
    dep = df["departure_time"].str.strip()
    df["arrival_time"] = arr.where(arr != "", dep)
    df["departure_time"] = dep.where(dep != "", arr)

    blank = df["arrival_time"] == ""
    if blank.any():
        seconds = df["arrival_time"].map(_seconds_or_nan)
        filled = seconds.groupby(df["trip_id"]).transform(
            lambda s: s.interpolate(limit_area="inside")
        )
        interpolated = blank & filled.notna()
        as_text = filled[interpolated].map(lambda s: format_gtfs_duration(round(s)))
        df.loc[interpolated, "arrival_time"] = as_text
        df.loc[interpolated, "departure_time"] = as_text
        logger.info(f"Interpolated {int(interpolated.sum())} non-timepoint stop time(s)")

    return df[STOP_TIME_FIELDS]


def _group_stop_times(df: pd.DataFrame) -> Iterable:
    for trip_id, group in df.groupby("trip_id", sort=False):
        rows = [
            {
                "trip_id": r.trip_id,
                "stop_id": r.stop_id,
                "stop_sequence": int(r.stop_sequence),
                "arrival_time": r.arrival_time,
                "departure_time": r.departure_time,
                "pickup_type": r.pickup_type,
                "drop_off_type": r.drop_off_type,
            }
            for r in group.itertuples(index=False)
        ]
        yield trip_id, rows


def _calendar_exceptions(df: pd.DataFrame) -> Dict[str, Dict[str, int]]:
    exceptions: Dict[str, Dict[str, int]] = {}
    for row in df.itertuples(index=False):
        try:
            exception_type = int(row.exception_type)
            day = str(row.date).strip()
        except (AttributeError, ValueError):
            continue
        exceptions.setdefault(row.service_id, {})[day] = exception_type
    return exceptions


def build_static_index(
    source: GtfsSource,
    store_kind: str = "MemStore",
    store_path: Optional[str] = None,
    trip_ids: Optional[Iterable[str]] = None,
    deduce: bool = False,
) -> StaticIndex:
    """Read the tables of an opened GtfsSource into a StaticIndex.

    Args:
        source: An opened GtfsSource.
        store_kind: MemStore or DiskStore (LevelStore is accepted as an alias).
        store_path: SQLite file for on-disk stores.
        trip_ids: Only index these trips (ignored when deducing trip identities).
        deduce: Also build the indexes needed to identify trips without a trip_id.

    Raises:
        MissingStaticFile: A required table, or the calendar when deducing, is absent.
    """
    for name in REQUIRED_FILES:
        if not source.has_table(name):
            raise MissingStaticFile(name)
    has_calendar = any(source.has_table(name) for name in CALENDAR_FILES)
    if deduce and not has_calendar:
        raise MissingStaticFile("calendar.txt/calendar_dates.txt")

    stores = {name: open_store(store_kind, store_path, table=name) for name in INDEX_NAMES}
    for store in stores.values():
        store.clear()

    trip_filter = None
    if trip_ids is not None and not deduce:
        trip_filter = set(trip_ids)
        logger.info(f"Indexing only {len(trip_filter)} trip(s) present in the live feed")

    # --- routes / stops ---
    routes = _valid_rows(source.read_table("routes.txt"), "route_id", "routes.txt")
    stores["routes"].put_many((r["route_id"], r) for r in _records(routes))

    stops = _valid_rows(source.read_table("stops.txt"), "stop_id", "stops.txt")
    stores["stops"].put_many((s["stop_id"], s) for s in _records(stops))

    # --- trips ---
    trips = _valid_rows(source.read_table("trips.txt"), "trip_id", "trips.txt")
    if trip_filter is not None and not trips.empty:
        trips = trips[trips["trip_id"].isin(trip_filter)]
    stores["trips"].put_many((t["trip_id"], t) for t in _records(trips))

    if deduce and not trips.empty and "route_id" in trips.columns:
        by_route = trips.groupby("route_id", sort=False)["trip_id"].apply(list)
        stores["trips_by_route"].put_many(by_route.items())

    # --- stop_times ---
    stop_times = source.read_table("stop_times.txt")
    if trip_filter is not None and not stop_times.empty and "trip_id" in stop_times.columns:
        stop_times = stop_times[stop_times["trip_id"].isin(trip_filter)]
    stop_times = normalize_stop_times(stop_times)
    if not stop_times.empty:
        grouped = list(_group_stop_times(stop_times))
        stores["stop_times"].put_many(grouped)
        stores["first_departure"].put_many(
            (trip_id, rows[0]["departure_time"]) for trip_id, rows in grouped
        )

    # --- calendar ---
    calendar = source.read_table("calendar.txt")
    if calendar is not None:
        calendar = _valid_rows(calendar, "service_id", "calendar.txt")
        stores["calendar"].put_many((c["service_id"], c) for c in _records(calendar))

    calendar_dates = source.read_table("calendar_dates.txt")
    if calendar_dates is not None:
        calendar_dates = _valid_rows(calendar_dates, "service_id", "calendar_dates.txt")
        if not calendar_dates.empty:
            stores["calendar_dates"].put_many(_calendar_exceptions(calendar_dates).items())

    # --- agency timezone ---
    timezone = None
    agency = source.read_table("agency.txt")
    if agency is not None and not agency.empty and "agency_timezone" in agency.columns:
        timezone = agency["agency_timezone"].iloc[0].strip() or None

    index = StaticIndex(stores, timezone=timezone, has_calendar=has_calendar)
    logger.info(
        f"Indexed {index.size('routes')} routes, {index.size('trips')} trips, "
        f"{index.size('stops')} stops, {index.size('stop_times')} stop time sequences"
    )
    return index
