"""
Exception hierarchy.

Three families:
  - fatal:     bad static source, missing static files, unknown store kind, bad config
  - upstream:  the live feed could not be fetched or decoded
  - per-trip:  a single trip update could not be reconciled (logged, skipped)
"""


class RtConnectionsError(Exception):
    """Base class for every error raised by this package."""


# ---------- fatal ----------

class ConfigError(RtConnectionsError):
    pass


class StaticSourceError(RtConnectionsError):
    """The static GTFS path/URL is invalid or the archive is unreadable."""


class MissingStaticFile(StaticSourceError):
    def __init__(self, filename: str):
        super().__init__(f"Required GTFS file missing from static source: {filename}")
        self.filename = filename


class UnsupportedStoreError(RtConnectionsError):
    def __init__(self, kind: str):
        super().__init__(f"Unsupported store kind: {kind!r} (use MemStore or DiskStore)")
        self.kind = kind


# ---------- upstream ----------

class FeedFetchError(RtConnectionsError):
    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class FeedDecodeError(RtConnectionsError):
    pass


# ---------- per-trip ----------

class TripReconciliationError(RtConnectionsError):
    """Recoverable: the trip update is dropped, the batch continues."""


class TripNotFound(TripReconciliationError):
    def __init__(self, trip_id: str):
        super().__init__(f"No data found in GTFS source for trip: {trip_id}")
        self.trip_id = trip_id


class InsufficientStopTimes(TripReconciliationError):
    def __init__(self, trip_id: str, count: int):
        super().__init__(f"Trip {trip_id} has {count} stop time(s), at least 2 are needed")
        self.trip_id = trip_id


class NoTripsForRoute(TripReconciliationError):
    def __init__(self, route_id: str):
        super().__init__(f"No trips indexed for route: {route_id}")
        self.route_id = route_id


class TripIdentityNotFound(TripReconciliationError):
    pass
