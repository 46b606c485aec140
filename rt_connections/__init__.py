"""
rt_connections

Reconciles a static GTFS schedule with a GTFS-RT TripUpdates feed and
emits Linked Connections (hop-to-hop departure/arrival pairs enriched
with delays, URIs and pickup/drop-off policy).
"""

__version__ = "0.1.0"
