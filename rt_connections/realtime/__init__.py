from rt_connections.realtime.feed import FeedSource, decode_feed, feed_to_dict, updated_trip_ids
from rt_connections.realtime.models import FeedSnapshot, StopTimeEvent, StopTimeUpdate, TripUpdateEvent

__all__ = [
    "FeedSnapshot",
    "FeedSource",
    "StopTimeEvent",
    "StopTimeUpdate",
    "TripUpdateEvent",
    "decode_feed",
    "feed_to_dict",
    "updated_trip_ids",
]
