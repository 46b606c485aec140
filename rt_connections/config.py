"""
Configuration for the GTFS-RT to Linked Connections converter

Settings are read from the environment (a local .env file is loaded
first if present). Command-line flags override whatever is set here.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from rt_connections.errors import ConfigError

OUTPUT_FORMATS = ("json", "jsonld", "csv", "ntriples", "turtle")
LEADING_STOP_MODES = ("scheduled", "seed")


@dataclass
class Config:
    """Configuration for a conversion run."""

    # Sources
    static_path: Optional[str] = None
    feed_path: Optional[str] = None
    uris_template_path: Optional[str] = None

    # Output
    output_format: str = "json"

    # Index storage
    store_kind: str = "MemStore"
    store_path: str = ".rt_connections_index.sqlite"
    history_path: Optional[str] = None

    # Reconciliation
    timezone: Optional[str] = None
    leading_stops: str = "scheduled"

    # I/O
    request_timeout_seconds: int = 30
    queue_size: int = 1000
    log_level: str = "INFO"

    def __post_init__(self):
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"Unknown output format {self.output_format!r}, choose from {', '.join(OUTPUT_FORMATS)}"
            )
        if self.leading_stops not in LEADING_STOP_MODES:
            raise ConfigError(
                f"Unknown leading stops mode {self.leading_stops!r}, choose from {', '.join(LEADING_STOP_MODES)}"
            )
        if self.queue_size < 1:
            raise ConfigError("QUEUE_SIZE must be at least 1")

    @classmethod
    def from_environment(cls) -> "Config":
        """Create configuration from environment variables."""
        load_dotenv()
        try:
            return cls(
                static_path=os.environ.get("GTFS_STATIC"),
                feed_path=os.environ.get("GTFSRT_FEED"),
                uris_template_path=os.environ.get("URIS_TEMPLATE"),
                output_format=os.environ.get("OUTPUT_FORMAT", "json"),
                store_kind=os.environ.get("STORE_KIND", "MemStore"),
                store_path=os.environ.get("STORE_PATH", ".rt_connections_index.sqlite"),
                history_path=os.environ.get("HISTORY_PATH"),
                timezone=os.environ.get("GTFS_TIMEZONE"),
                leading_stops=os.environ.get("LEADING_STOPS", "scheduled"),
                request_timeout_seconds=int(os.environ.get("REQUEST_TIMEOUT", "30")),
                queue_size=int(os.environ.get("QUEUE_SIZE", "1000")),
                log_level=os.environ.get("LOG_LEVEL", "INFO"),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting in environment: {e}") from e


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global configuration."""
    global _config
    if _config is None:
        _config = Config.from_environment()
    return _config


def reset_config():
    global _config
    _config = None
