"""Logging helpers shared by the command-line tools."""
import logging
import sys
from datetime import datetime

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Configure root logging on stderr.

    stdout is reserved for serialized connections, so every handler
    installed here writes to stderr.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The package logger
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    logger = logging.getLogger("rt_connections")
    logger.setLevel(level)
    return logger


def log_run_start(logger: logging.Logger, name: str, **kwargs):
    """Log a banner with the run parameters."""
    logger.info("=" * 60)
    logger.info(f"Starting {name}")
    logger.info(f"Timestamp: {datetime.now().isoformat()}")
    for key, value in kwargs.items():
        logger.info(f"  {key}: {value}")
    logger.info("=" * 60)


def log_run_end(logger: logging.Logger, name: str, elapsed_seconds: float, success: bool = True):
    status = "SUCCESS" if success else "FAILURE"
    logger.info(f"{name} completed: {status} ({elapsed_seconds * 1000:.0f} ms)")
