"""
Logging utilities for the FastAPI application and the scheduler pump.

Provides a consistent logging format and configuration.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    normalized = level.upper()
    logging.basicConfig(
        level=normalized,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs every request at INFO.
    if normalized != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
