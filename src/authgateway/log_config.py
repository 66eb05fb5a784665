"""Logging setup for the CLI and host applications."""

import logging
import sys


def configure_logging(level: str = "WARNING") -> None:
    """Configure root logging with the gateway's default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


__all__ = ["configure_logging"]
