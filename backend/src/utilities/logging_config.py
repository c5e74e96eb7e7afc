"""Logging configuration for the service."""

import logging
import sys

from .config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure root logging: DEBUG when settings.debug is set, otherwise INFO, to stdout."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
