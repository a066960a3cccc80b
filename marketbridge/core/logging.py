"""Logging setup for the app process."""
import logging

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level.upper(), logging.INFO),
    )
