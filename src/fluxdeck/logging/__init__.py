"""Logging configuration for fluxdeck."""

from fluxdeck.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
