"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from shared.logging import get_logger, setup_logging

    # Setup at application start
    setup_logging()

    # Get logger for a module
    logger = get_logger(__name__)

    # Log with context
    logger.info("source_checked", source_id="123", outcome="unchanged")
    logger.error("fetch_failed", error=str(e), url=url)
"""

from shared.logging.logger import (
    bind_context,
    bound_context,
    clear_context,
    get_logger,
    setup_logging,
)


__all__ = [
    "get_logger",
    "setup_logging",
    "bind_context",
    "bound_context",
    "clear_context",
]
