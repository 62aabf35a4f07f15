"""
Structured logging for compound_stake.

JSON logs with timestamp, event_type, and account / signature context.
"""

from compound_stake.logging.logger import configure_structlog, current_settings, get_logger

__all__ = ["configure_structlog", "current_settings", "get_logger"]
