"""
Configuration management for the compound staking agent.

Loads and validates settings from environment variables and an optional
.env file. Exposes a single Settings value for the whole process.
"""

from compound_stake.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
