"""Configuration module for the leave migrator."""

from leave_migrator.config.logging import bind_run_context, configure_logging
from leave_migrator.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "get_settings",
    "configure_logging",
    "bind_run_context",
]
