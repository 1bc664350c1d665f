"""Core utilities for configuration, logging, and shared models."""

from .config import AccountSettings, AppSettings, SyncSettings, load_app_settings
from .logging import configure_logging

__all__ = [
    "AccountSettings",
    "AppSettings",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
]
