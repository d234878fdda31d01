"""Configuration module for earshot."""

from .settings import (
    DatabaseSettings,
    PollingSettings,
    SecuritySettings,
    Settings,
    SpotifySettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "PollingSettings",
    "SecuritySettings",
    "Settings",
    "SpotifySettings",
    "get_settings",
]
