"""Configuration package."""

from finlink.config.settings import (
    AppSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    PlaidSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "PlaidSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
