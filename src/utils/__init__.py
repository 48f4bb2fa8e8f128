"""Utility modules for the SEO Data Accuracy Engine."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
