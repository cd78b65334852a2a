"""Configuration package for the overlap tracker.

Re-exports the settings symbols so that callers can write::

    from overlap_tracker.config import get_settings
"""

from __future__ import annotations

from overlap_tracker.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
