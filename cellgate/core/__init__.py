"""Core utilities for the limiter."""

from cellgate.core.clock import Clock, ManualClock, SystemClock
from cellgate.core.config import Settings, settings
from cellgate.core.logging import get_logger, setup_logging

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
