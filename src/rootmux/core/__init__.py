"""Core infrastructure modules."""

from .global_paths import GlobalPath
from .bus import Bus, BusEvent, EventPayload

__all__ = ["GlobalPath", "Bus", "BusEvent", "EventPayload"]

# Log is exported separately from util to avoid circular imports
# To use: from rootmux.util.log import Log
