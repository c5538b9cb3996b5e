"""Runtime lifecycle helpers."""

from .app_context import AppContext
from .logging import LogSettings, bootstrap_logging

__all__ = ["AppContext", "LogSettings", "bootstrap_logging"]
