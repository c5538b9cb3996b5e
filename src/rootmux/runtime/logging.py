"""Runtime logging bootstrap helpers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Literal, Optional, TypeVar

from ..core.config import ConfigManager, LoggingConfig
from ..util.log import Log, LogFormat, LogLevel

# "cli": one-shot commands, logs only go to the file unless --verbose.
# "embedded": hosted inside another process that collects stderr.
LogMode = Literal["cli", "embedded"]

V = TypeVar("V")


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    file: bool
    dev_file: bool


def _first(*values: Optional[V]) -> Optional[V]:
    return next((v for v in values if v is not None), None)


async def _resolve(
    *,
    mode: LogMode,
    level: Optional[str],
    format: Optional[str],
    console: Optional[bool],
    file: Optional[bool],
) -> LogSettings:
    cfg = await ConfigManager.get()
    section = cfg.logging or LoggingConfig()

    return LogSettings(
        level=LogLevel.parse(_first(level, section.level, cfg.log_level)),
        format=LogFormat.parse(_first(format, section.format)),
        console=bool(_first(console, section.console, mode == "embedded")),
        file=bool(_first(file, section.file, True)),
        dev_file=bool(section.dev_file),
    )


def bootstrap_logging(
    *,
    mode: LogMode,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
) -> LogSettings:
    """Resolve config and initialize the process logger.

    Explicit arguments win over the ``logging`` config section, which wins
    over the top-level ``logLevel`` and the per-mode defaults.
    """
    settings = asyncio.run(
        _resolve(
            mode=mode,
            level=level,
            format=format,
            console=console,
            file=file,
        )
    )
    Log.configure(
        level=settings.level,
        format=settings.format,
        console=settings.console,
        file=settings.file,
        dev=settings.dev_file,
    )
    return settings
