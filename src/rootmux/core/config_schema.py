"""Pydantic models for rootmux config files."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_ADDRESS = "ws://localhost:4288"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None
    dev_file: Optional[bool] = Field(None, alias="devFile")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class BootstrapConfig(BaseModel):
    """Per-connection workspace bootstrap.

    When ``archive_url`` is set, every new session asks the language server
    to extract that archive as its workspace. ``{root}`` in the URL is
    replaced with the workspace root URI.
    """
    archive_url: Optional[str] = Field(None, alias="archiveUrl")
    replace: bool = True

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PreloadConfig(BaseModel):
    """Bulk document pre-load performed when a root appears."""
    enabled: bool = False
    extension: str = ".py"
    exclude: str = "__init__.py"

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Config(BaseModel):
    """Main configuration schema."""
    schema_: Optional[str] = Field(None, alias="$schema")
    log_level: Optional[str] = Field(None, alias="logLevel")
    logging: Optional[LoggingConfig] = None

    address: str = DEFAULT_ADDRESS
    connect_timeout: float = Field(30.0, alias="connectTimeout", gt=0)
    request_timeout: Optional[float] = Field(None, alias="requestTimeout", gt=0)

    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    preload: PreloadConfig = Field(default_factory=PreloadConfig)

    # Sent verbatim as workspace/didChangeConfiguration settings
    python: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def language_settings(self) -> Dict[str, Any]:
        """Settings payload for the language server.

        The server only starts pre-parsing once it sees a ``python`` key, so
        an empty section still produces ``{"python": {}}``.
        """
        if self.python:
            return self.python
        return {"python": {}}
