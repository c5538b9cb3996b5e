"""Per-user directories for rootmux (config files and logs)."""

import os
from pathlib import Path
from platformdirs import user_config_dir, user_data_dir

APP_NAME = "rootmux"


class GlobalPath:
    """Global path management for rootmux directories.

    ``ROOTMUX_TEST_HOME`` redirects every directory under a scratch home,
    which keeps tests away from the real user profile.
    """

    @classmethod
    def _override(cls) -> Path | None:
        home = os.environ.get("ROOTMUX_TEST_HOME")
        return Path(home) if home else None

    @classmethod
    def data(cls) -> str:
        """Application data directory."""
        home = cls._override()
        if home is not None:
            return str(home / "data")
        return user_data_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        """Log file directory."""
        return str(Path(cls.data()) / "log")

    @classmethod
    def config(cls) -> str:
        """Configuration directory."""
        home = cls._override()
        if home is not None:
            return str(home / "config")
        return user_config_dir(APP_NAME)
