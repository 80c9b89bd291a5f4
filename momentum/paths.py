from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "Momentum"
DATA_DIR_ENV = "MOMENTUM_DATA_DIR"


def data_directory() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()

    local_appdata = os.environ.get("LOCALAPPDATA")
    if local_appdata:
        return Path(local_appdata) / APP_DIR_NAME
    if sys.platform == "win32":
        return Path.home() / "AppData" / "Local" / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME.lower()


def database_path(base: Path | None = None) -> Path:
    return (base or data_directory()) / "momentum.sqlite3"


def ensure_directories(base: Path | None = None) -> Path:
    directory = base or data_directory()
    directory.mkdir(parents=True, exist_ok=True)
    return directory
