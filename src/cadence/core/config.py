from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir

APP_NAME = "Cadence"
APP_AUTHOR = "Cadence"
DATA_DIR = Path(os.getenv("CADENCE_DATA_DIR") or user_data_dir(APP_NAME, APP_AUTHOR))


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
