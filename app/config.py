from __future__ import annotations

import copy
import datetime
import os
from pathlib import Path
from typing import Any, Dict


DATA_DIR = Path(os.environ.get("SHIFTBOARD_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get("SHIFTBOARD_DATABASE_URL") or f"sqlite:///{(DATA_DIR / 'shifts.db').as_posix()}"
HOLIDAYS_FILE = DATA_DIR / "holidays.json"
EXPORT_DIR = DATA_DIR / "exports"

# Timeline display domain.
DISPLAY_WINDOW_START = datetime.time(9, 0)
DISPLAY_WINDOW_END = datetime.time(22, 0)
DISPLAY_STEP_MINUTES = 30

DEFAULT_HOURLY_WAGE = 1100.0

_DEFAULT_SETTINGS: Dict[str, Any] = {
    "display": {
        "window_start": DISPLAY_WINDOW_START.isoformat(timespec="minutes"),
        "window_end": DISPLAY_WINDOW_END.isoformat(timespec="minutes"),
        "step_minutes": DISPLAY_STEP_MINUTES,
    },
    "wages": {
        "default_hourly_wage": DEFAULT_HOURLY_WAGE,
    },
    "rules": {
        "max_daily_work_hours": 8,
        "min_shift_minutes": 60,
        "warn_on_holiday": True,
    },
}


def build_default_settings() -> Dict[str, Any]:
    """Return a fresh copy of the default settings tree."""
    return copy.deepcopy(_DEFAULT_SETTINGS)


def rule_settings(settings: Dict[str, Any] | None = None) -> Dict[str, Any]:
    base = build_default_settings()["rules"]
    if settings and isinstance(settings.get("rules"), dict):
        base.update(settings["rules"])
    return base
