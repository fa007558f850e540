from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

from config import HOLIDAYS_FILE

log = logging.getLogger("shiftboard.holidays")

NATIONAL_HOLIDAYS: Dict[int, Dict[str, str]] = {
    2024: {
        "2024-01-01": "New Year's Day",
        "2024-01-08": "Coming of Age Day",
        "2024-02-11": "National Foundation Day",
        "2024-02-12": "Substitute Holiday",
        "2024-02-23": "Emperor's Birthday",
        "2024-03-20": "Vernal Equinox Day",
        "2024-04-29": "Showa Day",
        "2024-05-03": "Constitution Memorial Day",
        "2024-05-04": "Greenery Day",
        "2024-05-05": "Children's Day",
        "2024-05-06": "Substitute Holiday",
        "2024-07-15": "Marine Day",
        "2024-08-11": "Mountain Day",
        "2024-08-12": "Substitute Holiday",
        "2024-09-16": "Respect for the Aged Day",
        "2024-09-22": "Autumnal Equinox Day",
        "2024-09-23": "Substitute Holiday",
        "2024-10-14": "Sports Day",
        "2024-11-03": "Culture Day",
        "2024-11-04": "Substitute Holiday",
        "2024-11-23": "Labor Thanksgiving Day",
    },
    2025: {
        "2025-01-01": "New Year's Day",
        "2025-01-13": "Coming of Age Day",
        "2025-02-11": "National Foundation Day",
        "2025-02-23": "Emperor's Birthday",
        "2025-03-20": "Vernal Equinox Day",
        "2025-04-29": "Showa Day",
        "2025-05-03": "Constitution Memorial Day",
        "2025-05-04": "Greenery Day",
        "2025-05-05": "Children's Day",
        "2025-07-21": "Marine Day",
        "2025-08-11": "Mountain Day",
        "2025-09-15": "Respect for the Aged Day",
        "2025-09-23": "Autumnal Equinox Day",
        "2025-10-13": "Sports Day",
        "2025-11-03": "Culture Day",
        "2025-11-23": "Labor Thanksgiving Day",
    },
}

# Used for years without a full table.
FIXED_HOLIDAYS: Dict[str, str] = {
    "01-01": "New Year's Day",
    "02-11": "National Foundation Day",
    "02-23": "Emperor's Birthday",
    "04-29": "Showa Day",
    "05-03": "Constitution Memorial Day",
    "05-04": "Greenery Day",
    "05-05": "Children's Day",
    "08-11": "Mountain Day",
    "11-03": "Culture Day",
    "11-23": "Labor Thanksgiving Day",
}


def default_holidays(year: int) -> Dict[str, str]:
    if year in NATIONAL_HOLIDAYS:
        return dict(NATIONAL_HOLIDAYS[year])
    return {f"{year}-{month_day}": name for month_day, name in FIXED_HOLIDAYS.items()}


class HolidayCalendar:
    """Date to holiday label lookup. Only marks days; it never changes shift rules."""

    def __init__(self, overrides: Optional[Mapping[str, str]] = None, *, use_defaults: bool = True) -> None:
        self._use_defaults = use_defaults
        self._overrides: Dict[str, str] = {}
        self._default_years: Dict[int, Dict[str, str]] = {}
        for key, label in (overrides or {}).items():
            self.add(key, label)

    def add(self, day: datetime.date | str, label: str) -> None:
        key = day.isoformat() if isinstance(day, datetime.date) else datetime.date.fromisoformat(day).isoformat()
        self._overrides[key] = str(label)

    def label_for(self, day: datetime.date) -> Optional[str]:
        key = day.isoformat()
        if key in self._overrides:
            return self._overrides[key] or None
        if not self._use_defaults:
            return None
        year_table = self._default_years.setdefault(day.year, default_holidays(day.year))
        return year_table.get(key)

    def is_holiday(self, day: datetime.date) -> bool:
        return self.label_for(day) is not None

    def for_month(self, year: int, month: int) -> Dict[str, str]:
        start = datetime.date(year, month, 1)
        result: Dict[str, str] = {}
        day = start
        while day.month == month:
            label = self.label_for(day)
            if label:
                result[day.isoformat()] = label
            day += datetime.timedelta(days=1)
        return result

    def overrides(self) -> Dict[str, str]:
        return dict(self._overrides)


def load_holidays(path: Optional[Path] = None) -> HolidayCalendar:
    """Read overrides from the holidays JSON file, falling back to the defaults."""
    source = path or HOLIDAYS_FILE
    if not source.exists():
        return HolidayCalendar()
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("holidays file must contain a JSON object")
        return HolidayCalendar({str(key): str(value) for key, value in data.items()})
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable holidays file %s: %s", source, exc)
        return HolidayCalendar()


def save_holidays(calendar: HolidayCalendar, path: Optional[Path] = None) -> Path:
    target = path or HOLIDAYS_FILE
    target.write_text(json.dumps(calendar.overrides(), indent=2, sort_keys=True), encoding="utf-8")
    return target
