from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from config import DATA_DIR, DEFAULT_HOURLY_WAGE
from shift_model import ShiftRecord, ShiftStatus, time_to_minutes

log = logging.getLogger("shiftboard.wages")

WAGES_FILE = DATA_DIR / "hourly_wages.json"
# Shifts that count towards pay.
PAID_STATUSES = frozenset({ShiftStatus.APPROVED, ShiftStatus.COMPLETED})


def class_minutes(record: ShiftRecord) -> int:
    """Minutes of class slots that fall inside the shift."""
    start = time_to_minutes(record.start_time)
    end = time_to_minutes(record.end_time)
    total = 0
    for slot in record.class_slots:
        overlap = min(end, time_to_minutes(slot.end_time)) - max(start, time_to_minutes(slot.start_time))
        total += max(0, overlap)
    return total


def paid_minutes(record: ShiftRecord) -> int:
    return record.duration_minutes - class_minutes(record)


def shift_pay(record: ShiftRecord, hourly_wage: float = DEFAULT_HOURLY_WAGE) -> Dict[str, Any]:
    minutes = paid_minutes(record)
    return {
        "shift_id": record.id,
        "minutes": minutes,
        "class_minutes": class_minutes(record),
        "wage": round(float(hourly_wage) * minutes / 60.0, 2),
    }


def baseline_wages() -> Dict[str, Dict[str, Any]]:
    return {"default": {"wage": DEFAULT_HOURLY_WAGE, "confirmed": True}}


def load_wages(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    source = path or WAGES_FILE
    if source.exists():
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("wages file must contain a JSON object")
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable wages file %s: %s", source, exc)
            data = baseline_wages()
    else:
        data = baseline_wages()
    if not isinstance(data.get("default"), dict):
        data["default"] = baseline_wages()["default"]
    for entry in data.values():
        if isinstance(entry, dict):
            entry.setdefault("confirmed", False)
    return data


def save_wages(data: Dict[str, Dict[str, Any]], path: Optional[Path] = None) -> None:
    (path or WAGES_FILE).write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


def wage_for(resource_id: str, data: Optional[Dict[str, Dict[str, Any]]] = None) -> float:
    data = data if data is not None else load_wages()
    entry = data.get(resource_id) or data.get("default") or {}
    try:
        return float(entry.get("wage", DEFAULT_HOURLY_WAGE) or 0.0)
    except (TypeError, ValueError):
        return DEFAULT_HOURLY_WAGE


def wage_amounts(data: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, float]:
    data = data if data is not None else load_wages()
    return {resource_id: wage_for(resource_id, data) for resource_id in data}


def monthly_wage_summary(
    records: Iterable[ShiftRecord],
    wages: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, Dict[str, Any]]:
    """Per-resource paid minutes and pay for the approved and completed shifts given."""
    wages = wages if wages is not None else load_wages()
    summary: Dict[str, Dict[str, Any]] = {}
    for record in records:
        if record.status not in PAID_STATUSES:
            continue
        rate = wage_for(record.resource_id, wages)
        pay = shift_pay(record, rate)
        entry = summary.setdefault(
            record.resource_id,
            {"display_name": record.display_name, "hourly_wage": rate, "shifts": 0, "minutes": 0, "wage": 0.0},
        )
        entry["shifts"] += 1
        entry["minutes"] += pay["minutes"]
        entry["wage"] = round(entry["wage"] + pay["wage"], 2)
    return summary


def validate_wages(resource_ids: Iterable[str], data: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, str]:
    """Return resources without a confirmed wage of their own -> reason."""
    data = data if data is not None else load_wages()
    problems: Dict[str, str] = {}
    for resource_id in resource_ids:
        entry = data.get(resource_id)
        if not isinstance(entry, dict):
            problems[resource_id] = "using default wage"
            continue
        if wage_for(resource_id, data) <= 0.0:
            problems[resource_id] = "wage is zero"
        elif not entry.get("confirmed", False):
            problems[resource_id] = "not confirmed"
    return problems
