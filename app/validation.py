from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import rule_settings
from database import fetch_shifts
from holiday_calendar import HolidayCalendar
from layout import DEFAULT_WINDOW, DisplayWindow, max_overlap
from queries import for_period, group_by_resource_day, with_status
from shift_model import ShiftRecord, ShiftStatus, format_time
from wages import paid_minutes

ACTIVE_STATUSES = (
    ShiftStatus.DRAFT,
    ShiftStatus.PENDING,
    ShiftStatus.APPROVED,
    ShiftStatus.DELETION_REQUESTED,
    ShiftStatus.COMPLETED,
)


def validate_month_schedule(
    session,
    year: int,
    month: int,
    *,
    holidays: Optional[HolidayCalendar] = None,
    settings: Optional[Dict[str, Any]] = None,
    window: Optional[DisplayWindow] = None,
) -> Dict[str, Any]:
    """Return validation findings for every visible shift in the month."""
    records = fetch_shifts(session, year=year, month=month)
    return validate_shifts(records, year, month, holidays=holidays, settings=settings, window=window)


def validate_shifts(
    records: Iterable[ShiftRecord],
    year: int,
    month: int,
    *,
    holidays: Optional[HolidayCalendar] = None,
    settings: Optional[Dict[str, Any]] = None,
    window: Optional[DisplayWindow] = None,
) -> Dict[str, Any]:
    rules = rule_settings(settings)
    shifts = with_status(for_period(records, year, month), *ACTIVE_STATUSES)
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_overlap_issues(shifts))
    warnings.extend(_daily_hours_warnings(shifts, float(rules.get("max_daily_work_hours") or 0)))
    warnings.extend(_short_shift_warnings(shifts, int(rules.get("min_shift_minutes") or 0)))
    warnings.extend(_window_warnings(shifts, window or DEFAULT_WINDOW))
    if holidays is not None and rules.get("warn_on_holiday", True):
        warnings.extend(_holiday_warnings(shifts, holidays))
    awaiting = [record for record in shifts if record.status in (ShiftStatus.DRAFT, ShiftStatus.PENDING)]
    checks = _build_validation_checklist(issues=issues, warnings=warnings, awaiting=awaiting)
    return {
        "period": f"{int(year):04d}-{int(month):02d}",
        "shift_count": len(shifts),
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def _overlap_issues(shifts: List[ShiftRecord]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for (resource_id, day), group in group_by_resource_day(shifts).items():
        overlap = max_overlap(group)
        if overlap > 1:
            issues.append(
                {
                    "type": "overlap",
                    "severity": "error",
                    "resource_id": resource_id,
                    "date": day.isoformat(),
                    "actual": overlap,
                    "shift_ids": [record.id for record in group],
                    "message": f"{_name(group)} has {overlap} overlapping shifts on {day.isoformat()}.",
                }
            )
    return issues


def _daily_hours_warnings(shifts: List[ShiftRecord], max_hours: float) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    if max_hours <= 0:
        return warnings
    totals: Dict[Tuple[str, datetime.date], int] = defaultdict(int)
    names: Dict[str, str] = {}
    for record in shifts:
        totals[(record.resource_id, record.date)] += paid_minutes(record)
        names.setdefault(record.resource_id, record.display_name or record.resource_id)
    for (resource_id, day), minutes in sorted(totals.items()):
        if minutes > max_hours * 60:
            warnings.append(
                {
                    "type": "daily_hours",
                    "severity": "warning",
                    "resource_id": resource_id,
                    "date": day.isoformat(),
                    "allowed": max_hours,
                    "actual": round(minutes / 60.0, 2),
                    "message": f"{names[resource_id]} works {minutes / 60.0:.2f}h on {day.isoformat()} "
                    f"(limit {max_hours:g}h).",
                }
            )
    return warnings


def _short_shift_warnings(shifts: List[ShiftRecord], min_minutes: int) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    if min_minutes <= 0:
        return warnings
    for record in shifts:
        if record.duration_minutes < min_minutes:
            warnings.append(
                {
                    "type": "short_shift",
                    "severity": "warning",
                    "shift_id": record.id,
                    "resource_id": record.resource_id,
                    "date": record.date.isoformat(),
                    "message": f"Shift {_span(record)} on {record.date.isoformat()} is shorter than "
                    f"{min_minutes} minutes.",
                }
            )
    return warnings


def _window_warnings(shifts: List[ShiftRecord], window: DisplayWindow) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for record in shifts:
        if record.start_time < window.start or record.end_time > window.end:
            warnings.append(
                {
                    "type": "outside_window",
                    "severity": "warning",
                    "shift_id": record.id,
                    "resource_id": record.resource_id,
                    "date": record.date.isoformat(),
                    "message": f"Shift {_span(record)} on {record.date.isoformat()} extends past the "
                    f"{format_time(window.start)}-{format_time(window.end)} timeline and will be clipped.",
                }
            )
    return warnings


def _holiday_warnings(shifts: List[ShiftRecord], holidays: HolidayCalendar) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for record in shifts:
        label = holidays.label_for(record.date)
        if label:
            warnings.append(
                {
                    "type": "holiday",
                    "severity": "warning",
                    "shift_id": record.id,
                    "resource_id": record.resource_id,
                    "date": record.date.isoformat(),
                    "holiday": label,
                    "message": f"Shift {_span(record)} falls on {label} ({record.date.isoformat()}).",
                }
            )
    return warnings


def _build_validation_checklist(
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
    awaiting: List[ShiftRecord],
) -> List[Dict[str, Any]]:
    """
    Concise checklist for review screens:
    - `status`: ok|fail
    - `label`: human readable prompt
    - `details`: context for failures
    """
    checks: List[Dict[str, Any]] = []

    def summarize(items: List[Dict[str, Any]], *, limit: int = 5) -> str:
        parts = [str(entry.get("message") or "").strip() for entry in items[:limit]]
        parts = [part for part in parts if part]
        if len(items) > limit:
            parts.append(f"+{len(items) - limit} more")
        return "; ".join(parts)

    def add_check(label: str, items: List[Dict[str, Any]]) -> None:
        checks.append(
            {
                "label": label,
                "status": "ok" if not items else "fail",
                "details": summarize(items),
            }
        )

    add_check("No overlapping shifts per person?", [i for i in issues if i["type"] == "overlap"])
    add_check("Daily hours within limit?", [w for w in warnings if w["type"] == "daily_hours"])
    add_check("Shifts meet minimum length?", [w for w in warnings if w["type"] == "short_shift"])
    add_check("Shifts inside the timeline window?", [w for w in warnings if w["type"] == "outside_window"])
    checks.append(
        {
            "label": "All requests reviewed?",
            "status": "ok" if not awaiting else "fail",
            "details": f"{len(awaiting)} shift(s) still in draft or pending." if awaiting else "",
        }
    )
    return checks


def _span(record: ShiftRecord) -> str:
    return f"{format_time(record.start_time)}-{format_time(record.end_time)}"


def _name(group: List[ShiftRecord]) -> str:
    first = group[0]
    return first.display_name or first.resource_id
