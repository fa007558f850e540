from __future__ import annotations

import calendar
import datetime
from typing import Dict, Iterable, List, Tuple

from shift_model import Actor, ActorRole, ShiftRecord, ShiftStatus


def month_bounds(year: int, month: int) -> Tuple[datetime.date, datetime.date]:
    """First and last day of the month, both inclusive."""
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}.")
    last_day = calendar.monthrange(int(year), int(month))[1]
    return datetime.date(int(year), int(month), 1), datetime.date(int(year), int(month), last_day)


def _shown(record: ShiftRecord, include_deleted: bool) -> bool:
    if record.status == ShiftStatus.PURGED:
        return False
    if record.status == ShiftStatus.DELETED:
        return include_deleted
    return True


def sort_records(records: Iterable[ShiftRecord]) -> List[ShiftRecord]:
    return sorted(records, key=lambda record: record.sort_key())


def for_period(
    records: Iterable[ShiftRecord],
    year: int,
    month: int,
    *,
    include_deleted: bool = False,
) -> List[ShiftRecord]:
    first, last = month_bounds(year, month)
    return sort_records(
        record
        for record in records
        if first <= record.date <= last and _shown(record, include_deleted)
    )


def visible_to(
    records: Iterable[ShiftRecord],
    actor: Actor,
    *,
    include_deleted: bool = False,
) -> List[ShiftRecord]:
    """Privileged (and system) actors see everything; staff see their own shifts."""
    sees_all = actor.role in (ActorRole.PRIVILEGED, ActorRole.SYSTEM)
    return sort_records(
        record
        for record in records
        if (sees_all or record.resource_id == actor.id) and _shown(record, include_deleted)
    )


def for_day(records: Iterable[ShiftRecord], day: datetime.date) -> List[ShiftRecord]:
    return sort_records(record for record in records if record.date == day)


def for_resource(records: Iterable[ShiftRecord], resource_id: str) -> List[ShiftRecord]:
    return sort_records(record for record in records if record.resource_id == resource_id)


def with_status(records: Iterable[ShiftRecord], *statuses: ShiftStatus | str) -> List[ShiftRecord]:
    wanted = {ShiftStatus(status) for status in statuses}
    return sort_records(record for record in records if record.status in wanted)


def group_by_resource_day(
    records: Iterable[ShiftRecord],
) -> Dict[Tuple[str, datetime.date], List[ShiftRecord]]:
    groups: Dict[Tuple[str, datetime.date], List[ShiftRecord]] = {}
    for record in sort_records(records):
        groups.setdefault((record.resource_id, record.date), []).append(record)
    return groups
