from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from queries import (  # noqa: E402
    for_day,
    for_period,
    for_resource,
    group_by_resource_day,
    month_bounds,
    visible_to,
    with_status,
)
from shift_model import Actor, ActorRole, ShiftRecord, ShiftStatus  # noqa: E402

UTC = datetime.timezone.utc
STAMP = datetime.datetime(2025, 1, 1, tzinfo=UTC)


def shift(shift_id, day, start="10:00", end="12:00", *, resource_id="u-1", status=ShiftStatus.APPROVED):
    return ShiftRecord(
        id=shift_id,
        resource_id=resource_id,
        display_name=resource_id,
        date=datetime.date.fromisoformat(day),
        start_time=datetime.time.fromisoformat(start),
        end_time=datetime.time.fromisoformat(end),
        kind="staff",
        status=status,
        created_at=STAMP,
        updated_at=STAMP,
    )


@pytest.fixture()
def records():
    return [
        shift("jan31", "2025-01-31"),
        shift("feb1-b", "2025-02-01", "09:00", "10:00"),
        shift("feb1-a", "2025-02-01", "09:00", "11:00"),
        shift("feb1-early", "2025-02-01", "08:00", "09:00", resource_id="u-2"),
        shift("feb28", "2025-02-28", resource_id="u-2"),
        shift("mar1", "2025-03-01"),
        shift("feb-deleted", "2025-02-10", status=ShiftStatus.DELETED),
        shift("feb-purged", "2025-02-11", status=ShiftStatus.PURGED),
        shift("feb-pending", "2025-02-12", status=ShiftStatus.PENDING, resource_id="u-2"),
    ]


def ids(items):
    return [record.id for record in items]


def test_month_bounds_cover_leap_february():
    assert month_bounds(2024, 2) == (datetime.date(2024, 2, 1), datetime.date(2024, 2, 29))
    assert month_bounds(2025, 12) == (datetime.date(2025, 12, 1), datetime.date(2025, 12, 31))
    with pytest.raises(ValueError):
        month_bounds(2025, 13)


def test_for_period_includes_both_month_endpoints_and_sorts(records):
    assert ids(for_period(records, 2025, 2)) == [
        "feb1-early",
        "feb1-a",
        "feb1-b",
        "feb-pending",
        "feb28",
    ]


def test_for_period_can_include_deleted_but_never_purged(records):
    result = ids(for_period(records, 2025, 2, include_deleted=True))
    assert "feb-deleted" in result
    assert "feb-purged" not in result


def test_privileged_actor_sees_every_resource(records):
    manager = Actor(id="m-1", role=ActorRole.PRIVILEGED)
    result = visible_to(records, manager)
    assert {record.resource_id for record in result} == {"u-1", "u-2"}
    assert "feb-deleted" not in ids(result)


def test_staff_actor_sees_only_own_shifts(records):
    staff = Actor(id="u-2", role=ActorRole.STAFF)
    assert ids(visible_to(records, staff)) == ["feb1-early", "feb-pending", "feb28"]


def test_deleted_only_on_request(records):
    manager = Actor(id="m-1", role=ActorRole.PRIVILEGED)
    assert "feb-deleted" in ids(visible_to(records, manager, include_deleted=True))


def test_day_resource_and_status_filters(records):
    assert ids(for_day(records, datetime.date(2025, 2, 1))) == ["feb1-early", "feb1-a", "feb1-b"]
    assert ids(for_resource(records, "u-2")) == ["feb1-early", "feb-pending", "feb28"]
    assert ids(with_status(records, "pending", ShiftStatus.DELETED)) == ["feb-deleted", "feb-pending"]


def test_group_by_resource_day(records):
    groups = group_by_resource_day(for_period(records, 2025, 2))
    assert ids(groups[("u-1", datetime.date(2025, 2, 1))]) == ["feb1-a", "feb1-b"]
    assert ("u-2", datetime.date(2025, 2, 28)) in groups
    assert len(groups) == 4
