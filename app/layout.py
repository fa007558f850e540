"""Timeline lane assignment for the per-day Gantt view.

Shifts of one resource on one day are packed into lanes with a sweep over their
start times: a shift reuses the lowest lane that is already free at its start,
otherwise it opens a new lane. This uses exactly as many lanes as the largest
number of shifts active at the same instant.

Offsets are measured in display steps from the start of the display window and
kept as ``Fraction`` so that sub-step boundaries survive; rounding to cells or
pixels is left to whoever draws the timeline.
"""

from __future__ import annotations

import dataclasses
import datetime
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import DISPLAY_STEP_MINUTES, DISPLAY_WINDOW_END, DISPLAY_WINDOW_START
from holiday_calendar import HolidayCalendar
from queries import group_by_resource_day
from shift_model import ShiftRecord, time_to_minutes


@dataclasses.dataclass(frozen=True)
class DisplayWindow:
    start: datetime.time = DISPLAY_WINDOW_START
    end: datetime.time = DISPLAY_WINDOW_END
    step_minutes: int = DISPLAY_STEP_MINUTES

    def __post_init__(self) -> None:
        if self.step_minutes <= 0:
            raise ValueError("step_minutes must be positive.")
        if self.start >= self.end:
            raise ValueError("Display window start must be before its end.")

    @property
    def steps(self) -> Fraction:
        return Fraction(time_to_minutes(self.end) - time_to_minutes(self.start), self.step_minutes)

    def offset(self, value: datetime.time) -> Fraction:
        """Steps from the window start to ``value``, clamped to the window."""
        minutes = time_to_minutes(value) + Fraction(value.second, 60)
        raw = (minutes - time_to_minutes(self.start)) / self.step_minutes
        return min(max(Fraction(raw), Fraction(0)), self.steps)


DEFAULT_WINDOW = DisplayWindow()


@dataclasses.dataclass(frozen=True)
class LanePlacement:
    shift_id: str
    lane: int
    start_offset: Fraction
    end_offset: Fraction


@dataclasses.dataclass(frozen=True)
class SlotPlacement:
    shift_id: str
    slot_index: int
    lane: int
    start_offset: Fraction
    end_offset: Fraction


@dataclasses.dataclass(frozen=True)
class DayLayout:
    resource_id: Optional[str]
    date: Optional[datetime.date]
    placements: Tuple[LanePlacement, ...]
    slot_overlays: Tuple[SlotPlacement, ...]
    lane_count: int
    holiday: Optional[str] = None

    def lane_of(self, shift_id: str) -> int:
        for placement in self.placements:
            if placement.shift_id == shift_id:
                return placement.lane
        raise KeyError(shift_id)


def _visible(records: Iterable[ShiftRecord]) -> List[ShiftRecord]:
    return [record for record in records if not record.is_hidden]


def assign_lanes(records: Sequence[ShiftRecord]) -> List[Tuple[ShiftRecord, int]]:
    """Return ``(record, lane)`` pairs in start-time order, ties broken by id."""
    ordered = sorted(records, key=lambda record: (record.start_time, record.id))
    lane_ends: List[datetime.time] = []
    result: List[Tuple[ShiftRecord, int]] = []
    for record in ordered:
        lane = next(
            (index for index, end in enumerate(lane_ends) if end <= record.start_time),
            None,
        )
        if lane is None:
            lane = len(lane_ends)
            lane_ends.append(record.end_time)
        else:
            lane_ends[lane] = record.end_time
        result.append((record, lane))
    return result


def layout_day(
    records: Iterable[ShiftRecord],
    *,
    window: Optional[DisplayWindow] = None,
    holiday: Optional[str] = None,
) -> DayLayout:
    """Lay out the visible shifts of a single resource on a single day."""
    window = window or DEFAULT_WINDOW
    shifts = _visible(records)
    resources = {record.resource_id for record in shifts}
    days = {record.date for record in shifts}
    if len(resources) > 1 or len(days) > 1:
        raise ValueError("layout_day expects shifts for one resource on one day.")

    placements: List[LanePlacement] = []
    overlays: List[SlotPlacement] = []
    lane_count = 0
    for record, lane in assign_lanes(shifts):
        lane_count = max(lane_count, lane + 1)
        placements.append(
            LanePlacement(
                shift_id=record.id,
                lane=lane,
                start_offset=window.offset(record.start_time),
                end_offset=window.offset(record.end_time),
            )
        )
        for index, slot in enumerate(record.class_slots):
            overlays.append(
                SlotPlacement(
                    shift_id=record.id,
                    slot_index=index,
                    lane=lane,
                    start_offset=window.offset(slot.start_time),
                    end_offset=window.offset(slot.end_time),
                )
            )
    return DayLayout(
        resource_id=next(iter(resources), None),
        date=next(iter(days), None),
        placements=tuple(placements),
        slot_overlays=tuple(overlays),
        lane_count=lane_count,
        holiday=holiday,
    )


def layout_period(
    records: Iterable[ShiftRecord],
    *,
    holidays: Optional[HolidayCalendar] = None,
    window: Optional[DisplayWindow] = None,
) -> List[DayLayout]:
    """Lay out every (resource, day) group, ordered by resource id then date."""
    groups = group_by_resource_day(_visible(records))
    layouts: List[DayLayout] = []
    for (resource_id, day), shifts in sorted(groups.items(), key=lambda item: item[0]):
        label = holidays.label_for(day) if holidays else None
        layouts.append(layout_day(shifts, window=window, holiday=label))
    return layouts


def max_overlap(records: Iterable[ShiftRecord]) -> int:
    """Largest number of shifts active at one instant (half-open intervals)."""
    events: List[Tuple[int, int]] = []
    for record in _visible(records):
        events.append((_seconds(record.start_time), 1))
        events.append((_seconds(record.end_time), -1))
    # Ends sort before starts at the same instant, so touching shifts never overlap.
    events.sort()
    active = peak = 0
    for _, delta in events:
        active += delta
        peak = max(peak, active)
    return peak


def lanes_by_shift(layout: DayLayout) -> Dict[str, int]:
    return {placement.shift_id: placement.lane for placement in layout.placements}


def _seconds(value: datetime.time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second
