from __future__ import annotations

import dataclasses
import datetime
import enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from errors import InvalidDelta, InvalidInterval, InvalidReport, MalformedDocument

UTC = datetime.timezone.utc


class ShiftStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELETION_REQUESTED = "deletion_requested"
    DELETED = "deleted"
    COMPLETED = "completed"
    PURGED = "purged"


class ShiftKind(str, enum.Enum):
    STAFF = "staff"
    CLASS = "class"


class ActorRole(str, enum.Enum):
    STAFF = "staff"
    PRIVILEGED = "privileged"
    SYSTEM = "system"


HIDDEN_STATUSES = frozenset({ShiftStatus.DELETED, ShiftStatus.PURGED})
CHANGE_REQUEST_STATUSES = frozenset(
    {ShiftStatus.DRAFT, ShiftStatus.PENDING, ShiftStatus.DELETION_REQUESTED}
)
# Older documents used "user" for staff duty and stamped "deleted" into the type.
_LEGACY_KINDS = {"user": ShiftKind.STAFF, "deleted": ShiftKind.STAFF}


@dataclasses.dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", ActorRole(self.role))

    @property
    def is_privileged(self) -> bool:
        return self.role == ActorRole.PRIVILEGED


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_time(value: Any) -> datetime.time:
    """Accept ``datetime.time`` or an ``HH:MM[:SS]`` string.

    Shift times are wall-clock times in the store's local day, so strings
    carrying a UTC offset are refused rather than silently re-based.
    """
    if isinstance(value, datetime.datetime):
        return value.time().replace(tzinfo=None)
    if isinstance(value, datetime.time):
        return value.replace(tzinfo=None)
    if isinstance(value, str) and value.strip():
        parsed = datetime.time.fromisoformat(value.strip())
        if parsed.tzinfo is not None:
            raise ValueError(f"Time of day must not carry a UTC offset: {value!r}")
        return parsed
    raise ValueError(f"Not a time of day: {value!r}")


def parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str) and value.strip():
        return datetime.date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Not a calendar date: {value!r}")


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        return ensure_aware(datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"Not a timestamp: {value!r}")


def time_to_minutes(value: datetime.time) -> int:
    return value.hour * 60 + value.minute


def format_time(value: datetime.time) -> str:
    return value.isoformat(timespec="minutes")


@dataclasses.dataclass(frozen=True)
class ClassSlot:
    start_time: datetime.time
    end_time: datetime.time

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ClassSlot":
        if not isinstance(payload, Mapping):
            raise ValueError(f"Class slot must be an object, not {payload!r}")
        start = payload.get("startTime", payload.get("start_time"))
        end = payload.get("endTime", payload.get("end_time"))
        return cls(parse_time(start), parse_time(end))

    def to_dict(self) -> Dict[str, str]:
        return {"startTime": format_time(self.start_time), "endTime": format_time(self.end_time)}


def validate_interval(
    start_time: datetime.time,
    end_time: datetime.time,
    class_slots: Sequence[ClassSlot] = (),
    *,
    error_cls: type = InvalidInterval,
    shift_id: Optional[str] = None,
) -> None:
    """Raise ``error_cls`` unless the shift and its class slots are well formed."""
    if start_time >= end_time:
        raise error_cls(
            f"Shift start {format_time(start_time)} must be before end {format_time(end_time)}.",
            shift_id=shift_id,
        )
    ordered = sorted(class_slots, key=lambda slot: (slot.start_time, slot.end_time))
    previous: Optional[ClassSlot] = None
    for slot in ordered:
        if slot.start_time >= slot.end_time:
            raise error_cls(
                f"Class slot {format_time(slot.start_time)}-{format_time(slot.end_time)} is empty or inverted.",
                shift_id=shift_id,
            )
        if slot.start_time < start_time or slot.end_time > end_time:
            raise error_cls(
                f"Class slot {format_time(slot.start_time)}-{format_time(slot.end_time)} lies outside "
                f"the shift {format_time(start_time)}-{format_time(end_time)}.",
                shift_id=shift_id,
            )
        if previous is not None and slot.start_time < previous.end_time:
            raise error_cls(
                f"Class slots {format_time(previous.start_time)}-{format_time(previous.end_time)} and "
                f"{format_time(slot.start_time)}-{format_time(slot.end_time)} overlap.",
                shift_id=shift_id,
            )
        previous = slot


_DELTA_KEYS = {
    "startTime": "start_time",
    "start_time": "start_time",
    "endTime": "end_time",
    "end_time": "end_time",
    "date": "date",
    "kind": "kind",
    "type": "kind",
    "subject": "subject",
}


@dataclasses.dataclass(frozen=True)
class ChangeDelta:
    """Partial set of canonical fields proposed for an approved shift."""

    start_time: Optional[datetime.time] = None
    end_time: Optional[datetime.time] = None
    date: Optional[datetime.date] = None
    kind: Optional[ShiftKind] = None
    subject: Optional[str] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ChangeDelta":
        if not isinstance(payload, Mapping):
            raise InvalidDelta("A change request must be an object of field values.")
        values: Dict[str, Any] = {}
        for key, raw in payload.items():
            field = _DELTA_KEYS.get(key)
            if field is None:
                raise InvalidDelta(f"Unknown change field '{key}'.")
            # Legacy documents padded missing times with empty strings.
            if raw is None or raw == "":
                continue
            try:
                if field in ("start_time", "end_time"):
                    values[field] = parse_time(raw)
                elif field == "date":
                    values[field] = parse_date(raw)
                elif field == "kind":
                    values[field] = _LEGACY_KINDS.get(raw) or ShiftKind(raw)
                else:
                    values[field] = str(raw)
            except (TypeError, ValueError) as exc:
                raise InvalidDelta(f"Invalid value for '{key}': {raw!r}") from exc
        return cls(**values)

    def is_empty(self) -> bool:
        return all(getattr(self, field.name) is None for field in dataclasses.fields(self))

    def changes(self) -> Dict[str, Any]:
        return {
            field.name: getattr(self, field.name)
            for field in dataclasses.fields(self)
            if getattr(self, field.name) is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.start_time is not None:
            payload["startTime"] = format_time(self.start_time)
        if self.end_time is not None:
            payload["endTime"] = format_time(self.end_time)
        if self.date is not None:
            payload["date"] = self.date.isoformat()
        if self.kind is not None:
            payload["type"] = self.kind.value
        if self.subject is not None:
            payload["subject"] = self.subject
        return payload


@dataclasses.dataclass(frozen=True)
class ShiftRecord:
    id: str
    resource_id: str
    display_name: str
    date: datetime.date
    start_time: datetime.time
    end_time: datetime.time
    kind: ShiftKind
    status: ShiftStatus
    created_at: datetime.datetime
    updated_at: datetime.datetime
    subject: Optional[str] = None
    class_slots: Tuple[ClassSlot, ...] = ()
    requested_change: Optional[ChangeDelta] = None
    notes: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ShiftKind(self.kind))
        object.__setattr__(self, "status", ShiftStatus(self.status))
        object.__setattr__(self, "class_slots", tuple(self.class_slots))
        validate_interval(self.start_time, self.end_time, self.class_slots, shift_id=self.id)
        if self.requested_change is not None and self.status not in CHANGE_REQUEST_STATUSES:
            raise InvalidDelta(
                f"A change request cannot be carried in status '{self.status.value}'.",
                shift_id=self.id,
            )

    @property
    def is_hidden(self) -> bool:
        return self.status in HIDDEN_STATUSES

    @property
    def duration_minutes(self) -> int:
        return time_to_minutes(self.end_time) - time_to_minutes(self.start_time)

    def sort_key(self) -> Tuple[datetime.date, datetime.time, str]:
        return (self.date, self.start_time, self.id)

    def merged_with(self, delta: ChangeDelta) -> Dict[str, Any]:
        """Canonical fields after overriding them with the delta."""
        fields = {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "date": self.date,
            "kind": self.kind,
            "subject": self.subject,
        }
        fields.update(delta.changes())
        return fields


def shift_to_document(record: ShiftRecord) -> Dict[str, Any]:
    """Flat keyed document used by the store and the JSON exports."""
    return {
        "id": record.id,
        "userId": record.resource_id,
        "nickname": record.display_name,
        "date": record.date.isoformat(),
        "startTime": format_time(record.start_time),
        "endTime": format_time(record.end_time),
        "type": record.kind.value,
        "subject": record.subject,
        "status": record.status.value,
        "classes": [slot.to_dict() for slot in record.class_slots],
        "requestedChanges": record.requested_change.to_dict() if record.requested_change else None,
        "notes": record.notes,
        "createdAt": record.created_at.isoformat(),
        "updatedAt": record.updated_at.isoformat(),
    }


def _legacy_change(raw: Any) -> Optional[Mapping[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, list):
        if not raw:
            return None
        raw = raw[-1]
    if not isinstance(raw, Mapping):
        raise MalformedDocument("requestedChanges must be an object or a list of objects.")
    # List entries carried their own bookkeeping keys.
    return {key: value for key, value in raw.items() if key not in ("status", "requestedAt")}


def shift_from_document(
    document: Mapping[str, Any],
    *,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    """Validate and normalize a loosely-typed document into a ``ShiftRecord``."""
    if not isinstance(document, Mapping):
        raise MalformedDocument("Shift document must be a mapping.")
    shift_id = str(document.get("id") or "").strip()
    if not shift_id:
        raise MalformedDocument("Shift document has no id.")
    resource_id = str(document.get("userId") or document.get("resource_id") or "").strip()
    if not resource_id:
        raise MalformedDocument("Shift document has no userId.", shift_id=shift_id)
    try:
        date = parse_date(document.get("date"))
        start_time = parse_time(document.get("startTime", document.get("start_time")))
        end_time = parse_time(document.get("endTime", document.get("end_time")))
        raw_kind = document.get("type") or document.get("kind") or ShiftKind.STAFF.value
        kind = _LEGACY_KINDS.get(raw_kind) or ShiftKind(raw_kind)
        status = ShiftStatus(document.get("status") or ShiftStatus.DRAFT.value)
        slots: List[ClassSlot] = [
            ClassSlot.from_mapping(entry) for entry in document.get("classes") or []
        ]
        fallback = now or utcnow()
        created_at = parse_timestamp(document.get("createdAt", document.get("created_at")))
        updated_at = parse_timestamp(document.get("updatedAt", document.get("updated_at")))
    except (TypeError, ValueError) as exc:
        raise MalformedDocument(f"Shift document {shift_id} is malformed: {exc}", shift_id=shift_id) from exc
    created_at = created_at or updated_at or fallback
    updated_at = updated_at or created_at
    try:
        change_payload = _legacy_change(document.get("requestedChanges", document.get("requested_change")))
        delta = ChangeDelta.from_mapping(change_payload) if change_payload else None
        if delta is not None and delta.is_empty():
            delta = None
        return ShiftRecord(
            id=shift_id,
            resource_id=resource_id,
            display_name=str(document.get("nickname") or document.get("display_name") or ""),
            date=date,
            start_time=start_time,
            end_time=end_time,
            kind=kind,
            status=status,
            created_at=created_at,
            updated_at=updated_at,
            subject=document.get("subject") or None,
            class_slots=tuple(slots),
            requested_change=delta,
            notes=str(document.get("notes") or ""),
        )
    except (InvalidInterval, InvalidDelta, TypeError) as exc:
        raise MalformedDocument(f"Shift document {shift_id} is malformed: {exc}", shift_id=shift_id) from exc


@dataclasses.dataclass(frozen=True)
class TaskCount:
    count: int
    minutes: int = 0


def _non_negative_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidReport(f"{label} must be a non-negative whole number, not {value!r}.")
    if value < 0 or not float(value).is_integer():
        raise InvalidReport(f"{label} must be a non-negative whole number, not {value!r}.")
    return int(value)


@dataclasses.dataclass(frozen=True)
class CompletionReport:
    """What was done on a shift, filed when it is completed.

    ``task_counts`` maps a task label to how many times it was done and the
    minutes spent on it; ``comments`` is free text for the manager.
    """

    task_counts: Tuple[Tuple[str, TaskCount], ...] = ()
    comments: str = ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CompletionReport":
        if not isinstance(payload, Mapping):
            raise InvalidReport("A completion report must be an object.")
        raw_counts = payload.get("taskCounts", payload.get("tasks")) or {}
        if not isinstance(raw_counts, Mapping):
            raise InvalidReport("taskCounts must map task names to counts.")
        counts: Dict[str, TaskCount] = {}
        for name, entry in raw_counts.items():
            label = str(name).strip()
            if not label:
                raise InvalidReport("Task names must not be empty.")
            # A bare number is a count with no recorded time.
            if not isinstance(entry, Mapping):
                entry = {"count": entry}
            counts[label] = TaskCount(
                count=_non_negative_int(entry.get("count", 0), f"Count for '{label}'"),
                minutes=_non_negative_int(entry.get("time", 0), f"Time for '{label}'"),
            )
        comments = payload.get("comments", payload.get("comment")) or ""
        if not isinstance(comments, str):
            raise InvalidReport("comments must be text.")
        return cls(task_counts=tuple(sorted(counts.items())), comments=comments.strip())

    def is_empty(self) -> bool:
        return not self.task_counts and not self.comments

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskCounts": {name: {"count": item.count, "time": item.minutes} for name, item in self.task_counts},
            "comments": self.comments,
        }
