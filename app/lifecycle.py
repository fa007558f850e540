"""Shift lifecycle state machine.

Every status change goes through :func:`transition` (or the change-request helpers
below it). The functions are pure: they return a new ``ShiftRecord`` and leave the
input untouched, raising a ``ShiftError`` subclass when the action is refused.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from errors import InvalidDelta, InvalidTransition, PermissionDenied
from shift_model import (
    Actor,
    ActorRole,
    ChangeDelta,
    ClassSlot,
    ShiftKind,
    ShiftRecord,
    ShiftStatus,
    parse_date,
    parse_time,
    utcnow,
    validate_interval,
)


class ShiftAction(str, enum.Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_DELETION = "request_deletion"
    CANCEL_DELETION = "cancel_deletion"
    COMPLETE = "complete"
    PURGE = "purge"


# Roles allowed to perform each action; anything not listed is open to staff as well.
ACTION_ROLES: Dict[ShiftAction, frozenset] = {
    ShiftAction.APPROVE: frozenset({ActorRole.PRIVILEGED}),
    ShiftAction.REJECT: frozenset({ActorRole.PRIVILEGED}),
    ShiftAction.PURGE: frozenset({ActorRole.PRIVILEGED}),
    ShiftAction.COMPLETE: frozenset({ActorRole.PRIVILEGED, ActorRole.SYSTEM}),
}

TRANSITIONS: Dict[Tuple[ShiftStatus, ShiftAction], ShiftStatus] = {
    (ShiftStatus.DRAFT, ShiftAction.SUBMIT): ShiftStatus.PENDING,
    (ShiftStatus.PENDING, ShiftAction.APPROVE): ShiftStatus.APPROVED,
    (ShiftStatus.PENDING, ShiftAction.REJECT): ShiftStatus.REJECTED,
    (ShiftStatus.APPROVED, ShiftAction.REQUEST_DELETION): ShiftStatus.DELETION_REQUESTED,
    (ShiftStatus.DELETION_REQUESTED, ShiftAction.APPROVE): ShiftStatus.DELETED,
    (ShiftStatus.DELETION_REQUESTED, ShiftAction.CANCEL_DELETION): ShiftStatus.APPROVED,
    (ShiftStatus.APPROVED, ShiftAction.COMPLETE): ShiftStatus.COMPLETED,
    (ShiftStatus.DELETED, ShiftAction.PURGE): ShiftStatus.PURGED,
}

INITIAL_STATUSES = frozenset({ShiftStatus.DRAFT, ShiftStatus.PENDING})


def allowed_actions(status: ShiftStatus | str) -> Tuple[ShiftAction, ...]:
    """Actions the table accepts from ``status``, ignoring role guards."""
    status = ShiftStatus(status)
    return tuple(action for (source, action) in TRANSITIONS if source == status)


def _coerce_action(action: ShiftAction | str) -> ShiftAction:
    try:
        return ShiftAction(action)
    except ValueError as exc:
        raise InvalidTransition(f"Unknown action '{action}'.") from exc


def _check_role(action: ShiftAction, actor: Actor, record: ShiftRecord) -> None:
    allowed = ACTION_ROLES.get(action)
    if allowed is not None:
        if actor.role not in allowed:
            raise PermissionDenied(
                f"Role '{actor.role.value}' may not {action.value} shifts.",
                shift_id=record.id,
            )
        return
    if actor.role == ActorRole.SYSTEM:
        raise PermissionDenied(f"The system actor may not {action.value} shifts.", shift_id=record.id)
    _check_owner(actor, record)


def _check_owner(actor: Actor, record: ShiftRecord) -> None:
    if actor.role == ActorRole.STAFF and actor.id != record.resource_id:
        raise PermissionDenied("Staff may only act on their own shifts.", shift_id=record.id)


def transition(
    record: ShiftRecord,
    action: ShiftAction | str,
    actor: Actor,
    *,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    """Apply ``action`` to ``record`` on behalf of ``actor`` and return the new record."""
    action = _coerce_action(action)
    _check_role(action, actor, record)
    target = TRANSITIONS.get((record.status, action))
    if target is None:
        raise InvalidTransition(
            f"Cannot {action.value} a shift in status '{record.status.value}'.",
            shift_id=record.id,
        )
    timestamp = now or utcnow()

    if record.status == ShiftStatus.PENDING and action == ShiftAction.APPROVE:
        fields: Dict[str, Any] = {}
        if record.requested_change is not None:
            fields = record.merged_with(record.requested_change)
            validate_interval(
                fields["start_time"],
                fields["end_time"],
                record.class_slots,
                error_cls=InvalidDelta,
                shift_id=record.id,
            )
        return dataclasses.replace(
            record, status=target, requested_change=None, updated_at=timestamp, **fields
        )

    if record.status == ShiftStatus.PENDING and action == ShiftAction.REJECT:
        # A rejected change request leaves the original approved shift in force.
        if record.requested_change is not None:
            target = ShiftStatus.APPROVED
        return dataclasses.replace(record, status=target, requested_change=None, updated_at=timestamp)

    if target in (ShiftStatus.APPROVED, ShiftStatus.DELETED, ShiftStatus.COMPLETED):
        return dataclasses.replace(record, status=target, requested_change=None, updated_at=timestamp)
    return dataclasses.replace(record, status=target, updated_at=timestamp)


def create_shift(
    actor: Actor,
    *,
    resource_id: str,
    date: datetime.date | str,
    start_time: datetime.time | str,
    end_time: datetime.time | str,
    display_name: str = "",
    kind: ShiftKind | str = ShiftKind.STAFF,
    subject: Optional[str] = None,
    class_slots: Iterable[ClassSlot | Mapping[str, Any]] = (),
    notes: str = "",
    status: ShiftStatus | str = ShiftStatus.DRAFT,
    shift_id: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    """Build a new shift in draft or pending for ``resource_id``."""
    status = ShiftStatus(status)
    if status not in INITIAL_STATUSES:
        raise InvalidTransition(f"New shifts start in draft or pending, not '{status.value}'.")
    if actor.role == ActorRole.SYSTEM:
        raise PermissionDenied("The system actor may not create shifts.")
    if actor.role == ActorRole.STAFF and actor.id != resource_id:
        raise PermissionDenied("Staff may only create their own shifts.")
    slots = tuple(
        slot if isinstance(slot, ClassSlot) else ClassSlot.from_mapping(slot) for slot in class_slots
    )
    timestamp = now or utcnow()
    return ShiftRecord(
        id=shift_id or uuid.uuid4().hex,
        resource_id=resource_id,
        display_name=display_name,
        date=parse_date(date),
        start_time=parse_time(start_time),
        end_time=parse_time(end_time),
        kind=ShiftKind(kind),
        status=status,
        created_at=timestamp,
        updated_at=timestamp,
        subject=subject or None,
        class_slots=slots,
        notes=notes or "",
    )


# ---------------------------------------------------------------------------
# Change requests on approved shifts


def propose_change(
    record: ShiftRecord,
    delta: ChangeDelta | Mapping[str, Any],
    actor: Actor,
    *,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    """Attach a proposed delta to an approved shift without touching its canonical fields."""
    if not isinstance(delta, ChangeDelta):
        delta = ChangeDelta.from_mapping(delta)
    if actor.role == ActorRole.SYSTEM:
        raise PermissionDenied("The system actor may not propose changes.", shift_id=record.id)
    _check_owner(actor, record)
    if record.status != ShiftStatus.APPROVED:
        raise InvalidTransition(
            f"Changes can only be proposed for approved shifts, not '{record.status.value}'.",
            shift_id=record.id,
        )
    if delta.is_empty():
        raise InvalidDelta("The change request does not change anything.", shift_id=record.id)
    merged = record.merged_with(delta)
    validate_interval(
        merged["start_time"],
        merged["end_time"],
        record.class_slots,
        error_cls=InvalidDelta,
        shift_id=record.id,
    )
    return dataclasses.replace(
        record,
        status=ShiftStatus.DRAFT,
        requested_change=delta,
        updated_at=now or utcnow(),
    )


def withdraw_change(
    record: ShiftRecord,
    actor: Actor,
    *,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    """Drop an unresolved change request and put the approved shift back in force."""
    if actor.role == ActorRole.SYSTEM:
        raise PermissionDenied("The system actor may not withdraw changes.", shift_id=record.id)
    _check_owner(actor, record)
    if record.requested_change is None or record.status not in (ShiftStatus.DRAFT, ShiftStatus.PENDING):
        raise InvalidTransition("There is no open change request to withdraw.", shift_id=record.id)
    return dataclasses.replace(
        record,
        status=ShiftStatus.APPROVED,
        requested_change=None,
        updated_at=now or utcnow(),
    )
