from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from database import delete_shift, fetch_shifts, get_shift, record_audit_log, record_shift_report, write_shift
from errors import ConflictingWrite, InvalidReport, PermissionDenied, ShiftError
from holiday_calendar import HolidayCalendar
from layout import DayLayout, DisplayWindow, layout_period
from lifecycle import ShiftAction, create_shift, propose_change, transition, withdraw_change
from queries import for_period, visible_to
from shift_model import Actor, ActorRole, ChangeDelta, CompletionReport, ShiftRecord, ShiftStatus

log = logging.getLogger("shiftboard.workflow")

# One write plus a single retry after a conflicting write.
DEFAULT_MAX_ATTEMPTS = 2


def _mutate(
    session_factory: Callable,
    shift_id: str,
    actor: Actor,
    audit_action: str,
    step: Callable[[ShiftRecord], ShiftRecord],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    extra: Optional[Dict[str, Any]] = None,
    on_write: Optional[Callable[[Any, ShiftRecord], None]] = None,
) -> ShiftRecord:
    """Read, apply ``step``, and write back under the optimistic status check.

    ``on_write`` runs inside the same transaction, after the shift row and its
    audit entry, so rows it adds are committed or rolled back with them.
    """
    attempts = max(1, int(max_attempts or 1))
    last_error: ConflictingWrite | None = None
    for attempt in range(1, attempts + 1):
        with session_factory() as session:
            current = get_shift(session, shift_id)
            updated = step(current)
            payload = {"from": current.status.value, "to": updated.status.value}
            payload.update(extra or {})
            try:
                write_shift(session, updated, current.status, commit=False)
                record_audit_log(
                    session,
                    user_id=actor.id,
                    action=audit_action,
                    target_id=shift_id,
                    payload=payload,
                    commit=False,
                )
                if on_write is not None:
                    on_write(session, updated)
                session.commit()
            except ConflictingWrite as exc:
                session.rollback()
                last_error = exc
                log.info("Conflict on shift %s (attempt %d of %d); re-reading.", shift_id, attempt, attempts)
                continue
        log.info("%s on shift %s by %s: %s -> %s", audit_action, shift_id, actor.id, payload["from"], payload["to"])
        return updated
    raise last_error


def apply_action(
    session_factory: Callable,
    shift_id: str,
    action: ShiftAction | str,
    actor: Actor,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime.datetime] = None,
    report: CompletionReport | Mapping[str, Any] | None = None,
) -> ShiftRecord:
    """Run one lifecycle action; ``complete`` may carry a completion report."""
    label = str(getattr(action, "value", action))
    if report is not None and not isinstance(report, CompletionReport):
        report = CompletionReport.from_mapping(report)
    if report is not None and report.is_empty():
        report = None
    if report is not None and label != ShiftAction.COMPLETE.value:
        raise InvalidReport(f"A completion report cannot accompany '{label}'.", shift_id=shift_id)

    def file_report(session, record: ShiftRecord) -> None:
        record_shift_report(session, record.id, actor.id, report, commit=False)

    return _mutate(
        session_factory,
        shift_id,
        actor,
        f"SHIFT_{label.upper()}",
        lambda record: transition(record, action, actor, now=now),
        max_attempts=max_attempts,
        extra={"report": True} if report is not None else None,
        on_write=file_report if report is not None else None,
    )


def request_change(
    session_factory: Callable,
    shift_id: str,
    delta: ChangeDelta | Mapping[str, Any],
    actor: Actor,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    if not isinstance(delta, ChangeDelta):
        delta = ChangeDelta.from_mapping(delta)
    return _mutate(
        session_factory,
        shift_id,
        actor,
        "SHIFT_PROPOSE_CHANGE",
        lambda record: propose_change(record, delta, actor, now=now),
        max_attempts=max_attempts,
        extra={"delta": delta.to_dict()},
    )


def withdraw_change_request(
    session_factory: Callable,
    shift_id: str,
    actor: Actor,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime.datetime] = None,
) -> ShiftRecord:
    return _mutate(
        session_factory,
        shift_id,
        actor,
        "SHIFT_WITHDRAW_CHANGE",
        lambda record: withdraw_change(record, actor, now=now),
        max_attempts=max_attempts,
    )


def add_shift(session_factory: Callable, actor: Actor, **fields: Any) -> ShiftRecord:
    """Create a draft or pending shift and store it."""
    record = create_shift(actor, **fields)
    with session_factory() as session:
        write_shift(session, record, None, commit=False)
        record_audit_log(
            session,
            user_id=actor.id,
            action="SHIFT_CREATE",
            target_id=record.id,
            payload={"status": record.status.value, "date": record.date.isoformat()},
            commit=False,
        )
        session.commit()
    log.info("Shift %s created by %s for %s", record.id, actor.id, record.resource_id)
    return record


def remove_purged(session_factory: Callable, shift_id: str, actor: Actor) -> None:
    """Physically delete a shift that has already been purged."""
    if actor.role != ActorRole.PRIVILEGED:
        raise PermissionDenied("Only privileged actors may remove purged shifts.", shift_id=shift_id)
    with session_factory() as session:
        delete_shift(session, shift_id, commit=False)
        record_audit_log(session, user_id=actor.id, action="SHIFT_REMOVE", target_id=shift_id, commit=False)
        session.commit()


def list_shifts(
    session,
    actor: Actor,
    year: int,
    month: int,
    *,
    include_deleted: bool = False,
) -> List[ShiftRecord]:
    """Snapshot of the month as seen by ``actor``."""
    if include_deleted and actor.role != ActorRole.PRIVILEGED:
        raise PermissionDenied("Only privileged actors may view deleted shifts.")
    resource_id = actor.id if actor.role == ActorRole.STAFF else None
    records = fetch_shifts(
        session, year=year, month=month, resource_id=resource_id, include_deleted=include_deleted
    )
    visible = visible_to(records, actor, include_deleted=include_deleted)
    return for_period(visible, year, month, include_deleted=include_deleted)


def month_layout(
    session,
    actor: Actor,
    year: int,
    month: int,
    *,
    holidays: Optional[HolidayCalendar] = None,
    window: Optional[DisplayWindow] = None,
) -> List[DayLayout]:
    return layout_period(list_shifts(session, actor, year, month), holidays=holidays, window=window)


def complete_past_shifts(
    session_factory: Callable,
    today: datetime.date,
    *,
    actor: Optional[Actor] = None,
) -> Dict[str, List[str]]:
    """Mark approved shifts dated before ``today`` as completed."""
    actor = actor or Actor(id="system", role=ActorRole.SYSTEM)
    with session_factory() as session:
        candidates = [
            record.id
            for record in fetch_shifts(session)
            if record.status == ShiftStatus.APPROVED and record.date < today
        ]
    result: Dict[str, List[str]] = {"completed": [], "skipped": []}
    for shift_id in candidates:
        try:
            apply_action(session_factory, shift_id, ShiftAction.COMPLETE, actor)
        except ShiftError as exc:
            log.warning("Could not complete shift %s: %s", shift_id, exc.message)
            result["skipped"].append(shift_id)
            continue
        result["completed"].append(shift_id)
    return result
