from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Integer,
    String,
    create_engine,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.types import Time

from config import DATABASE_URL
from errors import ConflictingWrite, InvalidTransition, MalformedDocument, NotFound
from queries import month_bounds
from shift_model import (
    CompletionReport,
    ShiftRecord,
    ShiftStatus,
    ensure_aware,
    shift_from_document,
    shift_to_document,
)

log = logging.getLogger("shiftboard.store")


class Base(DeclarativeBase):
    pass


class ShiftRow(Base):
    __tablename__ = "shifts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nickname: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="staff")
    subject: Mapped[str | None] = mapped_column(String(80), nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="draft", index=True)
    classesJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    requestedChangesJSON: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Shift")
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def payload_dict(self) -> Dict[str, Any]:
        try:
            value = json.loads(self.payloadJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class ShiftReport(Base):
    __tablename__ = "shift_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shift_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    taskCountsJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    comments: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def task_counts(self) -> Dict[str, Any]:
        try:
            value = json.loads(self.taskCountsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # Requests may open and use a session on different worker threads.
        return {"connect_args": {"check_same_thread": False}}
    return {}


engine = create_engine(DATABASE_URL, echo=False, future=True, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


def _row_to_document(row: ShiftRow) -> Dict[str, Any]:
    try:
        classes = json.loads(row.classesJSON or "[]")
        changes = json.loads(row.requestedChangesJSON) if row.requestedChangesJSON else None
    except json.JSONDecodeError as exc:
        raise MalformedDocument(f"Shift {row.id} has unreadable JSON columns: {exc}", shift_id=row.id) from exc
    return {
        "id": row.id,
        "userId": row.user_id,
        "nickname": row.nickname,
        "date": row.date,
        "startTime": row.start_time,
        "endTime": row.end_time,
        "type": row.kind,
        "subject": row.subject,
        "status": row.status,
        "classes": classes,
        "requestedChanges": changes,
        "notes": row.notes,
        "createdAt": ensure_aware(row.created_at) if row.created_at else None,
        "updatedAt": ensure_aware(row.updated_at) if row.updated_at else None,
    }


def _record_values(record: ShiftRecord) -> Dict[str, Any]:
    document = shift_to_document(record)
    return {
        "id": record.id,
        "user_id": record.resource_id,
        "nickname": record.display_name,
        "date": record.date,
        "start_time": record.start_time,
        "end_time": record.end_time,
        "kind": record.kind.value,
        "subject": record.subject,
        "status": record.status.value,
        "classesJSON": json.dumps(document["classes"]),
        "requestedChangesJSON": json.dumps(document["requestedChanges"]) if record.requested_change else None,
        "notes": record.notes,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def fetch_shifts(
    session,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    resource_id: Optional[str] = None,
    shift_id: Optional[str] = None,
    include_deleted: bool = False,
) -> List[ShiftRecord]:
    """Load and normalize shifts; malformed rows are logged and skipped."""
    stmt = (
        select(ShiftRow)
        .order_by(ShiftRow.date, ShiftRow.start_time, ShiftRow.id)
        .execution_options(populate_existing=True)
    )
    if year is not None and month is not None:
        first, last = month_bounds(year, month)
        stmt = stmt.where(ShiftRow.date >= first, ShiftRow.date <= last)
    if resource_id:
        stmt = stmt.where(ShiftRow.user_id == resource_id)
    if shift_id:
        stmt = stmt.where(ShiftRow.id == shift_id)
    hidden = [ShiftStatus.PURGED.value]
    if not include_deleted:
        hidden.append(ShiftStatus.DELETED.value)
    stmt = stmt.where(ShiftRow.status.not_in(hidden))
    records: List[ShiftRecord] = []
    for row in session.scalars(stmt):
        try:
            records.append(shift_from_document(_row_to_document(row)))
        except MalformedDocument as exc:
            log.warning("Quarantined shift %s: %s", row.id, exc.message)
    return records


def get_shift(session, shift_id: str) -> ShiftRecord:
    """Load one shift in any status, purged included."""
    row = session.get(ShiftRow, shift_id, populate_existing=True)
    if row is None:
        raise NotFound(f"Shift {shift_id} was not found.", shift_id=shift_id)
    return shift_from_document(_row_to_document(row))


def write_shift(
    session,
    record: ShiftRecord,
    expected_prior_status: Optional[ShiftStatus | str],
    *,
    commit: bool = True,
) -> ShiftRecord:
    """Persist ``record`` only if the stored status still equals ``expected_prior_status``.

    ``expected_prior_status=None`` inserts a new shift.
    """
    values = _record_values(record)
    if expected_prior_status is None:
        if session.get(ShiftRow, record.id) is not None:
            raise ConflictingWrite(f"Shift {record.id} already exists.", shift_id=record.id)
        session.add(ShiftRow(**values))
        session.flush()
    else:
        expected = ShiftStatus(expected_prior_status).value
        result = session.execute(
            update(ShiftRow)
            .where(ShiftRow.id == record.id, ShiftRow.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            actual = session.execute(select(ShiftRow.status).where(ShiftRow.id == record.id)).scalar_one_or_none()
            if actual is None:
                raise NotFound(f"Shift {record.id} was not found.", shift_id=record.id)
            log.info("Write conflict on shift %s: expected %s, found %s", record.id, expected, actual)
            raise ConflictingWrite(
                f"Shift {record.id} changed from '{expected}' to '{actual}' before this write.",
                shift_id=record.id,
                expected_status=expected,
                actual_status=actual,
            )
    if commit:
        session.commit()
    return record


def delete_shift(session, shift_id: str, *, commit: bool = True) -> None:
    """Physically remove a purged shift."""
    row = session.get(ShiftRow, shift_id, populate_existing=True)
    if row is None:
        raise NotFound(f"Shift {shift_id} was not found.", shift_id=shift_id)
    if row.status != ShiftStatus.PURGED.value:
        raise InvalidTransition(
            f"Only purged shifts can be removed; shift {shift_id} is '{row.status}'.",
            shift_id=shift_id,
        )
    session.delete(row)
    if commit:
        session.commit()


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Shift",
    target_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    *,
    commit: bool = True,
) -> AuditLog:
    log_entry = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log_entry)
    if commit:
        session.commit()
    return log_entry


def audit_trail(session, target_id: str) -> List[AuditLog]:
    stmt = select(AuditLog).where(AuditLog.target_id == target_id).order_by(AuditLog.id)
    return list(session.scalars(stmt))


def record_shift_report(
    session,
    shift_id: str,
    user_id: str,
    report: CompletionReport,
    *,
    commit: bool = True,
) -> ShiftReport:
    payload = report.to_dict()
    entry = ShiftReport(
        shift_id=shift_id,
        user_id=user_id,
        taskCountsJSON=json.dumps(payload["taskCounts"]),
        comments=payload["comments"],
    )
    session.add(entry)
    if commit:
        session.commit()
    return entry


def shift_reports(session, shift_id: str) -> List[ShiftReport]:
    stmt = select(ShiftReport).where(ShiftReport.shift_id == shift_id).order_by(ShiftReport.id)
    return list(session.scalars(stmt))
