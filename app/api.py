"""FastAPI wrapper over the shift store, lifecycle engine and timeline layout.

Authentication happens upstream; the proxy in front of this service forwards the
resolved actor in the ``X-Actor-Id`` and ``X-Actor-Role`` headers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

import database
from database import audit_trail, get_shift, init_database, shift_reports
from errors import (
    ConflictingWrite,
    InvalidDelta,
    InvalidInterval,
    InvalidReport,
    InvalidTransition,
    MalformedDocument,
    NotFound,
    PermissionDenied,
    ShiftError,
)
from holiday_calendar import HolidayCalendar, load_holidays
from layout import DayLayout
from lifecycle import allowed_actions
from shift_model import Actor, ActorRole, ShiftRecord, shift_to_document
from validation import validate_shifts
from wages import load_wages, monthly_wage_summary
from workflow import (
    add_shift,
    apply_action,
    list_shifts,
    month_layout,
    remove_purged,
    request_change,
    withdraw_change_request,
)

ERROR_STATUS = {
    InvalidInterval: 400,
    InvalidDelta: 400,
    InvalidReport: 400,
    MalformedDocument: 400,
    PermissionDenied: 403,
    NotFound: 404,
    InvalidTransition: 409,
    ConflictingWrite: 409,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Shift Board API", version="0.1", lifespan=lifespan)


@app.exception_handler(ShiftError)
async def shift_error_handler(_: Request, exc: ShiftError) -> JSONResponse:
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_session_factory():
    return database.SessionLocal


def get_db(session_factory=Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_holidays() -> HolidayCalendar:
    return load_holidays()


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Actor headers are required")
    try:
        return Actor(id=x_actor_id.strip(), role=ActorRole(x_actor_role.strip().lower()))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown actor role '{x_actor_role}'") from exc


def _check_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")


def _serialize_shift(record: ShiftRecord) -> Dict[str, Any]:
    payload = shift_to_document(record)
    payload["allowedActions"] = [action.value for action in allowed_actions(record.status)]
    return payload


def _serialize_layout(layout: DayLayout) -> Dict[str, Any]:
    def offsets(item) -> Dict[str, Any]:
        return {
            "startOffset": float(item.start_offset),
            "endOffset": float(item.end_offset),
            "startOffsetExact": str(item.start_offset),
            "endOffsetExact": str(item.end_offset),
        }

    return {
        "userId": layout.resource_id,
        "date": layout.date.isoformat() if layout.date else None,
        "holiday": layout.holiday,
        "laneCount": layout.lane_count,
        "placements": [
            {"shiftId": item.shift_id, "lane": item.lane, **offsets(item)} for item in layout.placements
        ],
        "classOverlays": [
            {"shiftId": item.shift_id, "slotIndex": item.slot_index, "lane": item.lane, **offsets(item)}
            for item in layout.slot_overlays
        ],
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/shifts")
def shifts_for_month(
    year: int = Query(...),
    month: int = Query(...),
    include_deleted: bool = Query(False),
    db=Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    _check_month(year, month)
    records = list_shifts(db, actor, year, month, include_deleted=include_deleted)
    return JSONResponse(
        content=jsonable_encoder(
            {"period": f"{year:04d}-{month:02d}", "shifts": [_serialize_shift(record) for record in records]}
        )
    )


@app.post("/api/v1/shifts", status_code=201)
def create_shift_endpoint(
    payload: Dict[str, Any],
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    resource_id = payload.get("userId") or payload.get("resourceId")
    if actor.role == ActorRole.STAFF:
        resource_id = resource_id or actor.id
    if not resource_id:
        raise HTTPException(status_code=400, detail="userId is required")
    try:
        record = add_shift(
            session_factory,
            actor,
            resource_id=str(resource_id),
            display_name=payload.get("nickname") or "",
            date=payload.get("date"),
            start_time=payload.get("startTime"),
            end_time=payload.get("endTime"),
            kind=payload.get("type") or "staff",
            subject=payload.get("subject"),
            class_slots=payload.get("classes") or [],
            notes=payload.get("notes") or "",
            status=payload.get("status") or "draft",
        )
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid shift payload: {exc}") from exc
    return JSONResponse(status_code=201, content=jsonable_encoder(_serialize_shift(record)))


@app.get("/api/v1/shifts/{shift_id}")
def shift_detail(shift_id: str, db=Depends(get_db), actor: Actor = Depends(get_actor)) -> JSONResponse:
    record = get_shift(db, shift_id)
    if actor.role == ActorRole.STAFF and record.resource_id != actor.id:
        raise NotFound(f"Shift {shift_id} was not found.", shift_id=shift_id)
    return JSONResponse(content=jsonable_encoder(_serialize_shift(record)))


@app.post("/api/v1/shifts/{shift_id}/actions/{action}")
def shift_action(
    shift_id: str,
    action: str,
    report: Optional[Dict[str, Any]] = Body(None),
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    record = apply_action(session_factory, shift_id, action, actor, report=report)
    return JSONResponse(content=jsonable_encoder(_serialize_shift(record)))


@app.post("/api/v1/shifts/{shift_id}/change-request")
def propose_shift_change(
    shift_id: str,
    payload: Dict[str, Any],
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    record = request_change(session_factory, shift_id, payload, actor)
    return JSONResponse(content=jsonable_encoder(_serialize_shift(record)))


@app.delete("/api/v1/shifts/{shift_id}/change-request")
def withdraw_shift_change(
    shift_id: str,
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    record = withdraw_change_request(session_factory, shift_id, actor)
    return JSONResponse(content=jsonable_encoder(_serialize_shift(record)))


@app.delete("/api/v1/shifts/{shift_id}", status_code=204)
def remove_shift(
    shift_id: str,
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_actor),
) -> Response:
    remove_purged(session_factory, shift_id, actor)
    return Response(status_code=204)


@app.get("/api/v1/shifts/{shift_id}/audit")
def shift_audit(shift_id: str, db=Depends(get_db), actor: Actor = Depends(get_actor)) -> JSONResponse:
    if actor.role != ActorRole.PRIVILEGED:
        raise PermissionDenied("Only privileged actors may read the audit trail.", shift_id=shift_id)
    entries = [
        {
            "user": entry.user_id,
            "action": entry.action,
            "payload": entry.payload_dict(),
            "createdAt": entry.created_at,
        }
        for entry in audit_trail(db, shift_id)
    ]
    return JSONResponse(content=jsonable_encoder({"shiftId": shift_id, "entries": entries}))


@app.get("/api/v1/shifts/{shift_id}/reports")
def shift_report_list(shift_id: str, db=Depends(get_db), actor: Actor = Depends(get_actor)) -> JSONResponse:
    record = get_shift(db, shift_id)
    if actor.role == ActorRole.STAFF and record.resource_id != actor.id:
        raise NotFound(f"Shift {shift_id} was not found.", shift_id=shift_id)
    reports = [
        {
            "user": entry.user_id,
            "taskCounts": entry.task_counts(),
            "comments": entry.comments,
            "createdAt": entry.created_at,
        }
        for entry in shift_reports(db, shift_id)
    ]
    return JSONResponse(content=jsonable_encoder({"shiftId": shift_id, "reports": reports}))


@app.get("/api/v1/layout/{year}/{month}")
def timeline_layout(
    year: int,
    month: int,
    db=Depends(get_db),
    actor: Actor = Depends(get_actor),
    holidays: HolidayCalendar = Depends(get_holidays),
) -> JSONResponse:
    _check_month(year, month)
    layouts = month_layout(db, actor, year, month, holidays=holidays)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "period": f"{year:04d}-{month:02d}",
                "holidays": holidays.for_month(year, month),
                "days": [_serialize_layout(layout) for layout in layouts],
            }
        )
    )


@app.get("/api/v1/schedules/{year}/{month}/validate")
def validate_schedule_endpoint(
    year: int,
    month: int,
    db=Depends(get_db),
    actor: Actor = Depends(get_actor),
    holidays: HolidayCalendar = Depends(get_holidays),
) -> JSONResponse:
    _check_month(year, month)
    report = validate_shifts(list_shifts(db, actor, year, month), year, month, holidays=holidays)
    return JSONResponse(content=jsonable_encoder(report))


@app.get("/api/v1/wages/{year}/{month}")
def wage_summary(
    year: int,
    month: int,
    db=Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> JSONResponse:
    _check_month(year, month)
    summary = monthly_wage_summary(list_shifts(db, actor, year, month), load_wages())
    return JSONResponse(content=jsonable_encoder({"period": f"{year:04d}-{month:02d}", "resources": summary}))


@app.get("/api/v1/holidays/{year}/{month}")
def month_holidays(
    year: int,
    month: int,
    holidays: HolidayCalendar = Depends(get_holidays),
) -> JSONResponse:
    _check_month(year, month)
    return JSONResponse(content=jsonable_encoder({"holidays": holidays.for_month(year, month)}))
