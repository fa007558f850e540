from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from config import EXPORT_DIR
from database import fetch_shifts, record_audit_log, write_shift
from errors import ConflictingWrite, MalformedDocument, PermissionDenied
from shift_model import Actor, ActorRole, shift_from_document, shift_to_document

log = logging.getLogger("shiftboard.data_exchange")


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def export_shifts(
    session,
    year: int,
    month: int,
    *,
    include_deleted: bool = True,
    target_dir: Optional[Path] = None,
) -> Path:
    """Write the month's shift documents to a timestamped JSON file."""
    records = fetch_shifts(session, year=year, month=month, include_deleted=include_deleted)
    directory = target_dir or EXPORT_DIR
    directory.mkdir(parents=True, exist_ok=True)
    filename = directory / f"shifts_{int(year):04d}_{int(month):02d}_{_timestamp()}.json"
    payload = {
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "period": f"{int(year):04d}-{int(month):02d}",
        "shifts": [shift_to_document(record) for record in records],
    }
    filename.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return filename


def import_shifts(session, file_path: Path, actor: Actor) -> Dict[str, int]:
    """Restore shifts from an export file; existing ids and malformed documents are skipped.

    Documents keep the status they were exported with, so a restore bypasses the
    draft-or-pending creation rule and is reserved for privileged actors.
    """
    if actor.role != ActorRole.PRIVILEGED:
        raise PermissionDenied("Only privileged actors may import shifts.")
    data = json.loads(file_path.read_text(encoding="utf-8"))
    documents = data.get("shifts", []) if isinstance(data, dict) else data
    if not isinstance(documents, list):
        raise ValueError("Shift import file must contain a list of shifts.")
    created = 0
    existing = 0
    malformed = 0
    for document in documents:
        try:
            record = shift_from_document(document)
        except MalformedDocument as exc:
            log.warning("Skipping malformed shift document: %s", exc.message)
            malformed += 1
            continue
        try:
            write_shift(session, record, None, commit=False)
        except ConflictingWrite:
            existing += 1
            continue
        created += 1
    record_audit_log(
        session,
        user_id=actor.id,
        action="SHIFT_IMPORT",
        target_type="File",
        payload={"file": file_path.name, "created": created, "existing": existing, "malformed": malformed},
        commit=False,
    )
    session.commit()
    return {"created": created, "existing": existing, "malformed": malformed}
