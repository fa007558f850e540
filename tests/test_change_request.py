from __future__ import annotations

import datetime
import random
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from errors import InvalidDelta, InvalidTransition, PermissionDenied  # noqa: E402
from lifecycle import ShiftAction, create_shift, propose_change, transition, withdraw_change  # noqa: E402
from shift_model import Actor, ActorRole, ChangeDelta, ShiftKind, ShiftStatus  # noqa: E402

UTC = datetime.timezone.utc
CREATED = datetime.datetime(2025, 6, 1, 8, 0, tzinfo=UTC)

STAFF = Actor(id="u-1", role=ActorRole.STAFF)
MANAGER = Actor(id="m-1", role=ActorRole.PRIVILEGED)


def approved_shift(**overrides):
    fields = dict(
        resource_id="u-1",
        display_name="Aki",
        date="2025-06-10",
        start_time="10:00",
        end_time="15:00",
        shift_id="s-1",
        now=CREATED,
    )
    fields.update(overrides)
    record = create_shift(STAFF, **fields)
    record = transition(record, ShiftAction.SUBMIT, STAFF, now=CREATED)
    return transition(record, ShiftAction.APPROVE, MANAGER, now=CREATED)


def canonical(record):
    return (record.date, record.start_time, record.end_time, record.kind, record.subject, record.class_slots)


class ProposeChangeTests(unittest.TestCase):
    def test_proposal_moves_to_draft_and_keeps_canonical_fields(self) -> None:
        record = approved_shift()
        proposed = propose_change(record, {"endTime": "18:00"}, STAFF)
        self.assertEqual(proposed.status, ShiftStatus.DRAFT)
        self.assertEqual(proposed.requested_change, ChangeDelta(end_time=datetime.time(18, 0)))
        self.assertEqual(canonical(proposed), canonical(record))

    def test_submit_carries_the_same_delta(self) -> None:
        proposed = propose_change(approved_shift(), {"startTime": "09:00"}, STAFF)
        submitted = transition(proposed, ShiftAction.SUBMIT, STAFF)
        self.assertEqual(submitted.status, ShiftStatus.PENDING)
        self.assertEqual(submitted.requested_change, proposed.requested_change)

    def test_only_approved_shifts_accept_proposals(self) -> None:
        draft = create_shift(STAFF, resource_id="u-1", date="2025-06-10", start_time="10:00", end_time="15:00")
        with self.assertRaises(InvalidTransition):
            propose_change(draft, {"endTime": "16:00"}, STAFF)

    def test_inverted_delta_is_rejected_at_proposal(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), {"startTime": "16:00"}, STAFF)

    def test_delta_that_strands_a_class_slot_is_rejected(self) -> None:
        record = approved_shift(class_slots=[{"startTime": "13:00", "endTime": "14:00"}])
        with self.assertRaises(InvalidDelta):
            propose_change(record, {"endTime": "13:30"}, STAFF)

    def test_empty_delta_is_rejected(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), {}, STAFF)

    def test_unknown_delta_field_is_rejected(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), {"status": "approved"}, STAFF)

    def test_delta_with_a_utc_offset_is_rejected(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), {"endTime": "18:00+09:00"}, STAFF)

    def test_delta_with_a_non_text_kind_is_rejected(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), {"type": ["class"]}, STAFF)

    def test_non_mapping_delta_is_rejected(self) -> None:
        with self.assertRaises(InvalidDelta):
            propose_change(approved_shift(), ["endTime", "18:00"], STAFF)

    def test_staff_cannot_propose_on_someone_elses_shift(self) -> None:
        other = Actor(id="u-2", role=ActorRole.STAFF)
        with self.assertRaises(PermissionDenied):
            propose_change(approved_shift(), {"endTime": "16:00"}, other)


class ResolveChangeTests(unittest.TestCase):
    def test_reject_restores_the_approved_shift(self) -> None:
        record = approved_shift()
        proposed = propose_change(record, {"endTime": "18:00"}, STAFF)
        submitted = transition(proposed, ShiftAction.SUBMIT, STAFF)
        rejected = transition(submitted, ShiftAction.REJECT, MANAGER)
        self.assertEqual(rejected.status, ShiftStatus.APPROVED)
        self.assertEqual(rejected.end_time, datetime.time(15, 0))
        self.assertIsNone(rejected.requested_change)

    def test_approve_merges_the_delta(self) -> None:
        record = approved_shift(start_time="10:00", end_time="18:00")
        proposed = propose_change(record, {"startTime": "14:00"}, STAFF)
        pending = transition(proposed, ShiftAction.SUBMIT, STAFF)
        approved = transition(pending, ShiftAction.APPROVE, MANAGER)
        self.assertEqual(approved.status, ShiftStatus.APPROVED)
        self.assertEqual(approved.start_time, datetime.time(14, 0))
        self.assertEqual(approved.end_time, datetime.time(18, 0))
        self.assertIsNone(approved.requested_change)

    def test_approve_overrides_only_the_fields_in_the_delta(self) -> None:
        record = approved_shift(subject="Maths")
        proposed = propose_change(record, {"date": "2025-06-11", "type": "class"}, STAFF)
        approved = transition(transition(proposed, "submit", STAFF), "approve", MANAGER)
        self.assertEqual(approved.date, datetime.date(2025, 6, 11))
        self.assertEqual(approved.kind, ShiftKind.CLASS)
        self.assertEqual(approved.subject, "Maths")
        self.assertEqual((approved.start_time, approved.end_time), (record.start_time, record.end_time))

    def test_staff_cannot_approve_their_own_change(self) -> None:
        pending = transition(propose_change(approved_shift(), {"endTime": "16:00"}, STAFF), "submit", STAFF)
        with self.assertRaises(PermissionDenied):
            transition(pending, ShiftAction.APPROVE, STAFF)
        self.assertEqual(pending.status, ShiftStatus.PENDING)

    def test_withdraw_returns_to_approved(self) -> None:
        record = approved_shift()
        proposed = propose_change(record, {"endTime": "16:00"}, STAFF)
        withdrawn = withdraw_change(proposed, STAFF)
        self.assertEqual(withdrawn.status, ShiftStatus.APPROVED)
        self.assertIsNone(withdrawn.requested_change)
        self.assertEqual(canonical(withdrawn), canonical(record))

    def test_withdraw_without_a_request_is_invalid(self) -> None:
        with self.assertRaises(InvalidTransition):
            withdraw_change(approved_shift(), STAFF)


class RejectRestoresCanonicalFieldsTests(unittest.TestCase):
    def test_reject_always_restores_pre_proposal_values(self) -> None:
        rng = random.Random(20250610)

        def clock(minutes: int) -> datetime.time:
            return datetime.time(minutes // 60, minutes % 60)

        for _ in range(200):
            start = rng.randrange(8 * 60, 20 * 60, 15)
            end = rng.randrange(start + 15, 23 * 60 + 1, 15)
            record = approved_shift(start_time=clock(start), end_time=clock(end))
            new_start = rng.randrange(7 * 60, 20 * 60, 15)
            new_end = rng.randrange(new_start + 15, 23 * 60 + 1, 15)
            delta = {"startTime": clock(new_start), "endTime": clock(new_end)}
            if rng.random() < 0.5:
                delta["date"] = "2025-06-%02d" % rng.randint(1, 30)
            proposed = propose_change(record, delta, STAFF)
            pending = transition(proposed, ShiftAction.SUBMIT, STAFF)
            rejected = transition(pending, ShiftAction.REJECT, MANAGER)
            self.assertEqual(canonical(rejected), canonical(record))
            self.assertEqual(rejected.status, ShiftStatus.APPROVED)
            self.assertIsNone(rejected.requested_change)


if __name__ == "__main__":
    unittest.main()
