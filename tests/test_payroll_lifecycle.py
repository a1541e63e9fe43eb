"""
PayDesk - Payroll Lifecycle Tests

Entry status transitions and the derived period status.
"""

import uuid
from datetime import date, datetime, timezone

import pytest

from paydesk.models.payroll import EntryStatus, PayrollEntry, PeriodStatus
from paydesk.services.payroll_lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    apply_transition,
    can_transition,
    derive_period_status,
    recalculation_status,
)
from paydesk.utils.error_handling import InvalidTransitionError, PaymentConfirmationRequiredError


NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)

LEGAL = {
    (EntryStatus.PENDING, EntryStatus.PROCESSING),
    (EntryStatus.PENDING, EntryStatus.CANCELLED),
    (EntryStatus.PROCESSING, EntryStatus.APPROVED),
    (EntryStatus.PROCESSING, EntryStatus.REJECTED),
    (EntryStatus.PROCESSING, EntryStatus.CANCELLED),
    (EntryStatus.APPROVED, EntryStatus.PAID),
    (EntryStatus.APPROVED, EntryStatus.CANCELLED),
}

ILLEGAL = [
    (current, requested)
    for current in EntryStatus
    for requested in EntryStatus
    if (current, requested) not in LEGAL
]


def make_entry(status: EntryStatus, **kwargs) -> PayrollEntry:
    return PayrollEntry(id=uuid.uuid4(), employee_id=uuid.uuid4(), status=status, **kwargs)


class TestTransitionTable:
    """Only the documented transitions are allowed."""

    def test_table_matches_workflow(self):
        """The transition table holds exactly the workflow's edges."""
        allowed = {(c, r) for c, targets in ALLOWED_TRANSITIONS.items() for r in targets}
        assert allowed == LEGAL

    def test_terminal_statuses(self):
        """Paid, rejected and cancelled have no way out."""
        assert TERMINAL_STATUSES == {EntryStatus.PAID, EntryStatus.REJECTED, EntryStatus.CANCELLED}

    @pytest.mark.parametrize("current,requested", ILLEGAL)
    def test_illegal_transition_rejected(self, current, requested):
        """Every unlisted transition is refused and leaves the entry as it was."""
        entry = make_entry(current, payment_reference="TRX-1")

        assert not can_transition(current, requested)
        with pytest.raises(InvalidTransitionError):
            apply_transition(entry, requested)
        assert entry.status == current

    def test_pending_cannot_skip_to_paid(self):
        """Pending cannot jump straight to paid."""
        entry = make_entry(EntryStatus.PENDING)

        with pytest.raises(InvalidTransitionError) as exc_info:
            apply_transition(entry, EntryStatus.PAID, payment_reference="TRX-1")

        assert exc_info.value.details["current_status"] == "pending"
        assert exc_info.value.details["requested_status"] == "paid"


class TestApplyTransition:
    """Timestamps and history events."""

    def test_approval_stamps_approver(self):
        """Approval records when and by whom."""
        approver = uuid.uuid4()
        entry = make_entry(EntryStatus.PROCESSING)

        event = apply_transition(entry, EntryStatus.APPROVED, actor_id=approver, at=NOW)

        assert entry.status == EntryStatus.APPROVED
        assert entry.approved_at == NOW
        assert entry.approved_by_id == approver
        assert event.from_status == EntryStatus.PROCESSING
        assert event.to_status == EntryStatus.APPROVED
        assert event.entry_id == entry.id

    def test_rejection_keeps_reason(self):
        """Rejection stores its reason on the entry and the event."""
        entry = make_entry(EntryStatus.PROCESSING)

        event = apply_transition(entry, EntryStatus.REJECTED, reason="wrong grade", at=NOW)

        assert entry.rejection_reason == "wrong grade"
        assert entry.rejected_at == NOW
        assert event.remarks == "wrong grade"

    def test_paid_requires_reference(self):
        """Payment needs a payment reference."""
        entry = make_entry(EntryStatus.APPROVED)

        with pytest.raises(PaymentConfirmationRequiredError):
            apply_transition(entry, EntryStatus.PAID)
        assert entry.status == EntryStatus.APPROVED

    def test_paid_with_reference(self):
        """Payment stamps reference, payment date and paid time."""
        entry = make_entry(EntryStatus.APPROVED)

        apply_transition(entry, EntryStatus.PAID, payment_reference="TRX-42", at=NOW)

        assert entry.status == EntryStatus.PAID
        assert entry.payment_reference == "TRX-42"
        assert entry.payment_date == date(2024, 3, 31)
        assert entry.paid_at == NOW

    def test_previously_attached_reference_is_enough(self):
        """A reference attached while approved satisfies payment."""
        entry = make_entry(EntryStatus.APPROVED, payment_reference="TRX-7")

        apply_transition(entry, EntryStatus.PAID, at=NOW)

        assert entry.payment_reference == "TRX-7"


class TestRecalculationStatus:
    """Which entries may have their figures recomputed."""

    def test_pending_stays_pending(self):
        """A pending entry is recalculated without a status change."""
        assert recalculation_status(EntryStatus.PENDING) == EntryStatus.PENDING

    def test_processing_stays_processing(self):
        """A processing entry keeps its status outside a batch run."""
        assert recalculation_status(EntryStatus.PROCESSING) == EntryStatus.PROCESSING

    def test_batch_moves_pending_to_processing(self):
        """Inside a batch run the entry ends up processing."""
        assert recalculation_status(EntryStatus.PENDING, in_batch=True) == EntryStatus.PROCESSING
        assert recalculation_status(EntryStatus.PROCESSING, in_batch=True) == EntryStatus.PROCESSING

    @pytest.mark.parametrize("current", [
        EntryStatus.APPROVED,
        EntryStatus.REJECTED,
        EntryStatus.CANCELLED,
        EntryStatus.PAID,
    ])
    def test_closed_entries_are_refused(self, current):
        """Approved and terminal entries are never silently reopened."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            recalculation_status(current)

        assert exc_info.value.details["current_status"] == current.value
        assert exc_info.value.details["requested_status"] == "pending"

    def test_batch_refusal_names_processing(self):
        """The refused target inside a batch run is processing."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            recalculation_status(EntryStatus.APPROVED, in_batch=True)

        assert exc_info.value.requested == "processing"
