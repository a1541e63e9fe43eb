"""
PayDesk - Payroll Entry Lifecycle

    pending -> processing -> approved -> paid
       |           |            |
       +-----------+------------+--> cancelled
                   +--> rejected

Paid, rejected and cancelled are terminal. A period's status is never set
directly; it is derived from the statuses of its entries.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Dict, FrozenSet, Iterable, Optional

from paydesk.models.base import utcnow
from paydesk.models.payroll import EntryStatus, PayrollEntry, PayrollEntryEvent, PeriodStatus
from paydesk.utils.error_handling import InvalidTransitionError, PaymentConfirmationRequiredError

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[EntryStatus, FrozenSet[EntryStatus]] = {
    EntryStatus.PENDING: frozenset({EntryStatus.PROCESSING, EntryStatus.CANCELLED}),
    EntryStatus.PROCESSING: frozenset({EntryStatus.APPROVED, EntryStatus.REJECTED, EntryStatus.CANCELLED}),
    EntryStatus.APPROVED: frozenset({EntryStatus.PAID, EntryStatus.CANCELLED}),
    EntryStatus.PAID: frozenset(),
    EntryStatus.REJECTED: frozenset(),
    EntryStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)
RECALCULABLE_STATUSES = frozenset({EntryStatus.PENDING, EntryStatus.PROCESSING})


def can_transition(current: EntryStatus, requested: EntryStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: EntryStatus, requested: EntryStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)


def apply_transition(
    entry: PayrollEntry,
    requested: EntryStatus,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    payment_reference: Optional[str] = None,
    payment_date: Optional[date] = None,
    at: Optional[datetime] = None,
) -> PayrollEntryEvent:
    """
    Move an entry to `requested`, stamping the matching timestamps, and
    return the history event for the caller to persist.
    """
    current = entry.status
    ensure_transition(current, requested)
    now = at or utcnow()
    
    if requested == EntryStatus.PROCESSING:
        entry.processed_at = now
    elif requested == EntryStatus.APPROVED:
        entry.approved_at = now
        entry.approved_by_id = actor_id
    elif requested == EntryStatus.REJECTED:
        entry.rejected_at = now
        entry.rejection_reason = reason
    elif requested == EntryStatus.CANCELLED:
        entry.cancelled_at = now
        entry.cancellation_reason = reason
    elif requested == EntryStatus.PAID:
        reference = payment_reference or entry.payment_reference
        if not reference:
            raise PaymentConfirmationRequiredError(entry.id)
        entry.payment_reference = reference
        entry.payment_date = payment_date or now.date()
        entry.paid_at = now
    
    entry.status = requested
    entry.updated_by_id = actor_id
    event = PayrollEntryEvent(
        from_status=current,
        to_status=requested,
        actor_id=actor_id,
        remarks=reason or payment_reference,
        occurred_at=now,
        entry_id=entry.id,
    )
    logger.info(
        "Payroll entry %s moved %s -> %s",
        entry.id, current.value, requested.value,
    )
    return event


def derive_period_status(statuses: Iterable[EntryStatus]) -> PeriodStatus:
    """
    Period status from its entries, ignoring cancelled ones.
    
    A period with no live entries is a draft.
    """
    live = [s for s in statuses if s != EntryStatus.CANCELLED]
    if not live:
        return PeriodStatus.DRAFT
    if all(s == EntryStatus.PAID for s in live):
        return PeriodStatus.PAID
    if all(s in (EntryStatus.APPROVED, EntryStatus.PAID) for s in live):
        return PeriodStatus.APPROVED
    if any(s == EntryStatus.PROCESSING for s in live):
        return PeriodStatus.PROCESSING
    return PeriodStatus.DRAFT


def recalculation_status(current: EntryStatus, in_batch: bool = False) -> EntryStatus:
    """
    Status an entry holds after its figures are recomputed.
    
    Only pending and processing entries can be recalculated. A batch run
    moves a pending entry to processing; otherwise the status is kept.
    """
    if current not in RECALCULABLE_STATUSES:
        requested = EntryStatus.PROCESSING if in_batch else EntryStatus.PENDING
        raise InvalidTransitionError(current.value, requested.value)
    return EntryStatus.PROCESSING if in_batch else current
