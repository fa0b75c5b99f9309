# billing_api/services/status.py
"""
Bill lifecycle: Draft -> {Sent, Partial, Paid}, then back and forth among
Sent/Partial/Paid as the paid amount changes.

Status is never trusted from input. Whatever a request asks for is reconciled
here against paid vs. total every time the bill is saved.
"""

from datetime import datetime
from decimal import Decimal

from billing_api.errors import BillLockedError
from billing_api.models.bills import Bill, BillStatus
from billing_api.services.access import Actor

LOCK_MESSAGES = {
    "edit": (
        "Cannot edit paid bills. Paid bills are locked to maintain data integrity. "
        "Only Admin users can edit paid bills."
    ),
    "modify": "Cannot modify paid bills. Paid bills are locked to maintain data integrity.",
    "delete": "Cannot delete paid bills. Paid bills are locked to maintain data integrity.",
}


def resolve_status(current: BillStatus, paid_amount: Decimal, total_amount: Decimal) -> BillStatus:
    if paid_amount == 0:
        # Nothing collected. Draft stays Draft until someone sends the bill.
        if current in (BillStatus.PAID, BillStatus.PARTIAL):
            return BillStatus.SENT
        return current
    if paid_amount >= total_amount:
        return BillStatus.PAID
    return BillStatus.PARTIAL


def apply_status(bill: Bill, now: datetime) -> Bill:
    """Set ``bill.status`` from its (already recomputed) totals.

    paymentDate records the first time the bill became fully paid: it is set
    once and left alone afterwards, including when a removed payment moves
    the bill back to Partial or Sent.
    """
    bill.status = resolve_status(bill.status, bill.paid_amount, bill.total_amount)
    if bill.status == BillStatus.PAID and bill.payment_date is None:
        bill.payment_date = now
    return bill


def is_locked(bill: Bill, actor: Actor) -> bool:
    return bill.status == BillStatus.PAID and not actor.is_privileged


def ensure_editable(bill: Bill, actor: Actor, action: str = "edit") -> None:
    """Reject mutation of a persisted Paid bill unless the actor is Admin."""
    if is_locked(bill, actor):
        raise BillLockedError(LOCK_MESSAGES[action])
