# billing_api/services/ledger.py
"""
Payment ledger attached to a bill.

``paymentHistory`` is the source of truth; ``paidAmount`` is always the full
re-sum of the surviving entries, never adjusted in place.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from billing_api.errors import ConflictError, NotFoundError
from billing_api.models.bills import Bill, BillInfo, PaymentEntry, PaymentIn, PaymentMethod
from billing_api.models.common import as_utc, to_money

INITIAL_PAYMENT_NOTE = "Initial payment at bill creation"
UPDATE_PAYMENT_NOTE = "Payment added during bill update"
MIGRATED_PAYMENT_NOTE = "Initial payment (migrated from paidAmount)"


def new_id() -> str:
    return uuid.uuid4().hex


def ledger_total(entries: Iterable[PaymentEntry]) -> Decimal:
    return to_money(sum((entry.amount for entry in entries), Decimal("0")))


def remaining_due(bill: Bill) -> Decimal:
    return bill.total_amount - ledger_total(bill.payment_history)


def make_entry(
    amount,
    recorded_by: str,
    now: datetime,
    payment_date: Optional[datetime] = None,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    notes: str = "",
) -> PaymentEntry:
    return PaymentEntry(
        id=new_id(),
        amount=to_money(amount),
        payment_date=as_utc(payment_date) or now,
        payment_method=payment_method,
        notes=notes or "",
        recorded_by_user_id=recorded_by,
        created_at=now,
        updated_at=now,
    )


def record_payment(bill: Bill, payment: PaymentIn, recorded_by: str, now: datetime) -> PaymentEntry:
    """
    Append a payment after checking it fits in the outstanding balance.

    Expects ``bill.total_amount`` to be current. Nothing on the bill changes
    when the guard rejects the payment.
    """
    remaining = remaining_due(bill)
    if payment.amount > remaining:
        raise ConflictError(
            f"Payment amount (₹{payment.amount}) exceeds due amount (₹{to_money(remaining)})"
        )

    entry = make_entry(
        payment.amount,
        recorded_by,
        now,
        payment_date=payment.payment_date,
        payment_method=payment.payment_method,
        notes=payment.notes,
    )
    bill.payment_history.append(entry)
    bill.paid_amount = ledger_total(bill.payment_history)
    return entry


def remove_payment(bill: Bill, payment_id: str) -> PaymentEntry:
    for index, entry in enumerate(bill.payment_history):
        if entry.id == payment_id:
            break
    else:
        raise NotFoundError("Payment not found")

    removed = bill.payment_history.pop(index)
    bill.paid_amount = ledger_total(bill.payment_history)
    return removed


def payment_summary(bill: Bill) -> BillInfo:
    history = bill.payment_history
    return BillInfo(
        bill_number=bill.bill_number,
        client_name=bill.client_details.client_name,
        total_amount=bill.total_amount,
        paid_amount=bill.paid_amount,
        due_amount=bill.due_amount,
        payment_count=len(history),
        last_payment_date=history[-1].payment_date if history else None,
    )


def history_newest_first(bill: Bill):
    return sorted(bill.payment_history, key=lambda entry: entry.payment_date, reverse=True)
