# billing_api/services/bill_store.py
"""
Persistence boundary for bills.

Each bill is one row holding the whole aggregate (client snapshot, items,
payment ledger and the derived totals). Every write goes through
``recompute_bill`` right before it is persisted, so the stored totals,
paidAmount and status always agree with the items and the ledger.

Mutations are read-modify-write inside one transaction and are saved with a
version check; if another request saved the bill in between, the whole
read-modify-write is replayed against the fresh row.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from billing_api import config
from billing_api.db.schema import bills
from billing_api.errors import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from billing_api.models.bills import (
    Bill,
    BillIn,
    BillPatch,
    BillStatus,
    PaymentEntry,
    PaymentIn,
    PaymentLedger,
)
from billing_api.models.common import as_utc, utcnow
from billing_api.services import calculator, ledger, numbering, status
from billing_api.services.access import Actor, Scope

logger = logging.getLogger(__name__)

Mutation = Callable[[Bill, datetime], None]


# ---- Derived state ----

def recompute_bill(bill: Bill, now: datetime) -> Bill:
    """Refresh every derived field from items, tax and the ledger."""
    totals = calculator.compute_totals(
        bill.items, bill.tax, ledger.ledger_total(bill.payment_history)
    )
    bill.items = list(totals.items)
    bill.subtotal = totals.subtotal
    bill.tax = totals.tax
    bill.total_amount = totals.total_amount
    bill.paid_amount = totals.paid_amount
    bill.due_amount = totals.due_amount
    return status.apply_status(bill, now)


# ---- Row mapping ----

def row_to_bill(row) -> Bill:
    return Bill(
        id=row["id"],
        bill_number=row["bill_number"],
        client_details=row["client_details"],
        references=row["reference_details"] or [],
        items=row["items"] or [],
        subtotal=row["subtotal"],
        tax=row["tax"],
        total_amount=row["total_amount"],
        paid_amount=row["paid_amount"],
        due_amount=row["due_amount"],
        payment_history=row["payment_history"] or [],
        status=row["status"],
        payment_date=as_utc(row["payment_date"]),
        created_by_user_id=row["created_by"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
        version=row["version"],
    )


def _document_values(bill: Bill) -> dict:
    return {
        "bill_number": bill.bill_number,
        "client_name": bill.client_details.client_name,
        "client_phone": bill.client_details.phone_number,
        "item_names": "\n".join(item.item_name for item in bill.items),
        "client_details": bill.client_details.model_dump(mode="json"),
        "reference_details": [ref.model_dump(mode="json") for ref in bill.references],
        "items": [item.model_dump(mode="json") for item in bill.items],
        "payment_history": [entry.model_dump(mode="json") for entry in bill.payment_history],
        "subtotal": bill.subtotal,
        "tax": bill.tax,
        "total_amount": bill.total_amount,
        "paid_amount": bill.paid_amount,
        "due_amount": bill.due_amount,
        "status": bill.status.value,
        "payment_date": as_utc(bill.payment_date),
        "updated_at": bill.updated_at,
    }


def save_bill(conn: Connection, bill: Bill) -> bool:
    """
    Write the aggregate back if nobody else saved it since it was read.

    Returns False (and writes nothing) when the stored version moved on.
    """
    result = conn.execute(
        update(bills)
        .where(and_(bills.c.id == bill.id, bills.c.version == bill.version))
        .values(version=bill.version + 1, **_document_values(bill))
    )
    if result.rowcount != 1:
        return False
    bill.version += 1
    return True


def _insert_bill(engine: Engine, bill: Bill) -> None:
    with engine.begin() as conn:
        conn.execute(
            insert(bills).values(
                id=bill.id,
                created_by=bill.created_by_user_id,
                created_at=bill.created_at,
                version=bill.version,
                **_document_values(bill),
            )
        )


def _fetch(conn: Connection, bill_id: str, scope: Scope) -> Bill:
    stmt = scope.apply(select(bills).where(bills.c.id == bill_id), bills.c.created_by)
    row = conn.execute(stmt).mappings().first()
    if row is None:
        # Same answer for "missing" and "not yours"
        raise NotFoundError("Bill not found")
    return row_to_bill(row)


def _attempt(engine: Engine, bill_id: str, scope: Scope, step) -> Bill:
    for attempt in range(1, config.WRITE_RETRIES + 1):
        now = utcnow()
        with engine.begin() as conn:
            bill = _fetch(conn, bill_id, scope)
            if step(conn, bill, now):
                return bill
        logger.warning(
            "Bill %s changed while being written (attempt %s of %s)",
            bill_id, attempt, config.WRITE_RETRIES,
        )
    raise ConcurrentUpdateError("Bill was modified by another request, please retry")


def _mutate(engine: Engine, bill_id: str, scope: Scope, mutation: Mutation) -> Bill:
    def step(conn: Connection, bill: Bill, now: datetime) -> bool:
        mutation(bill, now)
        bill.updated_at = now
        recompute_bill(bill, now)
        return save_bill(conn, bill)

    return _attempt(engine, bill_id, scope, step)


# ---- Reads ----

def get_bill(engine: Engine, bill_id: str, scope: Scope) -> Bill:
    with engine.connect() as conn:
        return _fetch(conn, bill_id, scope)


def list_bills(
    engine: Engine,
    scope: Scope,
    status_filter: Optional[BillStatus] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_SIZE,
) -> Tuple[List[Bill], int]:
    """
    Newest bills first, optionally filtered by status and a case-insensitive
    substring match on client name, client phone, bill number or item names.
    Returns (bills on the page, total matches).
    """
    conditions = []
    if status_filter is not None:
        conditions.append(bills.c.status == BillStatus(status_filter).value)

    term = (search or "").strip().lower()
    if term:
        conditions.append(
            or_(
                *(
                    func.lower(column).contains(term, autoescape=True)
                    for column in (
                        bills.c.client_name,
                        bills.c.client_phone,
                        bills.c.bill_number,
                        bills.c.item_names,
                    )
                )
            )
        )

    count_stmt = scope.apply(select(func.count()).select_from(bills), bills.c.created_by)
    stmt = scope.apply(select(bills), bills.c.created_by)
    if conditions:
        count_stmt = count_stmt.where(and_(*conditions))
        stmt = stmt.where(and_(*conditions))

    stmt = (
        stmt.order_by(bills.c.created_at.desc(), bills.c.bill_number.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )

    with engine.connect() as conn:
        total = conn.execute(count_stmt).scalar_one()
        rows = conn.execute(stmt).mappings().all()

    return [row_to_bill(row) for row in rows], total


def list_user_bills(
    engine: Engine,
    actor: Actor,
    user_id: str,
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_SIZE,
) -> Tuple[List[Bill], int]:
    if not actor.is_privileged:
        raise PermissionDeniedError("Access denied")
    return list_bills(engine, Scope.owner(user_id), page=page, limit=limit)


def get_payment_ledger(engine: Engine, bill_id: str, scope: Scope) -> PaymentLedger:
    bill = get_bill(engine, bill_id, scope)
    return PaymentLedger(
        bill_info=ledger.payment_summary(bill),
        payment_history=ledger.history_newest_first(bill),
    )


# ---- Writes ----

def create_bill(engine: Engine, payload: BillIn, actor: Actor) -> Bill:
    now = utcnow()
    bill = Bill(
        id=ledger.new_id(),
        bill_number="",
        client_details=payload.client_details,
        references=list(payload.references),
        items=list(payload.items),
        tax=payload.tax,
        status=payload.status,
        created_by_user_id=actor.user_id,
        created_at=now,
        updated_at=now,
    )
    recompute_bill(bill, now)

    if payload.paid_amount > 0:
        initial = PaymentIn(
            amount=payload.paid_amount,
            payment_date=payload.payment_date,
            notes=ledger.INITIAL_PAYMENT_NOTE,
        )
        ledger.record_payment(bill, initial, actor.user_id, now)
        recompute_bill(bill, now)

    bill.bill_number = numbering.next_bill_number(engine)
    try:
        _insert_bill(engine, bill)
    except IntegrityError:
        logger.warning("Bill number %s already taken, generating another", bill.bill_number)
        bill.bill_number = numbering.next_bill_number(engine)
        _insert_bill(engine, bill)

    logger.info(
        "Bill %s created by %s (total %s, paid %s, status %s)",
        bill.bill_number, actor.user_id, bill.total_amount, bill.paid_amount, bill.status.value,
    )
    return bill


def update_bill(engine: Engine, bill_id: str, payload: BillIn, actor: Actor, scope: Scope) -> Bill:
    """
    Replace client details, references, items and tax.

    The ledger is kept. A paidAmount above the ledger sum records the
    difference as a new payment; a lower one is rejected.
    """
    sent = payload.model_fields_set

    def replace(bill: Bill, now: datetime) -> None:
        status.ensure_editable(bill, actor, "edit")

        bill.client_details = payload.client_details
        bill.references = list(payload.references)
        bill.items = list(payload.items)
        bill.tax = payload.tax
        if "status" in sent:
            bill.status = payload.status
        recompute_bill(bill, now)

        if bill.total_amount < bill.paid_amount:
            raise ConflictError(
                f"Bill total (₹{bill.total_amount}) cannot be less than the amount "
                f"already paid (₹{bill.paid_amount})"
            )

        if "paid_amount" in sent:
            increase = payload.paid_amount - bill.paid_amount
            if increase < 0:
                raise ValidationError(
                    "paidAmount cannot be lower than the payments already recorded; "
                    "delete a payment instead"
                )
            if increase > 0:
                extra = PaymentIn(
                    amount=increase,
                    payment_date=payload.payment_date,
                    notes=ledger.UPDATE_PAYMENT_NOTE,
                )
                ledger.record_payment(bill, extra, actor.user_id, now)

    bill = _mutate(engine, bill_id, scope, replace)
    logger.info("Bill %s updated by %s", bill.bill_number, actor.user_id)
    return bill


def patch_bill(engine: Engine, bill_id: str, patch: BillPatch, actor: Actor, scope: Scope) -> Bill:
    fields = patch.model_fields_set & {"status", "payment_date"}
    if not fields:
        raise ValidationError("No valid fields to update")

    def apply_patch(bill: Bill, now: datetime) -> None:
        status.ensure_editable(bill, actor, "modify")
        if "status" in fields and patch.status is not None:
            bill.status = patch.status
        if "payment_date" in fields:
            bill.payment_date = as_utc(patch.payment_date)

    bill = _mutate(engine, bill_id, scope, apply_patch)
    logger.info("Bill %s patched by %s (%s)", bill.bill_number, actor.user_id, ", ".join(sorted(fields)))
    return bill


def delete_bill(engine: Engine, bill_id: str, actor: Actor, scope: Scope) -> Bill:
    def remove(conn: Connection, bill: Bill, now: datetime) -> bool:
        status.ensure_editable(bill, actor, "delete")
        result = conn.execute(
            delete(bills).where(and_(bills.c.id == bill.id, bills.c.version == bill.version))
        )
        return result.rowcount == 1

    bill = _attempt(engine, bill_id, scope, remove)
    logger.info("Bill %s deleted by %s", bill.bill_number, actor.user_id)
    return bill


def add_payment(
    engine: Engine, bill_id: str, payment: PaymentIn, actor: Actor, scope: Scope
) -> Tuple[Bill, PaymentEntry]:
    recorded: List[PaymentEntry] = []

    def append(bill: Bill, now: datetime) -> None:
        recompute_bill(bill, now)
        recorded.append(ledger.record_payment(bill, payment, actor.user_id, now))

    bill = _mutate(engine, bill_id, scope, append)
    logger.info(
        "Payment of %s recorded on bill %s by %s (paid %s of %s)",
        payment.amount, bill.bill_number, actor.user_id, bill.paid_amount, bill.total_amount,
    )
    return bill, recorded[-1]


def delete_payment(
    engine: Engine, bill_id: str, payment_id: str, actor: Actor, scope: Scope
) -> Tuple[Bill, PaymentEntry]:
    if not actor.is_privileged:
        raise PermissionDeniedError("Only Admin users can delete payments")

    removed: List[PaymentEntry] = []

    def drop(bill: Bill, now: datetime) -> None:
        removed.append(ledger.remove_payment(bill, payment_id))

    bill = _mutate(engine, bill_id, scope, drop)
    logger.info(
        "Payment %s (%s) removed from bill %s by %s; status now %s",
        payment_id, removed[-1].amount, bill.bill_number, actor.user_id, bill.status.value,
    )
    return bill, removed[-1]
