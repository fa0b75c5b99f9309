# billing_api/api/bills.py

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.engine import Engine

from billing_api import config
from billing_api.api.deps import check_id, get_actor, scope_for
from billing_api.db.engine import get_engine
from billing_api.models.bills import (
    Bill,
    BillIn,
    BillPage,
    BillPatch,
    BillStatus,
    PaymentIn,
    PaymentLedger,
)
from billing_api.models.common import Envelope, MessageOut, Pagination
from billing_api.services import bill_store, client_sync
from billing_api.services.access import Actor

router = APIRouter(prefix="/bills", tags=["bills"])


def _page(bills, total: int, page: int, limit: int) -> BillPage:
    return BillPage(
        bills=bills,
        pagination=Pagination.of(total, page, limit),
    )


@router.get("/", response_model=Envelope[BillPage])
def list_bills(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    status_filter: Optional[BillStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(
        default=None,
        description="Case-insensitive match on client name/phone, bill number or item names",
    ),
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[BillPage]:
    """
    Bills visible to the caller, newest first. Non-admin users only see
    bills they created.
    """
    bills, total = bill_store.list_bills(
        engine,
        scope_for(actor),
        status_filter=status_filter,
        search=search,
        page=page,
        limit=limit,
    )
    return Envelope(data=_page(bills, total, page, limit))


@router.get("/user/{user_id}", response_model=Envelope[BillPage])
def list_user_bills(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[BillPage]:
    """
    Admin only: bills created by one user.
    """
    bills, total = bill_store.list_user_bills(engine, actor, user_id, page=page, limit=limit)
    return Envelope(data=_page(bills, total, page, limit))


@router.get("/{bill_id}", response_model=Envelope[Bill])
def get_bill(
    bill_id: str,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    bill = bill_store.get_bill(engine, check_id(bill_id), scope_for(actor))
    return Envelope(data=bill)


@router.post("/", response_model=Envelope[Bill], status_code=status.HTTP_201_CREATED)
def create_bill(
    payload: BillIn,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    bill = bill_store.create_bill(engine, payload, actor)
    client_sync.sync_client_from_bill(engine, bill)
    return Envelope(data=bill)


@router.put("/{bill_id}", response_model=Envelope[Bill])
def update_bill(
    bill_id: str,
    payload: BillIn,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    """
    Full update. Paid bills can only be edited by Admin users.
    """
    bill = bill_store.update_bill(engine, check_id(bill_id), payload, actor, scope_for(actor))
    client_sync.sync_client_from_bill(engine, bill)
    return Envelope(data=bill)


@router.patch("/{bill_id}", response_model=Envelope[Bill])
def patch_bill(
    bill_id: str,
    patch: BillPatch,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    """
    Change status and/or paymentDate only. The requested status is still
    reconciled against the amount paid.
    """
    bill = bill_store.patch_bill(engine, check_id(bill_id), patch, actor, scope_for(actor))
    return Envelope(data=bill)


@router.delete("/{bill_id}", response_model=Envelope[MessageOut])
def delete_bill(
    bill_id: str,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[MessageOut]:
    bill_store.delete_bill(engine, check_id(bill_id), actor, scope_for(actor))
    return Envelope(data=MessageOut(message="Bill deleted successfully"))


@router.post("/{bill_id}/payments", response_model=Envelope[Bill])
def add_payment(
    bill_id: str,
    payment: PaymentIn,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    """
    Record a (partial) payment. Rejected when it exceeds the amount due.
    """
    bill, entry = bill_store.add_payment(engine, check_id(bill_id), payment, actor, scope_for(actor))
    return Envelope(data=bill, message=f"Payment of ₹{entry.amount} added successfully")


@router.get("/{bill_id}/payments", response_model=Envelope[PaymentLedger])
def get_payment_history(
    bill_id: str,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[PaymentLedger]:
    """
    Payment summary plus the ledger, most recent payment date first.
    """
    ledger = bill_store.get_payment_ledger(engine, check_id(bill_id), scope_for(actor))
    return Envelope(data=ledger)


@router.delete("/{bill_id}/payments/{payment_id}", response_model=Envelope[Bill])
def delete_payment(
    bill_id: str,
    payment_id: str,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[Bill]:
    """
    Admin only: remove a ledger entry and recompute the bill from what is left.
    """
    bill, removed = bill_store.delete_payment(
        engine,
        check_id(bill_id),
        check_id(payment_id, "payment"),
        actor,
        scope_for(actor),
    )
    return Envelope(data=bill, message=f"Payment of ₹{removed.amount} deleted successfully")
