"""Tests for bill persistence: creation, updates, payments, locking and scoping."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from billing_api.errors import (
    BillLockedError,
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from billing_api.models.bills import BillPatch, BillStatus, PaymentIn
from billing_api.services import bill_store, ledger
from billing_api.services.access import Scope


def _pay(amount, **kwargs):
    return PaymentIn(amount=Decimal(amount), **kwargs)


def _scope(actor):
    return Scope.for_actor(actor)


def _paid_bill(engine, user, stored_bill):
    bill, _ = bill_store.add_payment(engine, stored_bill.id, _pay("200"), user, _scope(user))
    return bill


def _assert_consistent(bill):
    assert bill.paid_amount == ledger.ledger_total(bill.payment_history)
    assert bill.due_amount == bill.total_amount - bill.paid_amount
    assert bill.total_amount == bill.subtotal + bill.tax


class TestCreateBill:
    """Tests for create_bill."""

    def test_new_bill_is_computed_and_stored(self, engine, user, make_bill_in):
        bill = bill_store.create_bill(engine, make_bill_in(tax=18), user)

        assert bill.bill_number == "BILL-000001"
        assert bill.items[0].total_price == Decimal("200.00")
        assert bill.subtotal == Decimal("200.00")
        assert bill.total_amount == Decimal("218.00")
        assert bill.paid_amount == Decimal("0.00")
        assert bill.due_amount == Decimal("218.00")
        assert bill.status == BillStatus.DRAFT
        assert bill.payment_history == []
        assert bill.payment_date is None
        assert bill.created_by_user_id == "user-1"

        stored = bill_store.get_bill(engine, bill.id, _scope(user))
        assert stored.model_dump() == bill.model_dump()

    def test_initial_paid_amount_becomes_ledger_entry(self, engine, user, make_bill_in):
        bill = bill_store.create_bill(engine, make_bill_in(paidAmount=80), user)

        assert [entry.amount for entry in bill.payment_history] == [Decimal("80.00")]
        assert bill.payment_history[0].notes == ledger.INITIAL_PAYMENT_NOTE
        assert bill.status == BillStatus.PARTIAL
        assert bill.due_amount == Decimal("120.00")

    def test_initial_full_payment_marks_paid(self, engine, user, make_bill_in):
        bill = bill_store.create_bill(engine, make_bill_in(paidAmount=200), user)

        assert bill.status == BillStatus.PAID
        assert bill.payment_date is not None

    def test_initial_payment_above_total_rejected(self, engine, user, make_bill_in):
        with pytest.raises(ConflictError):
            bill_store.create_bill(engine, make_bill_in(paidAmount=250), user)

        assert bill_store.list_bills(engine, _scope(user)) == ([], 0)

    def test_requested_paid_status_is_reconciled(self, engine, user, make_bill_in):
        bill = bill_store.create_bill(engine, make_bill_in(status="Paid"), user)

        assert bill.status == BillStatus.SENT
        assert bill.payment_date is None

    def test_client_supplied_totals_are_ignored(self, engine, user, make_bill_in):
        bill = bill_store.create_bill(
            engine,
            make_bill_in(items=[{"itemName": "Urea", "quantity": 3, "unitPrice": 50, "totalPrice": 1}]),
            user,
        )

        assert bill.items[0].total_price == Decimal("150.00")
        assert bill.total_amount == Decimal("150.00")


class TestPayments:
    """Tests for add_payment / delete_payment on stored bills."""

    def test_partial_then_full_payment(self, engine, user, stored_bill):
        """80 then 120 on a 200 bill: Partial, then Paid with a paymentDate."""
        bill, entry = bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))
        assert entry.amount == Decimal("80.00")
        assert bill.status == BillStatus.PARTIAL
        assert bill.due_amount == Decimal("120.00")

        bill, _ = bill_store.add_payment(engine, stored_bill.id, _pay("120"), user, _scope(user))
        assert bill.status == BillStatus.PAID
        assert bill.due_amount == Decimal("0.00")
        assert bill.payment_date is not None
        _assert_consistent(bill)

    def test_overpayment_leaves_stored_bill_unchanged(self, engine, user, stored_bill):
        bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))
        before = bill_store.get_bill(engine, stored_bill.id, _scope(user))

        with pytest.raises(ConflictError, match="exceeds due amount"):
            bill_store.add_payment(engine, stored_bill.id, _pay("500"), user, _scope(user))

        after = bill_store.get_bill(engine, stored_bill.id, _scope(user))
        assert after.model_dump() == before.model_dump()
        assert after.version == before.version

    def test_payment_on_paid_bill_rejected(self, engine, user, stored_bill):
        _paid_bill(engine, user, stored_bill)

        with pytest.raises(ConflictError):
            bill_store.add_payment(engine, stored_bill.id, _pay("1"), user, _scope(user))

    def test_admin_deletes_payment_and_bill_regresses(self, engine, user, admin, stored_bill):
        """Removing a payment from a Paid bill drops it to Partial; paymentDate stays."""
        bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))
        paid, last = bill_store.add_payment(engine, stored_bill.id, _pay("120"), user, _scope(user))
        paid_on = paid.payment_date

        bill, removed = bill_store.delete_payment(engine, stored_bill.id, last.id, admin, _scope(admin))

        assert removed.amount == Decimal("120.00")
        assert bill.status == BillStatus.PARTIAL
        assert bill.paid_amount == Decimal("80.00")
        assert bill.due_amount == Decimal("120.00")
        assert bill.payment_date == paid_on
        _assert_consistent(bill)

    def test_deleting_all_payments_returns_to_sent(self, engine, user, admin, stored_bill):
        _, entry = bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        bill, _ = bill_store.delete_payment(engine, stored_bill.id, entry.id, admin, _scope(admin))

        assert bill.status == BillStatus.SENT
        assert bill.paid_amount == Decimal("0.00")

    def test_user_cannot_delete_payment(self, engine, user, stored_bill):
        _, entry = bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        with pytest.raises(PermissionDeniedError, match="Only Admin users can delete payments"):
            bill_store.delete_payment(engine, stored_bill.id, entry.id, user, _scope(user))

    def test_delete_unknown_payment(self, engine, admin, stored_bill):
        with pytest.raises(NotFoundError, match="Payment not found"):
            bill_store.delete_payment(engine, stored_bill.id, "f" * 32, admin, _scope(admin))

    def test_ledger_stays_consistent_over_many_operations(self, engine, user, admin, stored_bill):
        entries = []
        for amount in ("10", "25.50", "40"):
            bill, entry = bill_store.add_payment(engine, stored_bill.id, _pay(amount), user, _scope(user))
            entries.append(entry)
            _assert_consistent(bill)

        bill, _ = bill_store.delete_payment(engine, stored_bill.id, entries[1].id, admin, _scope(admin))
        _assert_consistent(bill)
        assert bill.paid_amount == Decimal("50.00")

    def test_payment_ledger_view(self, engine, user, stored_bill):
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for offset in (0, 10, 3):
            bill_store.add_payment(
                engine, stored_bill.id, _pay("20", payment_date=base + timedelta(days=offset)),
                user, _scope(user),
            )

        view = bill_store.get_payment_ledger(engine, stored_bill.id, _scope(user))

        assert view.bill_info.payment_count == 3
        assert view.bill_info.paid_amount == Decimal("60.00")
        assert view.bill_info.due_amount == Decimal("140.00")
        assert [entry.payment_date for entry in view.payment_history] == [
            base + timedelta(days=10), base + timedelta(days=3), base,
        ]


class TestPaidLock:
    """Tests for the paid-bill lock on stored bills."""

    def test_user_cannot_update_paid_bill(self, engine, user, stored_bill, make_bill_in):
        paid = _paid_bill(engine, user, stored_bill)

        with pytest.raises(BillLockedError, match="Cannot edit paid bills"):
            bill_store.update_bill(engine, stored_bill.id, make_bill_in(tax=50), user, _scope(user))

        after = bill_store.get_bill(engine, stored_bill.id, _scope(user))
        assert after.model_dump() == paid.model_dump()

    def test_user_cannot_patch_paid_bill(self, engine, user, stored_bill):
        _paid_bill(engine, user, stored_bill)

        with pytest.raises(BillLockedError, match="Cannot modify paid bills"):
            bill_store.patch_bill(engine, stored_bill.id, BillPatch(status="Sent"), user, _scope(user))

    def test_user_cannot_delete_paid_bill(self, engine, user, stored_bill):
        _paid_bill(engine, user, stored_bill)

        with pytest.raises(BillLockedError, match="Cannot delete paid bills"):
            bill_store.delete_bill(engine, stored_bill.id, user, _scope(user))

        assert bill_store.get_bill(engine, stored_bill.id, _scope(user)).status == BillStatus.PAID

    def test_admin_can_edit_and_delete_paid_bill(self, engine, user, admin, stored_bill, make_bill_in):
        _paid_bill(engine, user, stored_bill)

        bill = bill_store.update_bill(
            engine, stored_bill.id, make_bill_in(tax=0), admin, _scope(admin)
        )
        assert bill.status == BillStatus.PAID
        assert bill.created_by_user_id == "user-1"

        bill_store.delete_bill(engine, stored_bill.id, admin, _scope(admin))
        with pytest.raises(NotFoundError):
            bill_store.get_bill(engine, stored_bill.id, _scope(admin))


class TestUpdateBill:
    """Tests for full (PUT) updates."""

    def test_items_change_recomputes_totals(self, engine, user, stored_bill, make_bill_in):
        payload = make_bill_in(
            items=[
                {"itemName": "Wheat seeds", "quantity": 3, "unitPrice": 100},
                {"itemName": "Pesticide", "quantity": 1, "unitPrice": 45.5},
            ],
            tax=10,
        )

        bill = bill_store.update_bill(engine, stored_bill.id, payload, user, _scope(user))

        assert bill.subtotal == Decimal("345.50")
        assert bill.total_amount == Decimal("355.50")
        assert bill.due_amount == Decimal("355.50")
        assert bill.bill_number == stored_bill.bill_number
        assert bill.updated_at >= stored_bill.updated_at

    def test_ledger_survives_update(self, engine, user, stored_bill, make_bill_in):
        bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        bill = bill_store.update_bill(engine, stored_bill.id, make_bill_in(tax=20), user, _scope(user))

        assert len(bill.payment_history) == 1
        assert bill.paid_amount == Decimal("80.00")
        assert bill.due_amount == Decimal("140.00")
        assert bill.status == BillStatus.PARTIAL

    def test_paid_amount_increase_records_payment(self, engine, user, stored_bill, make_bill_in):
        bill_store.add_payment(engine, stored_bill.id, _pay("50"), user, _scope(user))

        bill = bill_store.update_bill(
            engine, stored_bill.id, make_bill_in(paidAmount=120), user, _scope(user)
        )

        assert [entry.amount for entry in bill.payment_history] == [Decimal("50.00"), Decimal("70.00")]
        assert bill.payment_history[-1].notes == ledger.UPDATE_PAYMENT_NOTE
        assert bill.paid_amount == Decimal("120.00")

    def test_paid_amount_decrease_rejected(self, engine, user, stored_bill, make_bill_in):
        bill_store.add_payment(engine, stored_bill.id, _pay("50"), user, _scope(user))

        with pytest.raises(ValidationError):
            bill_store.update_bill(engine, stored_bill.id, make_bill_in(paidAmount=10), user, _scope(user))

    def test_total_below_paid_rejected(self, engine, user, stored_bill, make_bill_in):
        bill_store.add_payment(engine, stored_bill.id, _pay("150"), user, _scope(user))

        with pytest.raises(ConflictError, match="cannot be less than"):
            bill_store.update_bill(
                engine,
                stored_bill.id,
                make_bill_in(items=[{"itemName": "Wheat seeds", "quantity": 1, "unitPrice": 100}]),
                user,
                _scope(user),
            )

        assert bill_store.get_bill(engine, stored_bill.id, _scope(user)).total_amount == Decimal("200.00")

    def test_status_sent_on_update(self, engine, user, stored_bill, make_bill_in):
        bill = bill_store.update_bill(engine, stored_bill.id, make_bill_in(status="Sent"), user, _scope(user))

        assert bill.status == BillStatus.SENT


class TestPatchBill:
    """Tests for PATCH (status / paymentDate only)."""

    def test_mark_sent(self, engine, user, stored_bill):
        bill = bill_store.patch_bill(engine, stored_bill.id, BillPatch(status="Sent"), user, _scope(user))

        assert bill.status == BillStatus.SENT

    def test_requested_paid_without_payments_becomes_sent(self, engine, user, stored_bill):
        bill = bill_store.patch_bill(engine, stored_bill.id, BillPatch(status="Paid"), user, _scope(user))

        assert bill.status == BillStatus.SENT
        assert bill.payment_date is None

    def test_partial_bill_cannot_be_set_back_to_draft(self, engine, user, stored_bill):
        bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        bill = bill_store.patch_bill(engine, stored_bill.id, BillPatch(status="Draft"), user, _scope(user))

        assert bill.status == BillStatus.PARTIAL

    def test_no_fields(self, engine, user, stored_bill):
        with pytest.raises(ValidationError, match="No valid fields to update"):
            bill_store.patch_bill(engine, stored_bill.id, BillPatch(), user, _scope(user))


class TestScopeAndListing:
    """Tests for ownership scoping, filtering and pagination."""

    def test_other_users_bill_is_not_found(self, engine, other_user, stored_bill):
        with pytest.raises(NotFoundError, match="Bill not found"):
            bill_store.get_bill(engine, stored_bill.id, _scope(other_user))

    def test_other_user_cannot_pay_or_delete(self, engine, other_user, stored_bill):
        with pytest.raises(NotFoundError):
            bill_store.add_payment(engine, stored_bill.id, _pay("10"), other_user, _scope(other_user))
        with pytest.raises(NotFoundError):
            bill_store.delete_bill(engine, stored_bill.id, other_user, _scope(other_user))

    def test_admin_sees_every_bill(self, engine, user, other_user, admin, make_bill_in):
        bill_store.create_bill(engine, make_bill_in(), user)
        bill_store.create_bill(engine, make_bill_in(), other_user)

        _, admin_total = bill_store.list_bills(engine, _scope(admin))
        _, user_total = bill_store.list_bills(engine, _scope(user))

        assert admin_total == 2
        assert user_total == 1

    def test_newest_first_with_pagination(self, engine, user, make_bill_in):
        for _ in range(3):
            bill_store.create_bill(engine, make_bill_in(), user)

        first_page, total = bill_store.list_bills(engine, _scope(user), page=1, limit=2)
        second_page, _ = bill_store.list_bills(engine, _scope(user), page=2, limit=2)

        assert total == 3
        assert [bill.bill_number for bill in first_page] == ["BILL-000003", "BILL-000002"]
        assert [bill.bill_number for bill in second_page] == ["BILL-000001"]

    def test_status_filter(self, engine, user, make_bill_in):
        bill_store.create_bill(engine, make_bill_in(), user)
        bill_store.create_bill(engine, make_bill_in(paidAmount=200), user)

        bills, total = bill_store.list_bills(engine, _scope(user), status_filter=BillStatus.PAID)

        assert total == 1
        assert bills[0].status == BillStatus.PAID

    @pytest.mark.parametrize("term", ["ramesh", "98765", "bill-000001", "WHEAT"])
    def test_search(self, engine, user, make_bill_in, make_payload, term):
        bill_store.create_bill(engine, make_bill_in(), user)
        other = make_payload()
        other["clientDetails"].update(clientName="Sita Devi", phoneNumber="9123456780")
        other["items"] = [{"itemName": "Tractor rental", "quantity": 1, "unitPrice": 500}]
        bill_store.create_bill(engine, make_bill_in(**other), user)

        bills, total = bill_store.list_bills(engine, _scope(user), search=term)

        assert total == 1
        assert bills[0].client_details.client_name == "Ramesh Kumar"

    def test_search_treats_wildcards_literally(self, engine, user, make_bill_in):
        bill_store.create_bill(engine, make_bill_in(), user)

        assert bill_store.list_bills(engine, _scope(user), search="%")[1] == 0

    def test_user_bills_admin_only(self, engine, user, admin, make_bill_in):
        bill_store.create_bill(engine, make_bill_in(), user)

        bills, total = bill_store.list_user_bills(engine, admin, "user-1")
        assert total == 1
        assert bills[0].created_by_user_id == "user-1"

        with pytest.raises(PermissionDeniedError, match="Access denied"):
            bill_store.list_user_bills(engine, user, "user-1")


class TestConcurrentWrites:
    """Tests for the version-checked read-modify-write loop."""

    def test_conflicting_save_is_retried(self, engine, user, stored_bill, monkeypatch):
        real_save = bill_store.save_bill
        calls = []

        def flaky_save(conn, bill):
            calls.append(bill.version)
            if len(calls) == 1:
                return False
            return real_save(conn, bill)

        monkeypatch.setattr(bill_store, "save_bill", flaky_save)

        bill, _ = bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        assert len(calls) == 2
        assert len(bill.payment_history) == 1
        stored = bill_store.get_bill(engine, stored_bill.id, _scope(user))
        assert stored.paid_amount == Decimal("80.00")
        assert stored.version == 2

    def test_gives_up_after_retries(self, engine, user, stored_bill, monkeypatch):
        monkeypatch.setattr(bill_store, "save_bill", lambda conn, bill: False)

        with pytest.raises(ConcurrentUpdateError):
            bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        stored = bill_store.get_bill(engine, stored_bill.id, _scope(user))
        assert stored.payment_history == []
        assert stored.version == 1

    def test_stale_version_is_not_written(self, engine, user, stored_bill):
        with engine.begin() as conn:
            stale = bill_store._fetch(conn, stored_bill.id, _scope(user))
        bill_store.add_payment(engine, stored_bill.id, _pay("80"), user, _scope(user))

        with engine.begin() as conn:
            assert bill_store.save_bill(conn, stale) is False

        assert bill_store.get_bill(engine, stored_bill.id, _scope(user)).paid_amount == Decimal("80.00")
