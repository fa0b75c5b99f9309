# scripts/backfill_payment_history.py
"""
Repair stored bills so paidAmount matches the payment ledger.

Bills saved before every payment went through the ledger can carry a
positive paidAmount with an empty paymentHistory. For those, the stored
amount becomes a single "Initial payment (migrated from paidAmount)" entry.
Every bill is then recomputed (totals, due amount, status) and written back.

Safe to run more than once.

Usage:
    python -m scripts.backfill_payment_history
"""

import logging

from sqlalchemy import select

from billing_api.db.engine import get_engine
from billing_api.db.schema import bills
from billing_api.models.common import to_money, utcnow
from billing_api.services import bill_store, ledger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def backfill_payment_history(engine):
    stats = {
        "n_bills": 0,
        "n_backfilled": 0,
        "n_recomputed": 0,
        "n_errors": 0,
        "error_examples": [],
    }
    now = utcnow()

    with engine.begin() as conn:
        rows = conn.execute(select(bills)).mappings().all()

        for row in rows:
            stats["n_bills"] += 1

            try:
                bill = bill_store.row_to_bill(row)
                stored_paid = to_money(row["paid_amount"])

                if stored_paid > 0 and not bill.payment_history:
                    bill.payment_history.append(
                        ledger.make_entry(
                            stored_paid,
                            bill.created_by_user_id,
                            now,
                            payment_date=bill.payment_date or bill.created_at,
                            notes=ledger.MIGRATED_PAYMENT_NOTE,
                        )
                    )
                    stats["n_backfilled"] += 1
                    logger.info("Added payment history for bill %s: %s", bill.bill_number, stored_paid)

                before = (bill.subtotal, bill.total_amount, bill.paid_amount, bill.due_amount, bill.status)
                bill_store.recompute_bill(bill, now)
                after = (bill.subtotal, bill.total_amount, bill.paid_amount, bill.due_amount, bill.status)

                if before != after or len(bill.payment_history) != len(row["payment_history"] or []):
                    bill.updated_at = now
                    if bill_store.save_bill(conn, bill):
                        stats["n_recomputed"] += 1
                    else:
                        raise RuntimeError("bill changed during backfill")

            except Exception as e:
                stats["n_errors"] += 1
                if len(stats["error_examples"]) < 5:
                    stats["error_examples"].append(
                        {
                            "bill_id": row["id"],
                            "bill_number": row["bill_number"],
                            "error": repr(e),
                        }
                    )

    return stats


def main():
    stats = backfill_payment_history(get_engine())

    logger.info("Bills scanned:              %s", stats["n_bills"])
    logger.info("Payment histories added:    %s", stats["n_backfilled"])
    logger.info("Bills rewritten:            %s", stats["n_recomputed"])
    logger.info("Bills with errors:          %s", stats["n_errors"])

    if stats["error_examples"]:
        logger.warning("Example errors:")
        for ex in stats["error_examples"]:
            logger.warning("Bill %s (%s): %s", ex["bill_number"], ex["bill_id"], ex["error"])


if __name__ == "__main__":
    main()
