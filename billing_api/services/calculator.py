# billing_api/services/calculator.py

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Tuple

from billing_api.models.bills import BillItem
from billing_api.models.common import to_money


@dataclass(frozen=True)
class Totals:
    items: Tuple[BillItem, ...]
    subtotal: Decimal
    tax: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal


def line_total(quantity, unit_price) -> Decimal:
    return to_money(Decimal(str(quantity)) * to_money(unit_price))


def compute_totals(items: Iterable[BillItem], tax=Decimal("0"), paid_amount=Decimal("0")) -> Totals:
    """
    Derive item totals, subtotal, grand total and due amount.

    Pure and deterministic; inputs are expected to be validated already
    (quantity >= 1, unit price and tax >= 0). The given items are not
    modified, priced copies are returned on the result.
    """
    priced: List[BillItem] = [
        item.model_copy(update={"total_price": line_total(item.quantity, item.unit_price)})
        for item in items
    ]

    subtotal = to_money(sum((item.total_price for item in priced), Decimal("0")))
    tax = to_money(tax)
    total_amount = subtotal + tax
    paid_amount = to_money(paid_amount)

    return Totals(
        items=tuple(priced),
        subtotal=subtotal,
        tax=tax,
        total_amount=total_amount,
        paid_amount=paid_amount,
        due_amount=total_amount - paid_amount,
    )
