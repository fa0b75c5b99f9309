# billing_api/services/numbering.py
"""
Bill numbers: BILL-000001, BILL-000002, ...

Numbers come from a counter row bumped with a single UPDATE, so concurrent
creates cannot read the same "latest" value. The counter is seeded once from
the newest well-formed bill number already in the table, which keeps
databases created before the counter existed on the same sequence.

If numbering fails for any reason the bill still gets a unique, if
non-sequential, BILL-<epoch millis> number.
"""

import logging
import re
import time
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from billing_api.db.schema import bills, counters
from billing_api.errors import BillNumberError

logger = logging.getLogger(__name__)

PREFIX = "BILL-"
COUNTER_NAME = "bill"
# Sequential numbers only; BILL-<epoch millis> fallbacks have 13 digits
SEQUENCE_PATTERN = re.compile(r"^BILL-(\d{1,12})$")


def format_bill_number(value: int) -> str:
    return f"{PREFIX}{value:06d}"


def parse_bill_number(bill_number: Optional[str]) -> Optional[int]:
    if not bill_number:
        return None
    m = SEQUENCE_PATTERN.match(bill_number.strip())
    if not m:
        return None
    return int(m.group(1))


def fallback_bill_number() -> str:
    return f"{PREFIX}{int(time.time() * 1000)}"


def latest_sequence(conn: Connection) -> int:
    """
    Last sequence value used by existing bills, newest bill first.

    Returns 0 for an empty table. Raises BillNumberError when bills exist but
    none of them carries a parseable number.
    """
    rows = conn.execute(
        select(bills.c.bill_number).order_by(bills.c.created_at.desc(), bills.c.bill_number.desc())
    )

    seen_any = False
    for (bill_number,) in rows:
        seen_any = True
        value = parse_bill_number(bill_number)
        if value is not None:
            return value

    if seen_any:
        raise BillNumberError("No sequential bill number found to continue from")
    return 0


def _increment(conn: Connection) -> Optional[int]:
    result = conn.execute(
        update(counters)
        .where(counters.c.name == COUNTER_NAME)
        .values(value=counters.c.value + 1)
    )
    if result.rowcount == 0:
        return None
    return conn.execute(
        select(counters.c.value).where(counters.c.name == COUNTER_NAME)
    ).scalar_one()


def _seed(conn: Connection) -> int:
    value = latest_sequence(conn) + 1
    conn.execute(insert(counters).values(name=COUNTER_NAME, value=value))
    return value


def _take_next(engine: Engine) -> int:
    with engine.begin() as conn:
        value = _increment(conn)
        if value is None:
            value = _seed(conn)
    return value


def next_sequence(engine: Engine) -> int:
    try:
        return _take_next(engine)
    except IntegrityError:
        # Another request seeded the counter first; the row exists now.
        logger.info("Bill counter seeded concurrently, retrying increment")
        return _take_next(engine)


def next_bill_number(engine: Engine) -> str:
    """Number for a bill about to be inserted. Never raises."""
    try:
        return format_bill_number(next_sequence(engine))
    except (SQLAlchemyError, BillNumberError):
        bill_number = fallback_bill_number()
        logger.exception("Error generating bill number, falling back to %s", bill_number)
        return bill_number
