# billing_api/services/client_sync.py
"""
Keep the client list in step with the client snapshots on bills.

After a bill is created or updated, the client with the bill's phone number
(within the bill owner's clients) is created or has its details merged in.
This is best effort: the bill is already committed, so a failure here is
logged and swallowed.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from billing_api.db.schema import clients
from billing_api.models.bills import Bill
from billing_api.models.common import utcnow

logger = logging.getLogger(__name__)

# bill snapshot field -> client documents key
DOCUMENT_FIELDS = {
    "photo": "photo",
    "aadhaar_photo": "aadhaar_card",
    "pan_photo": "pan_card",
}


def _documents_from(bill: Bill) -> dict:
    details = bill.client_details
    return {
        target: getattr(details, source)
        for source, target in DOCUMENT_FIELDS.items()
        if getattr(details, source)
    }


def merged_client_values(existing: dict, bill: Bill, now: datetime) -> dict:
    """Fields to overwrite on an existing client; empty snapshot values never win."""
    details = bill.client_details
    values = {"updated_at": now}

    if details.client_name:
        values["client_name"] = details.client_name
    if details.gender:
        values["gender"] = details.gender.value
    if details.village:
        values["village"] = details.village

    documents = dict(existing.get("documents") or {})
    documents.update(_documents_from(bill))
    values["documents"] = documents
    return values


def upsert_client(engine: Engine, bill: Bill, now: Optional[datetime] = None) -> str:
    """Create or merge the bill's client; returns the client id."""
    now = now or utcnow()
    details = bill.client_details
    owner = bill.created_by_user_id

    with engine.begin() as conn:
        row = conn.execute(
            select(clients).where(
                clients.c.phone_number == details.phone_number,
                clients.c.created_by == owner,
            )
        ).mappings().first()

        if row is not None:
            conn.execute(
                update(clients)
                .where(clients.c.id == row["id"])
                .values(**merged_client_values(dict(row), bill, now))
            )
            logger.info("Client with phone %s updated from bill %s", details.phone_number, bill.bill_number)
            return row["id"]

        client_id = uuid.uuid4().hex
        conn.execute(
            insert(clients).values(
                id=client_id,
                client_name=details.client_name,
                phone_number=details.phone_number,
                gender=details.gender.value,
                village=details.village,
                documents=_documents_from(bill),
                created_by=owner,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Client with phone %s created from bill %s", details.phone_number, bill.bill_number)
        return client_id


def sync_client_from_bill(engine: Engine, bill: Bill) -> Optional[str]:
    """Run upsert_client without letting its failure reach the caller."""
    try:
        return upsert_client(engine, bill)
    except Exception:
        logger.exception(
            "Error auto-creating/updating client for bill %s; the bill was saved, client sync failed",
            bill.bill_number,
        )
        return None
