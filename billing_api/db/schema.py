# billing_api/db/schema.py

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Text,
    Numeric, DateTime, JSON, CheckConstraint, UniqueConstraint, Index
)

metadata = MetaData()

# One row per bill. Embedded snapshots and the payment ledger live in JSON
# columns so the whole aggregate is written in a single statement.
bills = Table(
    "bills",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("bill_number", Text, unique=True, nullable=False),
    Column("client_name", Text, nullable=False),
    Column("client_phone", String(10), nullable=False),
    Column("item_names", Text, nullable=False, default=""),
    Column("client_details", JSON, nullable=False),
    Column("reference_details", JSON, nullable=False),
    Column("items", JSON, nullable=False),
    Column("payment_history", JSON, nullable=False),
    Column("subtotal", Numeric(18, 2), nullable=False),
    Column("tax", Numeric(18, 2), nullable=False),
    Column("total_amount", Numeric(18, 2), nullable=False),
    Column("paid_amount", Numeric(18, 2), nullable=False),
    Column("due_amount", Numeric(18, 2), nullable=False),
    Column("status", String(16), nullable=False),
    Column("payment_date", DateTime(timezone=True)),
    Column("created_by", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("version", Integer, nullable=False, default=1),
    CheckConstraint("subtotal >= 0", name="ck_bills_subtotal_nonneg"),
    CheckConstraint("tax >= 0", name="ck_bills_tax_nonneg"),
    CheckConstraint("total_amount >= 0", name="ck_bills_total_nonneg"),
    CheckConstraint("paid_amount >= 0", name="ck_bills_paid_nonneg"),
    Index("ix_bills_created_by", "created_by"),
    Index("ix_bills_client_name", "client_name"),
    Index("ix_bills_client_phone", "client_phone"),
    Index("ix_bills_status", "status"),
)

clients = Table(
    "clients",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("client_name", Text, nullable=False),
    Column("phone_number", String(10), nullable=False),
    Column("gender", String(16)),
    Column("village", Text),
    Column("documents", JSON, nullable=False),
    Column("created_by", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("phone_number", "created_by", name="uq_clients_phone_owner"),
)

# Named sequences; "bill" backs BILL-000001, BILL-000002, ...
counters = Table(
    "counters",
    metadata,
    Column("name", String(32), primary_key=True),
    Column("value", Integer, nullable=False),
)
