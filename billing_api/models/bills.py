# billing_api/models/bills.py

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import Field, StringConstraints, field_validator, model_validator

from billing_api.models.common import CamelModel, Money, Pagination

PHONE_PATTERN = r"^[0-9]{10}$"

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
Village = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Phone = Annotated[str, StringConstraints(pattern=PHONE_PATTERN)]


class BillStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    PARTIAL = "Partial"
    PAID = "Paid"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    BANK_TRANSFER = "Bank Transfer"
    CHEQUE = "Cheque"
    OTHER = "Other"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


def _blank_to_none(value):
    if isinstance(value, str) and value.strip() in ("", "null"):
        return None
    return value


class ClientDetails(CamelModel):
    client_name: Name
    phone_number: Phone
    gender: Gender
    village: Village
    photo: Optional[str] = None
    aadhaar_photo: Optional[str] = None
    pan_photo: Optional[str] = None

    blank_documents = field_validator("photo", "aadhaar_photo", "pan_photo", mode="before")(
        _blank_to_none
    )


class ReferenceDetails(CamelModel):
    """A reference person; every field is optional but a name or phone is required."""

    name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    phone_number: Optional[Phone] = None
    gender: Optional[Gender] = None
    village: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    photo: Optional[str] = None
    aadhaar_photo: Optional[str] = None
    pan_photo: Optional[str] = None

    blank_fields = field_validator("*", mode="before")(_blank_to_none)

    @model_validator(mode="after")
    def require_name_or_phone(self):
        if not self.name and not self.phone_number:
            raise ValueError("Each reference needs a name or a phone number")
        return self


class BillItem(CamelModel):
    item_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    quantity: Decimal = Field(ge=1)
    unit_price: Money = Field(ge=0)
    # Always recomputed as quantity * unit_price
    total_price: Money = Decimal("0.00")


class PaymentEntry(CamelModel):
    id: str
    amount: Money
    payment_date: datetime
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: str = ""
    recorded_by_user_id: str
    created_at: datetime
    updated_at: datetime


class BillIn(CamelModel):
    """Body of POST /bills and PUT /bills/{id}.

    subtotal, totalAmount and paymentHistory may be sent by the UI but are
    ignored: totals are derived and the ledger only changes through the
    payment endpoints (or a paidAmount increase).
    """

    client_details: ClientDetails
    references: List[ReferenceDetails] = Field(default_factory=list)
    items: List[BillItem]
    tax: Money = Field(default=Decimal("0.00"), ge=0)
    paid_amount: Money = Field(default=Decimal("0.00"), ge=0)
    payment_date: Optional[datetime] = None
    status: BillStatus = BillStatus.DRAFT

    blank_payment_date = field_validator("payment_date", mode="before")(_blank_to_none)

    @field_validator("items")
    @classmethod
    def require_items(cls, items: List[BillItem]) -> List[BillItem]:
        if not items:
            raise ValueError("At least one item is required")
        return items


class BillPatch(CamelModel):
    """Body of PATCH /bills/{id}; only status and paymentDate are honoured."""

    status: Optional[BillStatus] = None
    payment_date: Optional[datetime] = None

    blank_payment_date = field_validator("payment_date", mode="before")(_blank_to_none)


class PaymentIn(CamelModel):
    amount: Money = Field(ge=Decimal("0.01"))
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: str = Field(default="", max_length=500)
    payment_date: Optional[datetime] = None

    blank_payment_date = field_validator("payment_date", mode="before")(_blank_to_none)


class Bill(CamelModel):
    id: str
    bill_number: str
    client_details: ClientDetails
    references: List[ReferenceDetails] = Field(default_factory=list)
    items: List[BillItem]
    subtotal: Money = Decimal("0.00")
    tax: Money = Decimal("0.00")
    total_amount: Money = Decimal("0.00")
    paid_amount: Money = Decimal("0.00")
    due_amount: Money = Decimal("0.00")
    payment_history: List[PaymentEntry] = Field(default_factory=list)
    status: BillStatus = BillStatus.DRAFT
    payment_date: Optional[datetime] = None
    created_by_user_id: str
    created_at: datetime
    updated_at: datetime
    # Optimistic-concurrency token, never sent to clients
    version: int = Field(default=1, exclude=True)


class BillPage(CamelModel):
    bills: List[Bill]
    pagination: Pagination


class BillInfo(CamelModel):
    bill_number: str
    client_name: str
    total_amount: Money
    paid_amount: Money
    due_amount: Money
    payment_count: int
    last_payment_date: Optional[datetime] = None


class PaymentLedger(CamelModel):
    bill_info: BillInfo
    payment_history: List[PaymentEntry]
