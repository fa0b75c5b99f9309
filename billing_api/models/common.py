# billing_api/models/common.py

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value or "0"))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# Decimal rounded to cents; serialized as a string in JSON
Money = Annotated[Decimal, AfterValidator(to_money)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive values (SQLite hands these back) are taken to be UTC already
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


T = TypeVar("T")


class Envelope(CamelModel, Generic[T]):
    success: bool = True
    data: T
    message: Optional[str] = None


class MessageOut(CamelModel):
    message: str


class Pagination(CamelModel):
    current: int
    pages: int
    total: int

    @classmethod
    def of(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(current=page, pages=math.ceil(total / limit) if limit else 0, total=total)
