from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from billpay.utils.time import to_naive_utc

MIN_AMOUNT_CENTS = 1
MAX_AMOUNT_CENTS = 999_999_999

_CRON_PART = re.compile(r"^[\d\*\-,/]+$")
# Plain decimal with optional exponent; no underscores, no NaN/Infinity
_AMOUNT = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")
_MAX_DOLLARS = Decimal(MAX_AMOUNT_CENTS + 1) / 100


def amount_to_cents(v):
    """Parse a dollar string such as ``"100.00"`` into integer cents."""
    if not isinstance(v, str):
        raise ValueError("Amount must be a string")
    v = v.strip()
    if not _AMOUNT.match(v):
        raise ValueError("Amount must be a valid number")
    try:
        d = Decimal(v)
    except InvalidOperation:
        raise ValueError("Amount must be a valid number")
    # Bound before quantizing; quantize overflows on huge exponents
    if d < 0:
        raise ValueError("Amount must be at least $0.01")
    if d > _MAX_DOLLARS:
        raise ValueError("Amount cannot exceed $9,999,999.99")
    cents = int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < MIN_AMOUNT_CENTS:
        raise ValueError("Amount must be at least $0.01")
    if cents > MAX_AMOUNT_CENTS:
        raise ValueError("Amount cannot exceed $9,999,999.99")
    return cents


def validate_cron(v: str) -> str:
    parts = v.strip().split()
    if len(parts) != 5 or not all(_CRON_PART.match(p) for p in parts):
        raise ValueError(
            "Frequency must be a valid cron expression (5 parts: minute hour day month weekday)"
        )
    return v.strip()


# Amount arrives as a dollar string and is carried as cents from here on
AmountCents = Annotated[int, BeforeValidator(amount_to_cents)]
CronExpression = Annotated[str, AfterValidator(validate_cron)]
UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]
PositiveId = Annotated[int, Field(gt=0, strict=True)]

USStateTerritory = Literal[
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI",
    "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN",
    "MS", "MO", "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH",
    "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA",
    "WV", "WI", "WY", "PR", "GU", "VI", "AS", "MP",
]


class PayeeIn(BaseModel):
    model_config = ConfigDict(extra="ignore")
    business_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(..., min_length=1)
    street_address: str = Field(..., min_length=1)
    address_line_2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state_or_territory: USStateTerritory
    postal_code: str = Field(..., min_length=1, max_length=10)
    country: str = "United States"
    account_number: str = Field(..., min_length=1, max_length=17, pattern=r"^\d+$")
    routing_number: str = Field(..., pattern=r"^\d{9}$")


class RuleCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    source_account_id: PositiveId
    payee_id: Optional[PositiveId] = None
    payee: Optional[PayeeIn] = None
    amount: AmountCents
    frequency: CronExpression
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _payee_given(self):
        if self.payee_id is None and self.payee is None:
            raise ValueError("Must provide either payee_id or payee information")
        return self


class RuleUpdate(BaseModel):
    """Partial update. Only fields present in the request are applied.

    ``end_time`` may be sent as ``null`` to clear it; every other field must
    carry a value when present.
    """

    model_config = ConfigDict(extra="ignore")
    source_account_id: Optional[PositiveId] = None
    payee_id: Optional[PositiveId] = None
    amount: Optional[AmountCents] = None
    frequency: Optional[CronExpression] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None

    @field_validator(
        "source_account_id", "payee_id", "amount", "frequency", "start_time"
    )
    @classmethod
    def _not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @model_validator(mode="after")
    def _at_least_one(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self

    def touched(self, field: str) -> bool:
        return field in self.model_fields_set
