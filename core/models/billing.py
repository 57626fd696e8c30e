"""Billing source and finalize models.

Clients, matters, timesheets and expenses are owned by other parts of the
back office; the billing engine only reads them.
"""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class Client(BaseModel):
    """Billing client as seen by the engine."""

    client_id: int
    client_name: str
    group_id: int | None = None
    address: str | None = None

    model_config = {"from_attributes": True}


class Matter(BaseModel):
    """Client engagement; billable work is attributed to one or more matters."""

    matter_id: int
    client_id: int
    matter_title: str
    currency: str | None = None

    model_config = {"from_attributes": True}


class Timesheet(BaseModel):
    """Recorded work. billable_minutes is stored as whole minutes."""

    timesheet_id: int
    matter_id: int | None = None
    billable_minutes: int | None = None
    hourly_rate: Decimal | None = None
    calculated_amount: Decimal | None = None
    currency: str | None = None

    model_config = {"from_attributes": True}


class Expense(BaseModel):
    """One-time expense. Only expenses attached to a matter are billable."""

    expense_id: int
    matter_id: int | None = None
    amount: Decimal
    currency: str | None = None

    model_config = {"from_attributes": True}


class SplitTarget(BaseModel):
    """A billing client and the percentage of the invoice it pays."""

    client_id: int
    percentage: Decimal


class PartnerShareInput(BaseModel):
    """A partner and their percentage of the invoice's revenue."""

    partner_user_id: UUID
    percentage: Decimal


class FinalizeRequest(BaseModel):
    """Finalize a draft, optionally splitting it across clients."""

    splits: list[SplitTarget] = Field(default_factory=list)
    partner_shares: list[PartnerShareInput] = Field(default_factory=list)


class CurrencyMatter(BaseModel):
    matter_id: int
    matter_title: str


class CurrencyBucket(BaseModel):
    """Source amounts found in one currency."""

    currency: str
    matters: list[CurrencyMatter] = Field(default_factory=list)
    amount: Decimal = Decimal("0")


class CurrencyDetection(BaseModel):
    """Currencies present across a candidate set of billing sources."""

    currencies: list[str]
    breakdown: list[CurrencyBucket]
    requires_exchange_rates: bool
    suggested_invoice_currency: str
