"""Payment ledger models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """A receipt to record against one leaf invoice."""

    amount: Decimal
    payment_date: date
    payment_method: str = Field(..., min_length=1, max_length=32)
    transaction_ref: str | None = Field(None, max_length=128)
    notes: str | None = Field(None, max_length=2000)


class Payment(BaseModel):
    """Recorded payment. Never mutated once written."""

    id: UUID
    invoice_id: UUID
    amount: Decimal
    payment_date: date
    payment_method: str
    transaction_ref: str | None
    notes: str | None
    recorded_by: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentView(Payment):
    """Payment listed on an invoice, flagged when it belongs to a split child."""

    is_split_payment: bool = False
    split_invoice_number: str | None = None


class PeriodPayments(BaseModel):
    """Payments received on top-level invoices within a date range."""

    start: date
    end: date
    payments: list[Payment]
    total_payments: int
    total_paid: Decimal


class FiscalMonth(BaseModel):
    month: str
    month_short: str
    year: int
    total: Decimal


class FiscalYearSummary(BaseModel):
    """Monthly payment totals for an April to March financial year."""

    fy_start: date
    fy_end: date
    fy_label: str
    months: list[FiscalMonth]
    grand_total: Decimal
    total_payments: int
