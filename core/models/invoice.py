"""Invoice domain models.

Money is carried as Decimal. Converted line amounts keep 4 decimal places
internally; rounding to 2 places happens only for display.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class WorkflowStatus(str, Enum):
    """Invoice workflow status. Gates which mutations are legal."""

    DRAFT = "draft"
    FINALIZED = "finalized"
    INVOICE_UPLOADED = "invoice_uploaded"


class PaymentStatus(str, Enum):
    """Payment status, derived from amounts and due date."""

    NEW = "new"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    PAID = "paid"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class InvoiceCreate(BaseModel):
    """Data required to create a draft invoice."""

    client_id: int
    matter_ids: list[int] = Field(..., min_length=1)
    invoice_number: str | None = Field(None, max_length=64)
    invoice_date: date
    due_date: date
    invoice_amount: Decimal
    description: str = Field(..., min_length=1, max_length=2000)
    notes: str | None = Field(None, max_length=2000)
    billing_location: str = Field(..., min_length=1, max_length=64)
    invoice_currency: str | None = Field(None, pattern=r"^[A-Z]{3}$")
    exchange_rates: dict[str, Decimal] = Field(default_factory=dict)
    timesheet_ids: list[int] = Field(default_factory=list)
    expense_ids: list[int] = Field(default_factory=list)
    include_expenses: bool = False
    date_from: date | None = None
    date_to: date | None = None


class InvoiceUpdate(BaseModel):
    """
    Fields that may change while an invoice is a draft.

    Only fields explicitly set are applied. Setting exchange_rates to None
    clears the stored map; setting matter_ids or timesheet_ids replaces the
    linked set. invoice_amount is the manual amount (primary matter currency)
    for an invoice without timesheets or expenses.
    """

    invoice_number: str | None = Field(None, max_length=64)
    invoice_date: date | None = None
    due_date: date | None = None
    description: str | None = Field(None, min_length=1, max_length=2000)
    notes: str | None = Field(None, max_length=2000)
    date_from: date | None = None
    date_to: date | None = None
    billing_location: str | None = Field(None, min_length=1, max_length=64)
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None
    user_exchange_rate: Decimal | None = None
    exchange_rates: dict[str, Decimal] | None = None
    matter_ids: list[int] | None = None
    timesheet_ids: list[int] | None = None
    invoice_amount: Decimal | None = None


class TimesheetBillingUpdate(BaseModel):
    """Adjust the billed snapshot of one timesheet on a draft invoice."""

    billed_minutes: int | None = Field(None, ge=0)
    hourly_rate: Decimal | None = None
    billed_amount: Decimal | None = None


class InvoiceFilter(BaseModel):
    """Filters for listing top-level invoices."""

    client_id: int | None = None
    matter_id: int | None = None
    status: WorkflowStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int = Field(100, ge=1, le=500)


class InvoiceTimesheetLink(BaseModel):
    """Billed snapshot of one timesheet entry, in the invoice currency."""

    invoice_id: UUID
    timesheet_id: int
    billed_minutes: int | None
    billed_amount: Decimal
    hourly_rate: Decimal | None
    source_currency: str

    model_config = {"from_attributes": True}


class InvoiceExpenseLink(BaseModel):
    """Billed snapshot of one expense."""

    invoice_id: UUID
    expense_id: int
    billed_amount: Decimal
    billed_currency: str
    original_amount: Decimal
    original_currency: str
    exchange_rate: Decimal | None

    model_config = {"from_attributes": True}


class PartnerShare(BaseModel):
    """A partner's percentage claim on one invoice's revenue."""

    id: UUID
    invoice_id: UUID
    partner_user_id: UUID
    percentage: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    client_id: int
    matter_id: int | None
    is_multi_matter: bool
    invoice_date: date
    due_date: date
    description: str
    notes: str | None
    date_from: date | None
    date_to: date | None
    billing_location: str
    matter_currency: str
    invoice_currency: str
    exchange_rates: dict[str, Decimal]
    subtotal: Decimal
    discount_type: DiscountType | None
    discount_value: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    user_exchange_rate: Decimal | None
    amount_in_inr: Decimal | None
    status: WorkflowStatus
    payment_status: PaymentStatus
    amount_paid: Decimal
    parent_invoice_id: UUID | None
    is_split: bool
    split_percentage: Decimal | None
    split_sequence: int | None
    uploaded_invoice_url: str | None
    uploaded_at: datetime | None
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def balance_due(self) -> Decimal:
        """Remaining amount to be paid."""
        return self.final_amount - self.amount_paid

    @property
    def is_draft(self) -> bool:
        return self.status == WorkflowStatus.DRAFT

    @property
    def is_child(self) -> bool:
        return self.parent_invoice_id is not None


class SplitSummaryEntry(BaseModel):
    """Payment position of one child invoice."""

    invoice_id: UUID
    invoice_number: str
    final_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    currency: str
    status: PaymentStatus


class SplitSummary(BaseModel):
    """Aggregated payment position of a split parent, derived at read time."""

    total_paid: Decimal
    splits: list[SplitSummaryEntry]


class InvoiceView(Invoice):
    """Invoice as returned to callers, with derived read-time fields."""

    matter_ids: list[int]
    display_status: str
    is_parent: bool
    split_count: int
    split_summary: SplitSummary | None = None


class SplitInvoiceView(Invoice):
    """Child invoice with its partner shares and payment count."""

    display_status: PaymentStatus
    partner_shares: list[PartnerShare]
    payment_count: int


class CurrencyBreakdown(BaseModel):
    """How an invoice's amounts relate to its source currencies."""

    invoice_id: UUID
    invoice_number: str
    matter_currency: str
    invoice_currency: str
    exchange_rates: dict[str, Decimal]
    final_amount: Decimal
    is_converted: bool


class InvoiceDocument(BaseModel):
    """Everything a document template needs to render one invoice."""

    invoice_number: str
    invoice_date: date
    due_date: date
    client_name: str
    client_address: str | None
    matters: list[dict]
    timesheets: list[InvoiceTimesheetLink]
    expenses: list[InvoiceExpenseLink]
    subtotal: Decimal
    discount_type: DiscountType | None
    discount_value: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    invoice_currency: str
    user_exchange_rate: Decimal | None
    amount_in_inr: Decimal | None
    description: str
    notes: str | None
    billing_location: str
