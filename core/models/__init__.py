"""Core domain models."""

from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceFilter, InvoiceView,
    InvoiceTimesheetLink, InvoiceExpenseLink, PartnerShare,
    TimesheetBillingUpdate, SplitSummary, SplitSummaryEntry, SplitInvoiceView,
    CurrencyBreakdown, InvoiceDocument, WorkflowStatus, PaymentStatus, DiscountType,
)
from core.models.billing import (
    Client, Matter, Timesheet, Expense,
    SplitTarget, PartnerShareInput, FinalizeRequest,
    CurrencyMatter, CurrencyBucket, CurrencyDetection,
)
from core.models.payment import (
    Payment, PaymentCreate, PaymentView, PeriodPayments, FiscalMonth, FiscalYearSummary,
)

__all__ = [
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceFilter", "InvoiceView",
    "InvoiceTimesheetLink", "InvoiceExpenseLink", "PartnerShare",
    "TimesheetBillingUpdate", "SplitSummary", "SplitSummaryEntry", "SplitInvoiceView",
    "CurrencyBreakdown", "InvoiceDocument", "WorkflowStatus", "PaymentStatus", "DiscountType",
    # Billing sources and finalize
    "Client", "Matter", "Timesheet", "Expense",
    "SplitTarget", "PartnerShareInput", "FinalizeRequest",
    "CurrencyMatter", "CurrencyBucket", "CurrencyDetection",
    # Payment
    "Payment", "PaymentCreate", "PaymentView", "PeriodPayments", "FiscalMonth", "FiscalYearSummary",
]
