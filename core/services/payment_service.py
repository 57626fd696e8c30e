"""
Payment ledger.

Payments are recorded against leaf invoices only: an ordinary finalized
invoice, or a child of a split. A split parent never takes a payment; its
payment position is derived from its children every time it is read.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from core.audit import AuditAction, AuditLogger, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import InvalidState, NotFoundError, ValidationError
from core.models import (
    FiscalMonth, FiscalYearSummary, Invoice, Payment, PaymentCreate, PaymentStatus,
    PaymentView, PeriodPayments, SplitSummary, SplitSummaryEntry, WorkflowStatus,
)
from core.store import InvoiceStore
from utils.timezone import now_utc, today_in
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_FY_MONTHS = ["Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec", "Jan", "Feb", "Mar"]


def derive_status(invoice: Invoice, today: date) -> PaymentStatus:
    """Payment status of a single invoice as of today."""
    if invoice.amount_paid >= invoice.final_amount:
        return PaymentStatus.PAID
    if invoice.amount_paid > 0:
        return PaymentStatus.PARTIALLY_PAID
    if invoice.due_date < today:
        return PaymentStatus.OVERDUE
    return PaymentStatus.NEW


def derive_parent_status(children: list[Invoice], today: date) -> str:
    """
    Status of a split parent from its children.

    All paid -> paid; any paid or partially paid -> partially_paid; any
    overdue -> overdue; otherwise the parent simply reads as finalized.
    """
    statuses = [derive_status(child, today) for child in children]
    if statuses and all(s == PaymentStatus.PAID for s in statuses):
        return PaymentStatus.PAID.value
    if any(s in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID) for s in statuses):
        return PaymentStatus.PARTIALLY_PAID.value
    if any(s == PaymentStatus.OVERDUE for s in statuses):
        return PaymentStatus.OVERDUE.value
    return WorkflowStatus.FINALIZED.value


def split_summary(children: list[Invoice], today: date) -> SplitSummary:
    """Total paid across a parent's children plus each child's position."""
    return SplitSummary(
        total_paid=sum((c.amount_paid for c in children), ZERO),
        splits=[
            SplitSummaryEntry(
                invoice_id=c.id,
                invoice_number=c.invoice_number,
                final_amount=c.final_amount,
                amount_paid=c.amount_paid,
                amount_due=c.balance_due,
                currency=c.invoice_currency,
                status=derive_status(c, today),
            )
            for c in children
        ],
    )


def _sum_amounts(payments: Iterable[Payment]) -> Decimal:
    return sum((p.amount for p in payments), ZERO)


class PaymentService:
    """Record payments and report on them."""

    def __init__(
        self,
        store: InvoiceStore,
        config: BillingConfig,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.store = store
        self.config = config
        self.audit = audit
        self.event_bus = event_bus

    def today(self) -> date:
        return today_in(self.config.reference_timezone)

    def record(self, invoice_id: UUID, data: PaymentCreate) -> Payment:
        """
        Record a payment and apply it to the invoice.

        Args:
            invoice_id: Leaf invoice receiving the payment
            data: Payment details

        Returns:
            The stored payment

        Raises:
            ValidationError: Non-positive amount, unknown method, parent
                invoice, or amount above the remaining balance
            InvalidState: Invoice is still a draft
            NotFoundError: Invoice does not exist
        """
        if data.amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")

        if data.payment_method not in self.config.payment_methods:
            raise ValidationError(
                f"Invalid payment method. Must be one of: {', '.join(self.config.payment_methods)}"
            )

        user_id = get_current_user_id()
        events = []

        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id, for_update=True)
            if row is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            current = Invoice.model_validate(row)

            if current.is_draft:
                raise InvalidState(
                    "Cannot record payments on a draft invoice. Finalize it first.",
                    current_status=current.status.value,
                )

            if current.is_split or tx.list_children(invoice_id):
                raise ValidationError(
                    "Cannot record payments on parent invoice. "
                    "Please record payments on individual split invoices instead."
                )

            remaining = current.balance_due
            if data.amount > remaining:
                raise ValidationError(
                    f"Payment amount ({data.amount}) exceeds remaining balance ({remaining})"
                )

            payment_row = tx.insert_payment({
                "id": uuid4(),
                "invoice_id": invoice_id,
                "amount": data.amount,
                "payment_date": data.payment_date,
                "payment_method": data.payment_method,
                "transaction_ref": data.transaction_ref,
                "notes": data.notes,
                "recorded_by": user_id,
                "created_at": now_utc(),
            })
            payment = Payment.model_validate(payment_row)

            new_paid = current.amount_paid + data.amount
            new_status = (
                PaymentStatus.PAID if new_paid >= current.final_amount
                else PaymentStatus.PARTIALLY_PAID
            )
            updated = Invoice.model_validate(tx.update_invoice(invoice_id, {
                "amount_paid": new_paid,
                "payment_status": new_status,
            }))

            self.audit.log_change(
                tx,
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
            )
            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    current.model_dump(mode="json", include={"amount_paid", "payment_status"}),
                    updated.model_dump(mode="json", include={"amount_paid", "payment_status"}),
                ),
            )

            events.append(PaymentRecorded.create(updated, payment))
            if new_status == PaymentStatus.PAID:
                events.append(InvoicePaid.create(updated))

        logger.info(
            f"Recorded payment {payment.amount} on invoice {updated.invoice_number} "
            f"({new_status.value})"
        )
        self.event_bus.publish_all(events)
        return payment

    def list_for_invoice(self, invoice_id: UUID) -> list[PaymentView]:
        """
        Payments on an invoice, newest first.

        For a split parent this includes every child's payments, flagged with
        the child's invoice number.
        """
        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id)
            if row is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")

            children = [Invoice.model_validate(r) for r in tx.list_children(invoice_id)]
            numbers = {c.id: c.invoice_number for c in children}
            rows = tx.list_payments([invoice_id, *numbers])

        views = []
        for payment_row in rows:
            payment = Payment.model_validate(payment_row)
            child_number = numbers.get(payment.invoice_id)
            views.append(PaymentView(
                **payment.model_dump(),
                is_split_payment=child_number is not None,
                split_invoice_number=child_number,
            ))

        views.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return views

    def paid_between(self, start: date, end: date, top_level_only: bool = True) -> PeriodPayments:
        """Payments dated within [start, end] and their total."""
        if end < start:
            raise ValidationError("End date must not be before start date")

        with self.store.transaction() as tx:
            payments = [
                Payment.model_validate(r)
                for r in tx.payments_between(start, end, top_level_only=top_level_only)
            ]

        return PeriodPayments(
            start=start,
            end=end,
            payments=payments,
            total_payments=len(payments),
            total_paid=_sum_amounts(payments),
        )

    def paid_this_week(self, today: date | None = None) -> PeriodPayments:
        """Payments on top-level invoices in the Monday to Sunday week containing today."""
        today = today or self.today()
        week_start = today - timedelta(days=today.weekday())
        return self.paid_between(week_start, week_start + timedelta(days=6))

    def fiscal_year_summary(self, today: date | None = None) -> FiscalYearSummary:
        """Monthly payment totals for the April to March financial year containing today."""
        today = today or self.today()
        start_year = today.year if today.month >= 4 else today.year - 1
        fy_start = date(start_year, 4, 1)
        fy_end = date(start_year + 1, 3, 31)

        with self.store.transaction() as tx:
            payments = [Payment.model_validate(r) for r in tx.payments_between(fy_start, fy_end)]

        totals: dict[tuple[int, int], Decimal] = {}
        for payment in payments:
            key = (payment.payment_date.year, payment.payment_date.month)
            totals[key] = totals.get(key, ZERO) + payment.amount

        months = []
        for index, short in enumerate(_FY_MONTHS):
            month = index + 4 if index < 9 else index - 8
            year = start_year if index < 9 else start_year + 1
            months.append(FiscalMonth(
                month=f"{short} {year}",
                month_short=short,
                year=year,
                total=totals.get((year, month), ZERO),
            ))

        return FiscalYearSummary(
            fy_start=fy_start,
            fy_end=fy_end,
            fy_label=f"FY {start_year}-{str(start_year + 1)[-2:]}",
            months=months,
            grand_total=_sum_amounts(payments),
            total_payments=len(payments),
        )
