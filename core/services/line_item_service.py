"""
Line-item aggregation for invoices.

Turns timesheets and one-time expenses into billed snapshots in the invoice
currency and derives the invoice totals from them. Snapshots are replaced
wholesale whenever a draft's sources or rates change; totals are always
recomputed from the stored snapshot set, never adjusted incrementally.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping
from uuid import UUID

from core.config import BillingConfig
from core.exceptions import AlreadyInvoiced, NotFoundError, ValidationError
from core.models import (
    DiscountType, Expense, InvoiceTimesheetLink, Matter, Timesheet, TimesheetBillingUpdate,
)
from core.services.currency_service import INTERNAL_PLACES, CurrencyService, convert
from core.store import StoreTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MINUTES_PER_HOUR = Decimal("60")


def _q(value: Decimal) -> Decimal:
    return value.quantize(INTERNAL_PLACES, rounding=ROUND_HALF_UP)


class LineItemService:
    """Build billed snapshots and derive invoice totals."""

    def __init__(self, config: BillingConfig, currency: CurrencyService):
        self.config = config
        self.currency = currency

    # -------------------------------------------------------------------------
    # Source validation
    # -------------------------------------------------------------------------

    def ensure_not_invoiced(
        self,
        tx: StoreTransaction,
        timesheet_ids: list[int],
        exclude_invoice_id: UUID | None = None,
    ) -> None:
        """
        Reject timesheets already billed on another invoice.

        Raises:
            AlreadyInvoiced: With the conflicting invoice numbers
        """
        conflicts = tx.find_invoiced_timesheets(timesheet_ids, exclude_invoice_id)
        if conflicts:
            numbers = sorted({row["invoice_number"] for row in conflicts})
            raise AlreadyInvoiced(numbers)

    def load_timesheets(
        self,
        tx: StoreTransaction,
        timesheet_ids: list[int],
        matter_ids: list[int] | None = None,
    ) -> list[Timesheet]:
        """
        Load timesheets, all of which must exist.

        When matter_ids is given, every timesheet attached to a matter must be
        attached to one of them.

        Raises:
            NotFoundError: Some timesheets not found
            ValidationError: Timesheet belongs to an unselected matter
        """
        unique_ids = list(dict.fromkeys(timesheet_ids))
        timesheets = [Timesheet.model_validate(r) for r in tx.get_timesheets(unique_ids)]
        if len(timesheets) != len(unique_ids):
            found = {t.timesheet_id for t in timesheets}
            missing = [tid for tid in unique_ids if tid not in found]
            raise NotFoundError(f"Some timesheets not found: {missing}")

        if matter_ids is not None:
            allowed = set(matter_ids)
            if any(t.matter_id is not None and t.matter_id not in allowed for t in timesheets):
                raise ValidationError("All timesheets must belong to the selected matters")

        return timesheets

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def build_timesheet_links(
        self,
        tx: StoreTransaction,
        timesheets: list[Timesheet],
        invoice_currency: str,
        rates: Mapping[str, Decimal],
    ) -> list[dict[str, Any]]:
        """
        Billed snapshot for each timesheet, converted into the invoice currency.

        Raises:
            MissingExchangeRate: A timesheet currency has no rate
        """
        matter_ids = sorted({t.matter_id for t in timesheets if t.matter_id is not None})
        matters = {m.matter_id: m for m in (Matter.model_validate(r) for r in tx.get_matters(matter_ids))}

        links = []
        for timesheet in timesheets:
            source_currency = self.currency.resolve_timesheet_currency(timesheet, matters)
            amount = timesheet.calculated_amount or ZERO
            links.append({
                "timesheet_id": timesheet.timesheet_id,
                "billed_minutes": timesheet.billable_minutes,
                "billed_amount": convert(amount, source_currency, invoice_currency, rates),
                "hourly_rate": timesheet.hourly_rate,
                "source_currency": source_currency,
            })
        return links

    def build_expense_links(
        self,
        tx: StoreTransaction,
        expense_ids: list[int],
        invoice_currency: str,
        rates: Mapping[str, Decimal],
    ) -> list[dict[str, Any]]:
        """
        Billed snapshot for each expense attached to a matter.

        Expenses without a matter are not billable and are skipped.

        Raises:
            NotFoundError: None of the expenses is billable
            MissingExchangeRate: An expense currency has no rate
        """
        unique_ids = list(dict.fromkeys(expense_ids))
        expenses = [Expense.model_validate(r) for r in tx.get_expenses(unique_ids)]
        if not expenses:
            raise NotFoundError("No valid expenses found (expenses must have a matter)")

        skipped = set(unique_ids) - {e.expense_id for e in expenses}
        if skipped:
            logger.warning(f"Ignoring expenses without a matter or not found: {sorted(skipped)}")

        return [self._expense_link(e, invoice_currency, rates) for e in expenses]

    def _expense_link(
        self,
        expense: Expense,
        invoice_currency: str,
        rates: Mapping[str, Decimal],
    ) -> dict[str, Any]:
        source_currency = self.currency.resolve_expense_currency(expense)
        converted = source_currency != invoice_currency
        return {
            "expense_id": expense.expense_id,
            "billed_amount": convert(expense.amount, source_currency, invoice_currency, rates),
            "billed_currency": invoice_currency,
            "original_amount": expense.amount,
            "original_currency": source_currency,
            "exchange_rate": Decimal(rates[source_currency]) if converted else None,
        }

    def reconvert_expense_links(
        self,
        links: list[dict[str, Any]],
        invoice_currency: str,
        rates: Mapping[str, Decimal],
    ) -> list[dict[str, Any]]:
        """Re-derive expense snapshots from their original amounts under new rates."""
        return [
            self._expense_link(
                Expense(
                    expense_id=link["expense_id"],
                    amount=link["original_amount"],
                    currency=link["original_currency"],
                ),
                invoice_currency,
                rates,
            )
            for link in links
        ]

    def reprice_timesheet(
        self,
        link: InvoiceTimesheetLink,
        update: TimesheetBillingUpdate,
    ) -> dict[str, Any]:
        """
        New billed figures for one timesheet link.

        The amount is recomputed as minutes / 60 * rate whenever a positive
        hourly rate is known; otherwise an explicit amount is taken, falling
        back to the stored one. Rates and amounts are in the invoice currency.

        Raises:
            ValidationError: Negative rate or amount
        """
        fields_set = update.model_fields_set

        if update.hourly_rate is not None and update.hourly_rate < 0:
            raise ValidationError("Hourly rate cannot be negative")
        if update.billed_amount is not None and update.billed_amount < 0:
            raise ValidationError("Billed amount cannot be negative")

        minutes = update.billed_minutes if "billed_minutes" in fields_set else link.billed_minutes
        rate = update.hourly_rate if "hourly_rate" in fields_set else link.hourly_rate

        if minutes is not None and rate is not None and rate > 0:
            amount = _q(Decimal(minutes) / MINUTES_PER_HOUR * rate)
        elif update.billed_amount is not None:
            amount = _q(update.billed_amount)
        else:
            amount = link.billed_amount

        return {
            "billed_minutes": minutes,
            "hourly_rate": rate,
            "billed_amount": amount,
        }

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    def aggregate(
        self,
        timesheet_links: list[Mapping[str, Any]],
        expense_links: list[Mapping[str, Any]],
    ) -> Decimal:
        """Subtotal of a snapshot set."""
        total = sum((Decimal(link["billed_amount"] or 0) for link in timesheet_links), ZERO)
        total += sum((Decimal(link["billed_amount"] or 0) for link in expense_links), ZERO)
        return _q(total)

    def compute_totals(
        self,
        subtotal: Decimal,
        discount_type: DiscountType | None,
        discount_value: Decimal | None,
    ) -> tuple[Decimal, Decimal]:
        """
        Discount amount and final amount for a subtotal.

        The discount is clamped to [0, subtotal] so final_amount is never
        negative and never above the subtotal.
        """
        value = discount_value or ZERO
        if discount_type == DiscountType.PERCENTAGE:
            discount = _q(subtotal * value / HUNDRED)
        elif discount_type == DiscountType.FIXED:
            discount = value
        else:
            discount = ZERO

        discount = min(max(discount, ZERO), subtotal)
        return discount, subtotal - discount

    def validate_discount(
        self,
        subtotal: Decimal,
        discount_type: DiscountType | None,
        discount_value: Decimal | None,
    ) -> None:
        """
        Reject a discount the caller is setting explicitly when it cannot apply.

        Raises:
            ValidationError: Negative discount or fixed discount above subtotal
        """
        value = discount_value or ZERO
        if value < 0:
            raise ValidationError("Discount amount cannot be negative")
        if discount_type == DiscountType.FIXED and value > subtotal:
            raise ValidationError("Discount amount cannot exceed subtotal")
        if discount_type == DiscountType.PERCENTAGE and value > HUNDRED:
            raise ValidationError("Percentage discount cannot exceed 100")

    def amount_in_inr(
        self,
        final_amount: Decimal,
        invoice_currency: str,
        user_exchange_rate: Decimal | None,
    ) -> Decimal | None:
        """Final amount in the firm's base currency, when a rate is known."""
        if invoice_currency == self.config.default_currency:
            return final_amount
        if user_exchange_rate is None or user_exchange_rate <= 0:
            return None
        return _q(final_amount * user_exchange_rate)

    def totals(
        self,
        subtotal: Decimal,
        discount_type: DiscountType | None,
        discount_value: Decimal | None,
        invoice_currency: str,
        user_exchange_rate: Decimal | None,
    ) -> dict[str, Any]:
        """Invoice columns derived from a subtotal and the invoice's settings."""
        discount_amount, final_amount = self.compute_totals(subtotal, discount_type, discount_value)
        return {
            "subtotal": subtotal,
            "discount_amount": discount_amount,
            "final_amount": final_amount,
            "amount_in_inr": self.amount_in_inr(final_amount, invoice_currency, user_exchange_rate),
        }
