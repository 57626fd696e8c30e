"""
Currency normalization for billable amounts.

Every invoice carries a caller-supplied rate map (currency -> rate into the
invoice currency). Conversion only ever reads that map, so an invoice's
amounts can be recomputed later and come out the same regardless of how
market rates have moved. Live rates are used only to suggest values for the
map, through the rate suggestion client.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from clients.rate_client import RateSuggestionClient
from core.config import BillingConfig
from core.exceptions import MissingExchangeRate, ValidationError
from core.models import (
    CurrencyBreakdown, CurrencyBucket, CurrencyDetection, CurrencyMatter,
    Expense, Invoice, Matter, Timesheet,
)
from core.store import InvoiceStore

logger = logging.getLogger(__name__)

INTERNAL_PLACES = Decimal("0.0001")
DISPLAY_PLACES = Decimal("0.01")


def convert(
    amount: Decimal,
    source: str,
    target: str,
    rates: Mapping[str, Decimal],
) -> Decimal:
    """
    Convert an amount into the target currency using the invoice's rate map.

    Same-currency amounts come back unchanged without consulting the map.
    Otherwise rates[source] must be present and positive.

    Raises:
        MissingExchangeRate: No usable rate for source
    """
    if source == target:
        return amount

    rate = rates.get(source)
    if rate is None or Decimal(rate) <= 0:
        raise MissingExchangeRate(source, target)

    return (amount * Decimal(rate)).quantize(INTERNAL_PLACES, rounding=ROUND_HALF_UP)


def to_display(amount: Decimal) -> Decimal:
    """Round to 2 decimal places for presentation."""
    return amount.quantize(DISPLAY_PLACES, rounding=ROUND_HALF_UP)


def missing_rates(
    source_currencies: Iterable[str],
    target: str,
    rates: Mapping[str, Decimal],
) -> list[str]:
    """Source currencies other than target that have no positive rate, sorted."""
    missing = {
        currency
        for currency in source_currencies
        if currency != target and (rates.get(currency) is None or Decimal(rates[currency]) <= 0)
    }
    return sorted(missing)


class CurrencyService:
    """Currency resolution, detection and rate suggestion."""

    def __init__(
        self,
        store: InvoiceStore,
        config: BillingConfig,
        rate_client: RateSuggestionClient | None = None,
    ):
        self.store = store
        self.config = config
        self.rate_client = rate_client

    def supported_currencies(self) -> list[str]:
        return list(self.config.supported_currencies)

    def resolve_matter_currency(self, matter: Matter) -> str:
        return matter.currency or self.config.default_currency

    def resolve_timesheet_currency(self, timesheet: Timesheet, matters: Mapping[int, Matter]) -> str:
        """The entry's own currency, else its matter's, else the default."""
        if timesheet.currency:
            return timesheet.currency

        matter = matters.get(timesheet.matter_id) if timesheet.matter_id is not None else None
        if matter is not None and matter.currency:
            return matter.currency

        return self.config.default_currency

    def resolve_expense_currency(self, expense: Expense) -> str:
        return expense.currency or self.config.expense_currency

    def required_rates(self, source_currencies: Iterable[str], target: str) -> list[str]:
        """Currencies that need a rate to be folded into an invoice in target."""
        return sorted({c for c in source_currencies if c != target})

    def ensure_supported(self, currency: str) -> None:
        if not self.config.is_supported_currency(currency):
            raise ValidationError(
                f"Invalid currency {currency}. "
                f"Supported currencies: {', '.join(self.config.supported_currencies)}"
            )

    def detect_currencies(
        self,
        matter_ids: list[int],
        timesheet_ids: list[int] | None = None,
        expense_ids: list[int] | None = None,
    ) -> CurrencyDetection:
        """
        Currencies present across a candidate set of billing sources.

        Used before creating an invoice to decide its currency and which
        exchange rates the user must supply.

        Raises:
            ValidationError: No matters given
        """
        if not matter_ids:
            raise ValidationError("At least one matter is required")

        buckets: dict[str, CurrencyBucket] = {}

        def bucket(currency: str) -> CurrencyBucket:
            if currency not in buckets:
                buckets[currency] = CurrencyBucket(currency=currency)
            return buckets[currency]

        with self.store.transaction() as tx:
            matters = [Matter.model_validate(r) for r in tx.get_matters(matter_ids)]
            for matter in matters:
                bucket(self.resolve_matter_currency(matter)).matters.append(
                    CurrencyMatter(matter_id=matter.matter_id, matter_title=matter.matter_title)
                )

            if timesheet_ids:
                timesheets = [Timesheet.model_validate(r) for r in tx.get_timesheets(timesheet_ids)]
                needed = sorted({
                    t.matter_id for t in timesheets
                    if t.matter_id is not None and not t.currency
                })
                matter_map = {
                    m.matter_id: m
                    for m in (Matter.model_validate(r) for r in tx.get_matters(needed))
                }
                for timesheet in timesheets:
                    amount = timesheet.calculated_amount or Decimal("0")
                    if amount == 0:
                        continue
                    entry = bucket(self.resolve_timesheet_currency(timesheet, matter_map))
                    entry.amount += amount

            if expense_ids:
                for expense in (Expense.model_validate(r) for r in tx.get_expenses(expense_ids)):
                    if expense.amount == 0:
                        continue
                    bucket(self.resolve_expense_currency(expense)).amount += expense.amount

        breakdown = [buckets[c] for c in sorted(buckets)]
        currencies = [b.currency for b in breakdown]

        return CurrencyDetection(
            currencies=currencies,
            breakdown=breakdown,
            requires_exchange_rates=len(currencies) > 1,
            suggested_invoice_currency=currencies[0] if currencies else self.config.default_currency,
        )

    def suggest_rate(self, source: str, target: str) -> Decimal:
        """
        Indicative market rate for pre-filling an invoice's rate map.

        Never call this while a store transaction is open.

        Raises:
            ValidationError: Unsupported currency or no rate service configured
            RateServiceError: Rate service failure
        """
        self.ensure_supported(source)
        self.ensure_supported(target)

        if source == target:
            return Decimal("1")

        if self.rate_client is None:
            raise ValidationError("Exchange rate suggestions are not configured")

        return self.rate_client.get_rate(source, target)

    def currency_breakdown(self, invoice: Invoice) -> CurrencyBreakdown:
        return CurrencyBreakdown(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            matter_currency=invoice.matter_currency,
            invoice_currency=invoice.invoice_currency,
            exchange_rates=invoice.exchange_rates,
            final_amount=invoice.final_amount,
            is_converted=any(
                currency != invoice.invoice_currency
                for currency in [invoice.matter_currency, *invoice.exchange_rates]
            ),
        )
