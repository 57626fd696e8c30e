"""
Invoice number allocation.

Numbers look like DDMMYYYY-CODE for an office's first invoice of a calendar
day, then DDMMYYYY-CODE-A, DDMMYYYY-CODE-B, ... DDMMYYYY-CODE-Z,
DDMMYYYY-CODE-AA and so on. The day is taken in the configured reference
timezone so callers in other zones land on the same number.

Counting existing numbers and inserting the new invoice is not atomic on its
own. allocate() therefore takes a transaction-scoped advisory lock on the
(office, day) scope before counting; InvoiceService additionally retries a
unique-constraint failure with a fresh number.
"""

import logging
import re
from datetime import date, datetime

from core.config import BillingConfig
from core.exceptions import DuplicateInvoiceNumber, ValidationError
from core.store import InvoiceStore, StoreTransaction
from utils.timezone import calendar_day

logger = logging.getLogger(__name__)

_FORMAT_HINT = (
    "Invoice number must follow format: DDMMYYYY-OFFICE or DDMMYYYY-OFFICE-A "
    "(e.g., 07012026-M or 07012026-M-A)"
)


def sequence(index: int) -> str:
    """
    Letters for a 0-based index in bijective base 26.

    0 -> A, 25 -> Z, 26 -> AA, 27 -> AB, 51 -> AZ, 52 -> BA
    """
    if index < 0:
        raise ValidationError(f"Sequence index must be non-negative, got {index}")

    letters = ""
    n = index
    while n >= 0:
        letters = chr(65 + n % 26) + letters
        n = n // 26 - 1
    return letters


class InvoiceNumberService:
    """Suggest, validate and allocate invoice numbers."""

    def __init__(self, store: InvoiceStore, config: BillingConfig):
        self.store = store
        self.config = config

    def office_code(self, location: str, strict: bool = False) -> str:
        """
        Office code for a billing location.

        Unknown locations map to the default office code unless strict is set.

        Raises:
            ValidationError: Unknown location with strict=True
        """
        key = location.strip().lower()
        if strict and key not in self.config.office_codes:
            raise ValidationError(
                f"Invalid location. Must be one of: {', '.join(self.config.office_codes)}"
            )
        return self.config.office_code_for(location)

    def invoice_day(self, value: date | datetime) -> date:
        """Calendar day of an invoice date in the reference timezone."""
        try:
            return calendar_day(value, self.config.reference_timezone)
        except ValueError as e:
            raise ValidationError(str(e))

    def number_pattern(self) -> re.Pattern:
        # Longest codes first so LT is not shadowed by a one-letter code
        codes = sorted(set(self.config.office_codes.values()) | {self.config.default_office_code},
                       key=lambda c: (-len(c), c))
        return re.compile(rf"^\d{{8}}-({'|'.join(map(re.escape, codes))})(-[A-Z]+)?$")

    def _office_day_pattern(self, day: date, code: str) -> re.Pattern:
        return re.compile(rf"^{day.strftime('%d%m%Y')}-{re.escape(code)}(-[A-Z]+)?$")

    def suggest(self, tx: StoreTransaction, day: date, location: str, strict: bool = False) -> str:
        """
        Next free number for an office and day, given what is stored in tx.

        Numbers that do not follow the current format are not counted. When
        the counted position is already taken (a deleted draft left a gap, or
        an explicit number ran ahead) the suffix moves forward to the first
        free one.
        """
        code = self.office_code(location, strict=strict)
        pattern = self._office_day_pattern(day, code)
        count = sum(1 for number in tx.invoice_numbers_on(day) if pattern.match(number))

        base = f"{day.strftime('%d%m%Y')}-{code}"
        number = base if count == 0 else f"{base}-{sequence(count - 1)}"
        while tx.get_invoice_by_number(number) is not None:
            number = f"{base}-{sequence(count)}"
            count += 1
        return number

    def suggest_number(self, invoice_date: date | datetime, location: str) -> dict:
        """Suggested number for display before an invoice is created."""
        if not location or not location.strip():
            raise ValidationError("Date and location are required")

        day = self.invoice_day(invoice_date)
        with self.store.transaction() as tx:
            number = self.suggest(tx, day, location, strict=True)

        return {
            "invoice_number": number,
            "date": day.isoformat(),
            "location": location.strip().lower(),
            "office_code": self.office_code(location),
        }

    def validate(self, invoice_number: str) -> None:
        """
        Check an explicit invoice number's format and date portion.

        Raises:
            ValidationError: Malformed number or implausible date
        """
        if not self.number_pattern().match(invoice_number):
            raise ValidationError(_FORMAT_HINT)

        day = int(invoice_number[0:2])
        month = int(invoice_number[2:4])
        year = int(invoice_number[4:8])
        if not (1 <= day <= 31 and 1 <= month <= 12 and 2000 <= year <= 2100):
            raise ValidationError("Invalid date in invoice number")

    def ensure_available(self, tx: StoreTransaction, invoice_number: str) -> None:
        if tx.get_invoice_by_number(invoice_number) is not None:
            raise DuplicateInvoiceNumber(invoice_number)

    def allocate(
        self,
        tx: StoreTransaction,
        day: date,
        location: str,
        explicit: str | None = None,
    ) -> str:
        """
        Number for a new invoice, inside the creating transaction.

        An explicit number is validated and must not already exist. Otherwise
        the (office, day) scope is locked until tx ends and the next number is
        derived from what is stored.

        Raises:
            ValidationError: Malformed explicit number
            DuplicateInvoiceNumber: Explicit number already taken
        """
        if explicit:
            number = explicit.strip()
            self.validate(number)
            self.ensure_available(tx, number)
            return number

        code = self.office_code(location)
        tx.lock_number_scope(code, day)
        number = self.suggest(tx, day, location)
        logger.info(f"Allocated invoice number {number}")
        return number
