"""Typed exceptions for billing failures.

Every exception here is recoverable at the caller boundary. Each carries a
machine-readable code and an HTTP status so the API layer can map it without
inspecting message text.
"""

from decimal import Decimal


class BillingError(Exception):
    """Base class for billing engine errors."""

    code = "BILLING_ERROR"
    status_code = 400


class ValidationError(BillingError):
    """Malformed or missing input (non-positive amount, bad date ordering, ...)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ShareMismatch(ValidationError):
    """Split or partner-share percentages do not total 100."""

    code = "SHARE_MISMATCH"

    def __init__(self, kind: str, total: Decimal):
        self.kind = kind
        self.total = total
        super().__init__(f"{kind} must total exactly 100%. Current total: {total}%")


class MissingExchangeRate(BillingError):
    """No positive rate available to convert one currency into the invoice currency."""

    code = "MISSING_EXCHANGE_RATE"
    status_code = 400

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Missing exchange rate for {source} to {target}")


class ConflictError(BillingError):
    """Operation collides with existing data."""

    code = "CONFLICT"
    status_code = 409


class DuplicateInvoiceNumber(ConflictError):
    """Invoice number is already taken."""

    code = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number {invoice_number} already exists")


class AlreadyInvoiced(ConflictError):
    """One or more timesheets are already billed on another invoice."""

    code = "ALREADY_INVOICED"

    def __init__(self, invoice_numbers: list[str]):
        self.invoice_numbers = invoice_numbers
        super().__init__(
            f"Some timesheets are already invoiced in: {', '.join(invoice_numbers)}"
        )


class StateError(BillingError):
    """Operation is illegal for the invoice's current lifecycle state."""

    code = "INVALID_STATE"
    status_code = 409


class InvalidState(StateError):
    """Invoice workflow status does not permit the requested transition or edit."""

    def __init__(self, message: str, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message)


class NotFoundError(BillingError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    status_code = 404
