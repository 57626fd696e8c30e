"""
Domain events for billing.

Immutable event objects that represent state changes in the billing domain.
A service publishes what happened after its transaction commits, and handlers
react without the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, finalize, split, upload, paid)
- PaymentEvent: Payment ledger (record)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new draft invoice was created."""
    invoice: Any = None  # Invoice, Any to avoid circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceFinalized(InvoiceEvent):
    """A draft was finalized, with or without a split."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceFinalized":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSplit(InvoiceEvent):
    """A finalized invoice was divided into child invoices."""
    parent: Any = None
    children: tuple = ()

    @classmethod
    def create(cls, parent: Any, children: list) -> "InvoiceSplit":
        return cls(parent=parent, children=tuple(children))


@dataclass(frozen=True)
class InvoiceUploaded(InvoiceEvent):
    """The signed invoice document was stored."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceUploaded":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to the payment ledger."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was recorded against an invoice."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentRecorded":
        return cls(invoice=invoice, payment=payment)
