"""
Handlers that cross-reference finalized invoices onto client contact records.

Best-effort: the invoice is already committed when these run, and the event
bus logs and drops any failure here.
"""

import logging
from typing import Any, Callable, Protocol

from core.events import InvoiceFinalized, InvoiceSplit

logger = logging.getLogger(__name__)


class ContactDirectory(Protocol):
    """Contact records owned by the CRM side of the back office."""

    def primary_contact_id(self, client_id: int) -> int | None:
        ...

    def record_interaction(
        self,
        contact_id: int,
        interaction_type: str,
        interaction_data: dict[str, Any],
        related_entity_type: str,
        related_entity_id: str,
    ) -> None:
        ...


def _link_invoice(directory: ContactDirectory, invoice: Any) -> None:
    contact_id = directory.primary_contact_id(invoice.client_id)
    if contact_id is None:
        return

    directory.record_interaction(
        contact_id=contact_id,
        interaction_type="invoice",
        interaction_data={
            "invoice_number": invoice.invoice_number,
            "invoice_date": invoice.invoice_date.isoformat(),
            "final_amount": str(invoice.final_amount),
            "currency": invoice.invoice_currency,
        },
        related_entity_type="invoice",
        related_entity_id=str(invoice.id),
    )
    logger.info(f"Linked invoice {invoice.invoice_number} to contact {contact_id}")


def handle_invoice_finalized(directory: ContactDirectory) -> Callable:
    """
    Factory that returns an InvoiceFinalized handler.

    Split parents are skipped; their children are linked by the
    InvoiceSplit handler instead.
    """

    def handler(event: InvoiceFinalized):
        if event.invoice.is_split:
            return
        _link_invoice(directory, event.invoice)

    return handler


def handle_invoice_split(directory: ContactDirectory) -> Callable:
    """Factory that returns an InvoiceSplit handler linking every child's client."""

    def handler(event: InvoiceSplit):
        for child in event.children:
            _link_invoice(directory, child)

    return handler
