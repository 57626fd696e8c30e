"""
Split and partner-share engine.

Runs inside InvoiceService.finalize, in the finalize transaction. A split
divides a finalized invoice between billing clients of the same client group:
each target gets a child invoice with its own number, a copy of the parent's
matters and billed snapshots, and totals scaled by its percentage. Partner
revenue shares go on every child, or on the invoice itself when there is no
split.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID, uuid4

from core.audit import AuditAction, AuditLogger
from core.config import BillingConfig
from core.exceptions import NotFoundError, ShareMismatch, ValidationError
from core.models import (
    Client, DiscountType, Invoice, PartnerShare, PartnerShareInput, PaymentStatus, SplitInvoiceView,
    SplitTarget, WorkflowStatus,
)
from core.services.currency_service import INTERNAL_PLACES
from core.services.payment_service import derive_status
from core.store import InvoiceStore, StoreTransaction
from utils.timezone import now_utc, today_in

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _scale(value: Decimal, percentage: Decimal) -> Decimal:
    return (value * percentage / HUNDRED).quantize(INTERNAL_PLACES, rounding=ROUND_HALF_UP)


def _apportion(total: Decimal, percentages: list[Decimal]) -> list[Decimal]:
    """Scale total by each percentage; the last share absorbs rounding so the parts add up."""
    parts = [_scale(total, p) for p in percentages[:-1]]
    parts.append(total - sum(parts, Decimal("0")))
    return parts


class SplitService:
    """Validate and apply splits and partner shares."""

    def __init__(self, store: InvoiceStore, config: BillingConfig, audit: AuditLogger):
        self.store = store
        self.config = config
        self.audit = audit

    def _within_tolerance(self, total: Decimal) -> bool:
        return abs(total - HUNDRED) <= self.config.percentage_tolerance

    def validate_partner_shares(self, shares: list[PartnerShareInput]) -> None:
        """
        Raises:
            ValidationError: No shares, non-positive share or repeated partner
            ShareMismatch: Shares do not total 100
        """
        if not shares:
            raise ValidationError("Partner shares are required")

        if any(s.percentage <= 0 for s in shares):
            raise ValidationError("Partner share percentages must be greater than 0")

        partners = [s.partner_user_id for s in shares]
        if len(set(partners)) != len(partners):
            raise ValidationError("Duplicate partners in partner shares")

        total = sum((s.percentage for s in shares), Decimal("0"))
        if not self._within_tolerance(total):
            raise ShareMismatch("Partner shares", total)

    def normalize_splits(
        self,
        tx: StoreTransaction,
        client: Client,
        splits: list[SplitTarget],
    ) -> list[SplitTarget]:
        """
        Validated split targets, or an empty list when there is no split.

        A single target at 100% is the same as no split.

        Raises:
            ShareMismatch: Percentages do not total 100
            ValidationError: Client has no group, duplicate or foreign clients
            NotFoundError: A split client does not exist
        """
        if not splits:
            return []
        if len(splits) == 1 and splits[0].percentage == HUNDRED:
            return []

        if any(s.percentage <= 0 for s in splits):
            raise ValidationError("Split percentages must be greater than 0")

        total = sum((s.percentage for s in splits), Decimal("0"))
        if not self._within_tolerance(total):
            raise ShareMismatch("Split percentages", total)

        if client.group_id is None:
            raise ValidationError("Cannot split invoice. Invoice client does not belong to a group")

        client_ids = [s.client_id for s in splits]
        if len(set(client_ids)) != len(client_ids):
            raise ValidationError("Duplicate client IDs in splits")

        split_clients = [Client.model_validate(r) for r in tx.get_clients(client_ids)]
        if len(split_clients) != len(client_ids):
            raise NotFoundError("One or more split clients not found")

        if any(c.group_id != client.group_id for c in split_clients):
            raise ValidationError(
                "All split clients must belong to the same group as the invoice client"
            )

        return list(splits)

    def _share_rows(self, invoice_id: UUID, shares: list[PartnerShareInput]) -> list[dict[str, Any]]:
        now = now_utc()
        return [
            {
                "id": uuid4(),
                "invoice_id": invoice_id,
                "partner_user_id": s.partner_user_id,
                "percentage": s.percentage,
                "created_at": now,
            }
            for s in shares
        ]

    def apply(
        self,
        tx: StoreTransaction,
        parent: Invoice,
        splits: list[SplitTarget],
        partner_shares: list[PartnerShareInput],
    ) -> tuple[Invoice, list[Invoice]]:
        """
        Finalize parent, creating one child per split target.

        Args:
            tx: The finalize transaction
            parent: Draft invoice being finalized, with totals already current
            splits: Output of normalize_splits
            partner_shares: Validated partner shares

        Returns:
            (updated parent, children in split sequence order)
        """
        if not splits:
            tx.insert_partner_shares(self._share_rows(parent.id, partner_shares))
            updated = Invoice.model_validate(tx.update_invoice(parent.id, {
                "status": WorkflowStatus.FINALIZED,
            }))
            return updated, []

        percentages = [s.percentage for s in splits]
        subtotals = _apportion(parent.subtotal, percentages)
        discounts = _apportion(parent.discount_amount, percentages)
        in_inr = _apportion(parent.amount_in_inr, percentages) if parent.amount_in_inr is not None else None

        matter_ids = tx.list_matter_ids(parent.id)
        timesheet_links = tx.list_timesheet_links(parent.id)
        expense_links = tx.list_expense_links(parent.id)
        now = now_utc()

        children = []
        for index, split in enumerate(splits):
            sequence = index + 1
            discount_value = parent.discount_value
            if parent.discount_type == DiscountType.FIXED:
                discount_value = _scale(parent.discount_value, split.percentage)

            row = tx.insert_invoice({
                "id": uuid4(),
                "invoice_number": f"{parent.invoice_number}-{sequence}",
                "client_id": split.client_id,
                "matter_id": parent.matter_id,
                "is_multi_matter": parent.is_multi_matter,
                "invoice_date": parent.invoice_date,
                "due_date": parent.due_date,
                "description": parent.description,
                "notes": parent.notes,
                "date_from": parent.date_from,
                "date_to": parent.date_to,
                "billing_location": parent.billing_location,
                "matter_currency": parent.matter_currency,
                "invoice_currency": parent.invoice_currency,
                "exchange_rates": parent.exchange_rates,
                "subtotal": subtotals[index],
                "discount_type": parent.discount_type,
                "discount_value": discount_value,
                "discount_amount": discounts[index],
                "final_amount": subtotals[index] - discounts[index],
                "user_exchange_rate": parent.user_exchange_rate,
                "amount_in_inr": in_inr[index] if in_inr is not None else None,
                "status": WorkflowStatus.FINALIZED,
                "payment_status": PaymentStatus.NEW,
                "amount_paid": Decimal("0"),
                "parent_invoice_id": parent.id,
                "is_split": False,
                "split_percentage": split.percentage,
                "split_sequence": sequence,
                "uploaded_invoice_url": None,
                "uploaded_at": None,
                "created_by": parent.created_by,
                "created_at": now,
                "updated_at": now,
            })
            child = Invoice.model_validate(row)

            tx.replace_matter_links(child.id, matter_ids)
            tx.replace_timesheet_links(child.id, timesheet_links)
            tx.replace_expense_links(child.id, expense_links)
            tx.insert_partner_shares(self._share_rows(child.id, partner_shares))

            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=child.id,
                action=AuditAction.CREATE,
                changes={"created": child.model_dump(mode="json")},
            )
            children.append(child)

        updated = Invoice.model_validate(tx.update_invoice(parent.id, {
            "is_split": True,
            "status": WorkflowStatus.FINALIZED,
        }))

        logger.info(
            f"Split invoice {parent.invoice_number} into "
            f"{', '.join(c.invoice_number for c in children)}"
        )
        return updated, children

    def list_splits(self, parent_id: UUID) -> list[SplitInvoiceView]:
        """Children of a split parent with partner shares, payment count and status."""
        today = today_in(self.config.reference_timezone)

        with self.store.transaction() as tx:
            if tx.get_invoice(parent_id) is None:
                raise NotFoundError(f"Invoice {parent_id} not found")

            views = []
            for row in tx.list_children(parent_id):
                child = Invoice.model_validate(row)
                shares = [PartnerShare.model_validate(r) for r in tx.list_partner_shares(child.id)]
                views.append(SplitInvoiceView(
                    **child.model_dump(),
                    display_status=derive_status(child, today),
                    partner_shares=shares,
                    payment_count=len(tx.list_payments([child.id])),
                ))

        return views
