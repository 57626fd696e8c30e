"""
Invoice lifecycle.

Invoices move draft -> finalized -> invoice_uploaded and never back. Drafts
are freely editable; their billed snapshots and totals are re-derived in the
same transaction as every edit. Finalize freezes the invoice, optionally
splitting it across the client's group. Payment status is a separate derived
value, computed on every read.
"""

import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import PurePath
from typing import Any, Protocol
from uuid import UUID, uuid4

from clients.object_store_client import ObjectStore
from core.audit import AuditAction, AuditLogger, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoiceFinalized, InvoiceSplit, InvoiceUploaded
from core.exceptions import (
    ConflictError, DuplicateInvoiceNumber, InvalidState, MissingExchangeRate,
    NotFoundError, ValidationError,
)
from core.models import (
    Client, CurrencyBreakdown, FinalizeRequest, Invoice, InvoiceCreate, InvoiceDocument,
    InvoiceExpenseLink, InvoiceFilter, InvoiceTimesheetLink, InvoiceUpdate, InvoiceView,
    Matter, PaymentStatus, TimesheetBillingUpdate, WorkflowStatus,
)
from core.services.currency_service import (
    INTERNAL_PLACES, CurrencyService, convert, missing_rates, to_display,
)
from core.services.invoice_number_service import InvoiceNumberService
from core.services.line_item_service import LineItemService
from core.services.payment_service import derive_parent_status, derive_status, split_summary
from core.services.split_service import SplitService
from core.store import InvoiceStore, StoreTransaction, UniqueViolation
from utils.timezone import now_utc, today_in
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Fields copied straight from an InvoiceUpdate when set
_PLAIN_UPDATE_FIELDS = (
    "invoice_date", "due_date", "description", "notes",
    "date_from", "date_to", "billing_location",
)
_REQUIRED_FIELDS = {"invoice_date", "due_date", "description", "billing_location"}


class DocumentGenerator(Protocol):
    """Renders an invoice document from its normalized view."""

    def render(self, document: InvoiceDocument) -> bytes:
        ...


def _safe_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", PurePath(filename).name) or "invoice"


class InvoiceService:
    """Create, edit, finalize, upload and read invoices."""

    def __init__(
        self,
        store: InvoiceStore,
        config: BillingConfig,
        audit: AuditLogger,
        event_bus: EventBus,
        currency: CurrencyService,
        numbers: InvoiceNumberService,
        line_items: LineItemService,
        splits: SplitService,
        object_store: ObjectStore | None = None,
        documents: DocumentGenerator | None = None,
    ):
        self.store = store
        self.config = config
        self.audit = audit
        self.event_bus = event_bus
        self.currency = currency
        self.numbers = numbers
        self.line_items = line_items
        self.splits = splits
        self.object_store = object_store
        self.documents = documents

    def today(self) -> date:
        return today_in(self.config.reference_timezone)

    # -------------------------------------------------------------------------
    # Shared checks
    # -------------------------------------------------------------------------

    def _load_for_edit(self, tx: StoreTransaction, invoice_id: UUID) -> Invoice:
        """Lock a draft invoice for editing."""
        row = tx.get_invoice(invoice_id, for_update=True)
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        invoice = Invoice.model_validate(row)
        if not invoice.is_draft:
            raise InvalidState(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}. "
                "Only draft invoices can be edited.",
                current_status=invoice.status.value,
            )
        return invoice

    def _load_matters(self, tx: StoreTransaction, client_id: int, matter_ids: list[int]) -> list[Matter]:
        """Matters in the given order; all must exist and belong to the client."""
        rows = {r["matter_id"]: Matter.model_validate(r) for r in tx.get_matters(matter_ids)}
        if len(rows) != len(matter_ids):
            missing = [mid for mid in matter_ids if mid not in rows]
            raise NotFoundError(f"Matters not found: {missing}")

        matters = [rows[mid] for mid in matter_ids]
        if any(m.client_id != client_id for m in matters):
            raise ValidationError("All matters must belong to the selected client")
        return matters

    def _validate_rates(self, rates: dict[str, Decimal]) -> None:
        for currency, rate in rates.items():
            self.currency.ensure_supported(currency)
            if rate is None or rate <= 0:
                raise ValidationError(f"Exchange rate for {currency} must be greater than 0")

    def _require_rates(self, sources: list[str], target: str, rates: dict[str, Decimal]) -> None:
        missing = missing_rates(sources, target, rates)
        if missing:
            raise MissingExchangeRate(missing[0], target)

    def _insert_numbered(self, tx: StoreTransaction, number: str, row: dict[str, Any]) -> dict[str, Any]:
        try:
            return tx.insert_invoice({**row, "invoice_number": number})
        except UniqueViolation as e:
            raise DuplicateInvoiceNumber(number) from e

    def _view(self, tx: StoreTransaction, invoice: Invoice, today: date) -> InvoiceView:
        children = [Invoice.model_validate(r) for r in tx.list_children(invoice.id)]

        summary = None
        if children:
            display_status = derive_parent_status(children, today)
            summary = split_summary(children, today)
        elif invoice.is_draft:
            display_status = WorkflowStatus.DRAFT.value
        else:
            display_status = derive_status(invoice, today).value

        return InvoiceView(
            **invoice.model_dump(),
            matter_ids=tx.list_matter_ids(invoice.id),
            display_status=display_status,
            is_parent=invoice.is_split or bool(children),
            split_count=len(children),
            split_summary=summary,
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _validate_create(self, data: InvoiceCreate) -> None:
        if data.due_date < data.invoice_date:
            raise ValidationError("Due date must be on or after invoice date")
        if data.date_from and data.date_to and data.date_to < data.date_from:
            raise ValidationError("Billing period end must be on or after its start")
        if data.invoice_amount <= 0:
            raise ValidationError("Invoice amount must be greater than 0")
        if not data.description.strip():
            raise ValidationError("Description is required")
        if not data.billing_location.strip():
            raise ValidationError("Billing location is required")
        if data.invoice_currency:
            self.currency.ensure_supported(data.invoice_currency)
        self._validate_rates(data.exchange_rates)

    def create(self, data: InvoiceCreate) -> InvoiceView:
        """
        Create a draft invoice with its matter, timesheet and expense links.

        Args:
            data: Invoice details and the billing sources to include

        Returns:
            The new draft

        Raises:
            ValidationError: Bad dates, amount, matters or currency settings
            NotFoundError: Client, matter, timesheet or expense not found
            MissingExchangeRate: A source currency has no rate
            AlreadyInvoiced: A timesheet is billed on another invoice
            DuplicateInvoiceNumber: Explicit number taken, or no free number
                after the configured number of attempts
        """
        self._validate_create(data)
        user_id = get_current_user_id()
        attempts = 1 if data.invoice_number else self.config.number_allocation_retries

        for attempt in range(1, attempts + 1):
            try:
                with self.store.transaction() as tx:
                    invoice = self._create_in(tx, data, user_id)
                    view = self._view(tx, invoice, self.today())
                break
            except DuplicateInvoiceNumber as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Invoice number {e.invoice_number} was taken concurrently, retrying "
                    f"({attempt}/{attempts})"
                )

        logger.info(f"Created draft invoice {view.invoice_number} for client {data.client_id}")
        self.event_bus.publish(InvoiceCreated.create(invoice))
        return view

    def _create_in(self, tx: StoreTransaction, data: InvoiceCreate, user_id: UUID) -> Invoice:
        if tx.get_client(data.client_id) is None:
            raise NotFoundError(f"Client {data.client_id} not found")

        matter_ids = list(dict.fromkeys(data.matter_ids))
        matters = self._load_matters(tx, data.client_id, matter_ids)

        matter_currencies = [self.currency.resolve_matter_currency(m) for m in matters]
        primary_currency = matter_currencies[0]
        if len(set(matter_currencies)) > 1 and not data.invoice_currency:
            raise ValidationError(
                "Invoice currency is required when matters use different currencies"
            )

        invoice_currency = data.invoice_currency or primary_currency
        rates = dict(data.exchange_rates)
        self._require_rates(matter_currencies, invoice_currency, rates)

        timesheet_links: list[dict[str, Any]] = []
        if data.timesheet_ids:
            self.line_items.ensure_not_invoiced(tx, data.timesheet_ids)
            timesheets = self.line_items.load_timesheets(tx, data.timesheet_ids, matter_ids)
            timesheet_links = self.line_items.build_timesheet_links(
                tx, timesheets, invoice_currency, rates
            )

        expense_links: list[dict[str, Any]] = []
        if data.include_expenses and data.expense_ids:
            expense_links = self.line_items.build_expense_links(
                tx, data.expense_ids, invoice_currency, rates
            )

        if timesheet_links or expense_links:
            subtotal = self.line_items.aggregate(timesheet_links, expense_links)
        else:
            # Manual amount is entered in the primary matter currency
            subtotal = convert(data.invoice_amount, primary_currency, invoice_currency, rates)
            subtotal = subtotal.quantize(INTERNAL_PLACES, rounding=ROUND_HALF_UP)

        totals = self.line_items.totals(subtotal, None, ZERO, invoice_currency, None)

        day = self.numbers.invoice_day(data.invoice_date)
        number = self.numbers.allocate(tx, day, data.billing_location, data.invoice_number)
        now = now_utc()

        row = self._insert_numbered(tx, number, {
            "id": uuid4(),
            "client_id": data.client_id,
            "matter_id": matter_ids[0] if len(matter_ids) == 1 else None,
            "is_multi_matter": len(matter_ids) > 1,
            "invoice_date": day,
            "due_date": data.due_date,
            "description": data.description.strip(),
            "notes": data.notes,
            "date_from": data.date_from,
            "date_to": data.date_to,
            "billing_location": data.billing_location.strip(),
            "matter_currency": primary_currency,
            "invoice_currency": invoice_currency,
            "exchange_rates": rates,
            "discount_type": None,
            "discount_value": ZERO,
            "user_exchange_rate": None,
            **totals,
            "status": WorkflowStatus.DRAFT,
            "payment_status": PaymentStatus.NEW,
            "amount_paid": ZERO,
            "parent_invoice_id": None,
            "is_split": False,
            "split_percentage": None,
            "split_sequence": None,
            "uploaded_invoice_url": None,
            "uploaded_at": None,
            "created_by": user_id,
            "created_at": now,
            "updated_at": now,
        })
        invoice = Invoice.model_validate(row)

        tx.replace_matter_links(invoice.id, matter_ids)
        tx.replace_timesheet_links(invoice.id, timesheet_links)
        tx.replace_expense_links(invoice.id, expense_links)

        self.audit.log_change(
            tx,
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "created": invoice.model_dump(mode="json"),
                "matter_ids": matter_ids,
                "timesheet_ids": [link["timesheet_id"] for link in timesheet_links],
                "expense_ids": [link["expense_id"] for link in expense_links],
            },
            user_id=user_id,
        )
        return invoice

    # -------------------------------------------------------------------------
    # Draft edits
    # -------------------------------------------------------------------------

    def update_draft(self, invoice_id: UUID, data: InvoiceUpdate) -> InvoiceView:
        """
        Edit a draft invoice.

        Only fields explicitly set on data are applied. Replacing the
        timesheet set or changing the rate map rebuilds the billed snapshots
        from their sources; totals are always re-derived from the snapshot
        set in the same transaction.

        Raises:
            InvalidState: Invoice is not a draft
            ValidationError: Bad number, dates, discount or rates
            DuplicateInvoiceNumber: New number already taken
            MissingExchangeRate: A source currency has no rate
            AlreadyInvoiced: A timesheet is billed on another invoice
        """
        fields_set = data.model_fields_set
        if not fields_set:
            raise ValidationError("No fields to update")

        for field in _REQUIRED_FIELDS & fields_set:
            if getattr(data, field) is None:
                raise ValidationError(f"{field} cannot be cleared")
        if data.description is not None and not data.description.strip():
            raise ValidationError("Description is required")
        if data.billing_location is not None and not data.billing_location.strip():
            raise ValidationError("Billing location is required")
        if data.user_exchange_rate is not None and data.user_exchange_rate <= 0:
            raise ValidationError("User exchange rate must be greater than 0")
        if data.invoice_amount is not None and data.invoice_amount <= 0:
            raise ValidationError("Invoice amount must be greater than 0")
        if data.exchange_rates:
            self._validate_rates(data.exchange_rates)

        number = None
        try:
            with self.store.transaction() as tx:
                current = self._load_for_edit(tx, invoice_id)
                updates: dict[str, Any] = {}

                if data.invoice_number and data.invoice_number.strip() != current.invoice_number:
                    number = data.invoice_number.strip()
                    self.numbers.validate(number)
                    self.numbers.ensure_available(tx, number)
                    updates["invoice_number"] = number

                for field in _PLAIN_UPDATE_FIELDS:
                    if field in fields_set:
                        value = getattr(data, field)
                        updates[field] = value.strip() if isinstance(value, str) else value
                if "invoice_date" in updates:
                    updates["invoice_date"] = self.numbers.invoice_day(updates["invoice_date"])

                invoice_date = updates.get("invoice_date", current.invoice_date)
                if updates.get("due_date", current.due_date) < invoice_date:
                    raise ValidationError("Due date must be on or after invoice date")
                date_from = updates.get("date_from", current.date_from)
                date_to = updates.get("date_to", current.date_to)
                if date_from and date_to and date_to < date_from:
                    raise ValidationError("Billing period end must be on or after its start")

                rates = dict(current.exchange_rates)
                rates_changed = False
                if "exchange_rates" in fields_set:
                    rates = dict(data.exchange_rates or {})
                    rates_changed = rates != current.exchange_rates
                    updates["exchange_rates"] = rates

                user_rate = current.user_exchange_rate
                if "user_exchange_rate" in fields_set:
                    user_rate = data.user_exchange_rate
                    updates["user_exchange_rate"] = user_rate

                discount_type = current.discount_type
                discount_value = current.discount_value
                discount_changed = bool({"discount_type", "discount_value"} & fields_set)
                if "discount_type" in fields_set:
                    discount_type = data.discount_type
                    updates["discount_type"] = discount_type
                if "discount_value" in fields_set:
                    discount_value = data.discount_value or ZERO
                    updates["discount_value"] = discount_value

                matter_ids = tx.list_matter_ids(invoice_id)
                if data.matter_ids is not None:
                    if not data.matter_ids:
                        raise ValidationError("At least one matter is required")
                    matter_ids = list(dict.fromkeys(data.matter_ids))
                    matters = self._load_matters(tx, current.client_id, matter_ids)
                    matter_currencies = [self.currency.resolve_matter_currency(m) for m in matters]
                    self._require_rates(matter_currencies, current.invoice_currency, rates)

                    tx.replace_matter_links(invoice_id, matter_ids)
                    updates["matter_id"] = matter_ids[0] if len(matter_ids) == 1 else None
                    updates["is_multi_matter"] = len(matter_ids) > 1
                    updates["matter_currency"] = matter_currencies[0]

                timesheet_links = tx.list_timesheet_links(invoice_id)
                expense_links = tx.list_expense_links(invoice_id)
                had_line_items = bool(timesheet_links or expense_links)

                if data.timesheet_ids is not None:
                    timesheet_links = []
                    if data.timesheet_ids:
                        self.line_items.ensure_not_invoiced(
                            tx, data.timesheet_ids, exclude_invoice_id=invoice_id
                        )
                        timesheets = self.line_items.load_timesheets(tx, data.timesheet_ids, matter_ids)
                        timesheet_links = self.line_items.build_timesheet_links(
                            tx, timesheets, current.invoice_currency, rates
                        )
                    tx.replace_timesheet_links(invoice_id, timesheet_links)
                elif rates_changed and timesheet_links:
                    timesheets = self.line_items.load_timesheets(
                        tx, [link["timesheet_id"] for link in timesheet_links]
                    )
                    timesheet_links = self.line_items.build_timesheet_links(
                        tx, timesheets, current.invoice_currency, rates
                    )
                    tx.replace_timesheet_links(invoice_id, timesheet_links)

                if rates_changed and expense_links:
                    expense_links = self.line_items.reconvert_expense_links(
                        expense_links, current.invoice_currency, rates
                    )
                    tx.replace_expense_links(invoice_id, expense_links)

                if timesheet_links or expense_links:
                    if data.invoice_amount is not None:
                        raise ValidationError(
                            "Invoice amount can only be set on invoices without timesheets or expenses"
                        )
                    subtotal = self.line_items.aggregate(timesheet_links, expense_links)
                elif data.invoice_amount is not None:
                    subtotal = convert(
                        data.invoice_amount,
                        updates.get("matter_currency", current.matter_currency),
                        current.invoice_currency,
                        rates,
                    ).quantize(INTERNAL_PLACES, rounding=ROUND_HALF_UP)
                elif had_line_items:
                    raise ValidationError(
                        "Invoice amount is required when removing all timesheets and expenses"
                    )
                else:
                    # Invoices without line items keep their manual subtotal
                    subtotal = current.subtotal

                if discount_changed:
                    self.line_items.validate_discount(subtotal, discount_type, discount_value)

                updates.update(self.line_items.totals(
                    subtotal, discount_type, discount_value, current.invoice_currency, user_rate
                ))

                updated = Invoice.model_validate(tx.update_invoice(invoice_id, updates))

                changes = compute_changes(
                    current.model_dump(mode="json"),
                    updated.model_dump(mode="json"),
                )
                if data.matter_ids is not None:
                    changes["matter_ids"] = {"new": matter_ids}
                if data.timesheet_ids is not None:
                    changes["timesheet_ids"] = {
                        "new": [link["timesheet_id"] for link in timesheet_links]
                    }
                self.audit.log_change(
                    tx,
                    entity_type="invoice",
                    entity_id=invoice_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                )

                view = self._view(tx, updated, self.today())
        except UniqueViolation as e:
            raise DuplicateInvoiceNumber(number or "") from e

        logger.info(f"Updated draft invoice {view.invoice_number}")
        return view

    def update_timesheet_billing(
        self,
        invoice_id: UUID,
        timesheet_id: int,
        data: TimesheetBillingUpdate,
    ) -> InvoiceView:
        """
        Reprice one billed timesheet on a draft and re-derive its totals.

        Raises:
            InvalidState: Invoice is not a draft
            NotFoundError: Timesheet is not on the invoice
            ValidationError: Negative rate or amount
        """
        with self.store.transaction() as tx:
            current = self._load_for_edit(tx, invoice_id)

            links = [InvoiceTimesheetLink.model_validate(r) for r in tx.list_timesheet_links(invoice_id)]
            link = next((l for l in links if l.timesheet_id == timesheet_id), None)
            if link is None:
                raise NotFoundError(
                    f"Timesheet {timesheet_id} is not on invoice {current.invoice_number}"
                )

            fields = self.line_items.reprice_timesheet(link, data)
            tx.update_timesheet_link(invoice_id, timesheet_id, fields)

            subtotal = self.line_items.aggregate(
                tx.list_timesheet_links(invoice_id),
                tx.list_expense_links(invoice_id),
            )
            updated = Invoice.model_validate(tx.update_invoice(invoice_id, self.line_items.totals(
                subtotal,
                current.discount_type,
                current.discount_value,
                current.invoice_currency,
                current.user_exchange_rate,
            )))

            changes = compute_changes(
                link.model_dump(mode="json", include=set(fields)),
                {k: str(v) if isinstance(v, Decimal) else v for k, v in fields.items()},
            )
            changes.update(compute_changes(
                current.model_dump(mode="json", include={"subtotal", "discount_amount", "final_amount"}),
                updated.model_dump(mode="json", include={"subtotal", "discount_amount", "final_amount"}),
            ))
            changes["timesheet_id"] = timesheet_id
            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=changes,
            )

            view = self._view(tx, updated, self.today())

        logger.info(
            f"Repriced timesheet {timesheet_id} on {view.invoice_number}: "
            f"{link.billed_amount} -> {fields['billed_amount']}"
        )
        return view

    # -------------------------------------------------------------------------
    # Finalize
    # -------------------------------------------------------------------------

    def finalize(self, invoice_id: UUID, data: FinalizeRequest) -> InvoiceView:
        """
        Finalize a draft, splitting it across clients when requested.

        Runs in one transaction: a failure at any point leaves the draft
        exactly as it was.

        Raises:
            InvalidState: Invoice is not a draft
            ShareMismatch: Split or partner percentages do not total 100
            ValidationError: Bad partner shares or split targets
            MissingExchangeRate: A source currency has no stored rate
        """
        self.splits.validate_partner_shares(data.partner_shares)
        events = []

        with self.store.transaction() as tx:
            current = self._load_for_edit(tx, invoice_id)
            target = current.invoice_currency
            rates = current.exchange_rates

            matters = [Matter.model_validate(r) for r in tx.get_matters(tx.list_matter_ids(invoice_id))]
            sources = [self.currency.resolve_matter_currency(m) for m in matters]
            sources += [r["source_currency"] for r in tx.list_timesheet_links(invoice_id)]
            sources += [r["original_currency"] for r in tx.list_expense_links(invoice_id)]
            self._require_rates(sources, target, rates)

            if (
                target != self.config.default_currency
                and current.user_exchange_rate is None
                and not rates
            ):
                raise ValidationError(
                    f"Exchange rate to {self.config.default_currency} is required "
                    f"for {target} invoices"
                )

            client_row = tx.get_client(current.client_id)
            if client_row is None:
                raise NotFoundError(f"Client {current.client_id} not found")
            client = Client.model_validate(client_row)

            targets = self.splits.normalize_splits(tx, client, data.splits)
            updated, children = self.splits.apply(tx, current, targets, data.partner_shares)

            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    **compute_changes(
                        current.model_dump(mode="json", include={"status", "is_split"}),
                        updated.model_dump(mode="json", include={"status", "is_split"}),
                    ),
                    "partner_shares": [s.model_dump(mode="json") for s in data.partner_shares],
                    "split_invoice_numbers": [c.invoice_number for c in children],
                },
            )

            view = self._view(tx, updated, self.today())

        events.append(InvoiceFinalized.create(updated))
        if children:
            events.append(InvoiceSplit.create(updated, children))

        logger.info(
            f"Finalized invoice {updated.invoice_number}"
            + (f" with {len(children)} splits" if children else "")
        )
        self.event_bus.publish_all(events)
        return view

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _upload_content_type(self, filename: str, content_type: str | None) -> str:
        allowed = self.config.allowed_upload_types
        if content_type in allowed:
            return content_type

        extension = PurePath(filename).suffix.lower()
        for mime, ext in allowed.items():
            if ext == extension:
                return mime

        raise ValidationError("Invalid file type. Only PDF and Word documents are allowed.")

    def upload_signed_document(
        self,
        invoice_id: UUID,
        content: bytes,
        filename: str,
        content_type: str | None = None,
    ) -> InvoiceView:
        """
        Store the signed copy of a finalized invoice.

        The object store write happens outside any transaction; the invoice
        is re-checked under lock before it is marked uploaded.

        Raises:
            ValidationError: Wrong file type, empty or oversized file, or no
                object store configured
            InvalidState: Invoice is not finalized
            ObjectStoreError: Storage write failed
        """
        if self.object_store is None:
            raise ValidationError("Signed invoice storage is not configured")

        resolved_type = self._upload_content_type(filename, content_type)
        if not content:
            raise ValidationError("Uploaded file is empty")
        if len(content) > self.config.max_upload_bytes:
            limit_mb = self.config.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"File too large. Maximum size is {limit_mb}MB")

        user_id = get_current_user_id()

        with self.store.transaction() as tx:
            self._require_finalized(tx, invoice_id)

        safe_name = _safe_filename(filename)
        stamp = int(now_utc().timestamp() * 1000)
        key = f"{self.config.upload_key_prefix}/{invoice_id}/{user_id}-{stamp}-{safe_name}"
        url = self.object_store.put(
            key,
            content,
            resolved_type,
            metadata={
                "invoice_id": str(invoice_id),
                "uploaded_by": str(user_id),
                "original_filename": safe_name,
            },
        )

        with self.store.transaction() as tx:
            current = self._require_finalized(tx, invoice_id, for_update=True)
            updated = Invoice.model_validate(tx.update_invoice(invoice_id, {
                "uploaded_invoice_url": url,
                "uploaded_at": now_utc(),
                "status": WorkflowStatus.INVOICE_UPLOADED,
            }))

            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    current.model_dump(mode="json", include={"status", "uploaded_invoice_url", "uploaded_at"}),
                    updated.model_dump(mode="json", include={"status", "uploaded_invoice_url", "uploaded_at"}),
                ),
            )

            view = self._view(tx, updated, self.today())

        logger.info(f"Uploaded signed copy of invoice {updated.invoice_number} to {key}")
        self.event_bus.publish(InvoiceUploaded.create(updated))
        return view

    def _require_finalized(self, tx: StoreTransaction, invoice_id: UUID, for_update: bool = False) -> Invoice:
        row = tx.get_invoice(invoice_id, for_update=for_update)
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        invoice = Invoice.model_validate(row)
        if invoice.status != WorkflowStatus.FINALIZED:
            raise InvalidState(
                "Only finalized invoices can have a signed copy uploaded",
                current_status=invoice.status.value,
            )
        return invoice

    def render_document(self, invoice_id: UUID) -> bytes:
        """
        Render a finalized invoice through the document generator.

        Raises:
            InvalidState: Invoice is still a draft
            ValidationError: No document generator configured
        """
        if self.documents is None:
            raise ValidationError("Invoice document generation is not configured")

        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id)
            if row is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            invoice = Invoice.model_validate(row)
            if invoice.is_draft:
                raise InvalidState(
                    "Draft invoices cannot be rendered. Finalize it first.",
                    current_status=invoice.status.value,
                )

            client_row = tx.get_client(invoice.client_id)
            if client_row is None:
                raise NotFoundError(f"Client {invoice.client_id} not found")
            client = Client.model_validate(client_row)

            matters = [Matter.model_validate(r) for r in tx.get_matters(tx.list_matter_ids(invoice_id))]
            timesheets = [InvoiceTimesheetLink.model_validate(r) for r in tx.list_timesheet_links(invoice_id)]
            expenses = [InvoiceExpenseLink.model_validate(r) for r in tx.list_expense_links(invoice_id)]

        document = InvoiceDocument(
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            client_name=client.client_name,
            client_address=client.address,
            matters=[{"matter_id": m.matter_id, "matter_title": m.matter_title} for m in matters],
            timesheets=timesheets,
            expenses=expenses,
            subtotal=to_display(invoice.subtotal),
            discount_type=invoice.discount_type,
            discount_value=invoice.discount_value,
            discount_amount=to_display(invoice.discount_amount),
            final_amount=to_display(invoice.final_amount),
            invoice_currency=invoice.invoice_currency,
            user_exchange_rate=invoice.user_exchange_rate,
            amount_in_inr=to_display(invoice.amount_in_inr) if invoice.amount_in_inr is not None else None,
            description=invoice.description,
            notes=invoice.notes,
            billing_location=invoice.billing_location,
        )
        return self.documents.render(document)

    # -------------------------------------------------------------------------
    # Reads and delete
    # -------------------------------------------------------------------------

    def get_by_id(self, invoice_id: UUID) -> InvoiceView:
        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id)
            if row is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            return self._view(tx, Invoice.model_validate(row), self.today())

    def list_invoices(self, filters: InvoiceFilter | None = None) -> list[InvoiceView]:
        """Top-level invoices, newest invoice date first."""
        filters = filters or InvoiceFilter()
        if filters.start_date and filters.end_date and filters.end_date < filters.start_date:
            raise ValidationError("End date must not be before start date")

        today = self.today()
        with self.store.transaction() as tx:
            return [
                self._view(tx, Invoice.model_validate(row), today)
                for row in tx.list_invoices(filters)
            ]

    def delete(self, invoice_id: UUID) -> None:
        """
        Delete an invoice with its links and any split children.

        Raises:
            ConflictError: The invoice or one of its children has payments
            InvalidState: The invoice is a split child
        """
        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id, for_update=True)
            if row is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            invoice = Invoice.model_validate(row)

            # Children only go together with their parent
            if invoice.is_child:
                raise InvalidState(
                    f"Cannot delete split invoice {invoice.invoice_number}: "
                    f"delete its parent invoice instead",
                    current_status=invoice.status.value,
                )

            children = [Invoice.model_validate(r) for r in tx.list_children(invoice_id)]
            if tx.list_payments([invoice_id, *(c.id for c in children)]):
                raise ConflictError(
                    f"Cannot delete invoice {invoice.invoice_number}: payments have been recorded"
                )

            tx.delete_invoice(invoice_id)

            self.audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.DELETE,
                changes={
                    "deleted": invoice.model_dump(mode="json"),
                    "split_invoice_numbers": [c.invoice_number for c in children],
                },
            )

        logger.info(f"Deleted invoice {invoice.invoice_number}")

    def currency_breakdown(self, invoice_id: UUID) -> CurrencyBreakdown:
        with self.store.transaction() as tx:
            row = tx.get_invoice(invoice_id)
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return self.currency.currency_breakdown(Invoice.model_validate(row))
