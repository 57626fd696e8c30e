"""
Record store interface for the billing engine.

Services never talk to a database driver directly. They open a transaction
on an InvoiceStore and read/write plain row dicts through it; callers
model_validate the rows into domain models. Every method runs inside the
transaction that produced the StoreTransaction, so a failure anywhere in a
`with store.transaction()` block rolls back everything written in it.

Row shapes mirror the tables in db/schema.sql.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from typing import Any, Iterable
from uuid import UUID

from core.models import InvoiceFilter

Row = dict[str, Any]


class UniqueViolation(Exception):
    """A write hit a uniqueness constraint. Raised by store implementations."""

    def __init__(self, constraint: str):
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint}")


class StoreTransaction(ABC):
    """Operations available inside one atomic unit of work."""

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Row | None:
        """Invoice row, optionally locking it for the rest of the transaction."""

    @abstractmethod
    def get_invoice_by_number(self, invoice_number: str) -> Row | None:
        ...

    @abstractmethod
    def invoice_numbers_on(self, day: date) -> list[str]:
        """Numbers of every invoice dated on the given calendar day."""

    @abstractmethod
    def lock_number_scope(self, office_code: str, day: date) -> None:
        """Serialize number allocation for one office and day until commit."""

    @abstractmethod
    def insert_invoice(self, row: Row) -> Row:
        """Insert and return the stored row. Raises UniqueViolation on a taken number."""

    @abstractmethod
    def update_invoice(self, invoice_id: UUID, fields: Row) -> Row:
        ...

    @abstractmethod
    def delete_invoice(self, invoice_id: UUID) -> None:
        """Delete an invoice, its children and every link row that references them."""

    @abstractmethod
    def list_invoices(self, filters: InvoiceFilter) -> list[Row]:
        """Top-level invoices (no parent), newest invoice date first."""

    @abstractmethod
    def list_children(self, parent_id: UUID) -> list[Row]:
        """Child invoices of a split parent ordered by split sequence."""

    # -------------------------------------------------------------------------
    # Link rows
    # -------------------------------------------------------------------------

    @abstractmethod
    def list_matter_ids(self, invoice_id: UUID) -> list[int]:
        ...

    @abstractmethod
    def replace_matter_links(self, invoice_id: UUID, matter_ids: Iterable[int]) -> None:
        ...

    @abstractmethod
    def list_timesheet_links(self, invoice_id: UUID) -> list[Row]:
        ...

    @abstractmethod
    def replace_timesheet_links(self, invoice_id: UUID, links: Iterable[Row]) -> None:
        ...

    @abstractmethod
    def update_timesheet_link(self, invoice_id: UUID, timesheet_id: int, fields: Row) -> Row:
        ...

    @abstractmethod
    def find_invoiced_timesheets(
        self,
        timesheet_ids: list[int],
        exclude_invoice_id: UUID | None = None,
    ) -> list[Row]:
        """Existing links for these timesheets as {timesheet_id, invoice_id, invoice_number}."""

    @abstractmethod
    def list_expense_links(self, invoice_id: UUID) -> list[Row]:
        ...

    @abstractmethod
    def replace_expense_links(self, invoice_id: UUID, links: Iterable[Row]) -> None:
        ...

    # -------------------------------------------------------------------------
    # Partner shares and payments
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_partner_shares(self, rows: Iterable[Row]) -> None:
        ...

    @abstractmethod
    def list_partner_shares(self, invoice_id: UUID) -> list[Row]:
        ...

    @abstractmethod
    def insert_payment(self, row: Row) -> Row:
        ...

    @abstractmethod
    def list_payments(self, invoice_ids: list[UUID]) -> list[Row]:
        ...

    @abstractmethod
    def payments_between(self, start: date, end: date, top_level_only: bool = False) -> list[Row]:
        """Payments dated in [start, end], newest first, optionally only on invoices with no parent."""

    # -------------------------------------------------------------------------
    # Billing sources (read-only)
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_clients(self, client_ids: list[int]) -> list[Row]:
        ...

    @abstractmethod
    def get_matters(self, matter_ids: list[int]) -> list[Row]:
        ...

    @abstractmethod
    def get_timesheets(self, timesheet_ids: list[int]) -> list[Row]:
        ...

    @abstractmethod
    def get_expenses(self, expense_ids: list[int]) -> list[Row]:
        """Expenses with these IDs that are attached to a matter."""

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_audit_entry(self, row: Row) -> None:
        ...

    @abstractmethod
    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[Row]:
        """Entries for one entity, newest first."""

    def get_client(self, client_id: int) -> Row | None:
        rows = self.get_clients([client_id])
        return rows[0] if rows else None


class InvoiceStore(ABC):
    """Transactional record store."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """
        Open an atomic unit of work.

        Commits when the block exits normally and rolls back when it raises.
        """
