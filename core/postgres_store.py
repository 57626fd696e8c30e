"""
PostgreSQL implementation of the billing record store.

Each store transaction pins one pooled connection through
PostgresClient.transaction(). Row dicts come back from RealDictCursor;
NUMERIC columns arrive as Decimal and JSONB exchange rates as a dict of
strings, which the pydantic models parse back into Decimal.
"""

import logging
from contextlib import contextmanager
from datetime import date
from enum import Enum
from typing import Any, Iterable, Iterator
from uuid import UUID

import psycopg2.errors
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, PostgresTransaction
from core.models import InvoiceFilter
from core.store import InvoiceStore, Row, StoreTransaction, UniqueViolation
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Columns that may appear in an invoice insert or update
_INVOICE_COLUMNS = {
    "id", "invoice_number", "client_id", "matter_id", "is_multi_matter",
    "invoice_date", "due_date", "description", "notes", "date_from", "date_to",
    "billing_location", "matter_currency", "invoice_currency", "exchange_rates",
    "subtotal", "discount_type", "discount_value", "discount_amount", "final_amount",
    "user_exchange_rate", "amount_in_inr", "status", "payment_status", "amount_paid",
    "parent_invoice_id", "is_split", "split_percentage", "split_sequence",
    "uploaded_invoice_url", "uploaded_at", "created_by", "created_at", "updated_at",
}

_TIMESHEET_LINK_COLUMNS = {"billed_minutes", "billed_amount", "hourly_rate", "source_currency"}


def _rates_json(rates: dict[str, Any] | None) -> Json:
    """Exchange rates are stored as entered, Decimal values as strings."""
    return Json({k: str(v) for k, v in (rates or {}).items()})


def _adapt_value(column: str, value: Any) -> Any:
    if column == "exchange_rates":
        return _rates_json(value)
    if isinstance(value, Enum):
        return value.value
    return value


class PostgresStoreTransaction(StoreTransaction):
    """Store operations bound to one open PostgreSQL transaction."""

    def __init__(self, tx: PostgresTransaction):
        self.tx = tx

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Row | None:
        lock = " FOR UPDATE" if for_update else ""
        return self.tx.execute_single(
            f"SELECT * FROM invoices WHERE id = %s{lock}",
            (invoice_id,)
        )

    def get_invoice_by_number(self, invoice_number: str) -> Row | None:
        return self.tx.execute_single(
            "SELECT * FROM invoices WHERE invoice_number = %s",
            (invoice_number,)
        )

    def invoice_numbers_on(self, day: date) -> list[str]:
        rows = self.tx.execute(
            "SELECT invoice_number FROM invoices WHERE invoice_date = %s",
            (day,)
        )
        return [row["invoice_number"] for row in rows]

    def lock_number_scope(self, office_code: str, day: date) -> None:
        # Released automatically at commit or rollback
        self.tx.execute_scalar(
            "SELECT pg_advisory_xact_lock(hashtext(%s))",
            (f"invoice_number:{office_code}:{day.isoformat()}",)
        )

    def insert_invoice(self, row: Row) -> Row:
        unknown = set(row) - _INVOICE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown invoice columns: {sorted(unknown)}")

        columns = list(row)
        placeholders = ", ".join(["%s"] * len(columns))
        params = tuple(_adapt_value(c, row[c]) for c in columns)

        try:
            return self.tx.execute(
                f"""
                INSERT INTO invoices ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING *
                """,
                params
            )[0]
        except psycopg2.errors.UniqueViolation as e:
            constraint = e.diag.constraint_name or "invoices_invoice_number_key"
            raise UniqueViolation(constraint) from e

    def update_invoice(self, invoice_id: UUID, fields: Row) -> Row:
        for field in fields:
            if field not in _INVOICE_COLUMNS:
                raise ValueError(f"Unknown invoice column: {field}")

        set_parts = []
        params = []
        for field, value in fields.items():
            set_parts.append(f"{field} = %s")
            params.append(_adapt_value(field, value))

        set_parts.append("updated_at = %s")
        params.append(now_utc())
        params.append(invoice_id)

        try:
            return self.tx.execute(
                f"""
                UPDATE invoices
                SET {', '.join(set_parts)}
                WHERE id = %s
                RETURNING *
                """,
                tuple(params)
            )[0]
        except psycopg2.errors.UniqueViolation as e:
            constraint = e.diag.constraint_name or "invoices_invoice_number_key"
            raise UniqueViolation(constraint) from e

    def delete_invoice(self, invoice_id: UUID) -> None:
        # Children and link rows go with it through ON DELETE CASCADE
        self.tx.execute("DELETE FROM invoices WHERE id = %s", (invoice_id,))

    def list_invoices(self, filters: InvoiceFilter) -> list[Row]:
        conditions = ["parent_invoice_id IS NULL"]
        params: list[Any] = []

        if filters.client_id is not None:
            conditions.append("client_id = %s")
            params.append(filters.client_id)
        if filters.matter_id is not None:
            conditions.append(
                "EXISTS (SELECT 1 FROM invoice_matters im "
                "WHERE im.invoice_id = invoices.id AND im.matter_id = %s)"
            )
            params.append(filters.matter_id)
        if filters.status is not None:
            conditions.append("status = %s")
            params.append(filters.status.value)
        if filters.start_date is not None:
            conditions.append("invoice_date >= %s")
            params.append(filters.start_date)
        if filters.end_date is not None:
            conditions.append("invoice_date <= %s")
            params.append(filters.end_date)

        params.append(filters.limit)

        return self.tx.execute(
            f"""
            SELECT * FROM invoices
            WHERE {' AND '.join(conditions)}
            ORDER BY invoice_date DESC, created_at DESC
            LIMIT %s
            """,
            tuple(params)
        )

    def list_children(self, parent_id: UUID) -> list[Row]:
        return self.tx.execute(
            """
            SELECT * FROM invoices
            WHERE parent_invoice_id = %s
            ORDER BY split_sequence
            """,
            (parent_id,)
        )

    # -------------------------------------------------------------------------
    # Link rows
    # -------------------------------------------------------------------------

    def list_matter_ids(self, invoice_id: UUID) -> list[int]:
        rows = self.tx.execute(
            "SELECT matter_id FROM invoice_matters WHERE invoice_id = %s ORDER BY created_at, matter_id",
            (invoice_id,)
        )
        return [row["matter_id"] for row in rows]

    def replace_matter_links(self, invoice_id: UUID, matter_ids: Iterable[int]) -> None:
        self.tx.execute("DELETE FROM invoice_matters WHERE invoice_id = %s", (invoice_id,))
        self.tx.execute_many(
            "INSERT INTO invoice_matters (invoice_id, matter_id) VALUES (%s, %s)",
            [(invoice_id, matter_id) for matter_id in matter_ids]
        )

    def list_timesheet_links(self, invoice_id: UUID) -> list[Row]:
        return self.tx.execute(
            """
            SELECT invoice_id, timesheet_id, billed_minutes, billed_amount,
                   hourly_rate, source_currency
            FROM invoice_timesheets
            WHERE invoice_id = %s
            ORDER BY timesheet_id
            """,
            (invoice_id,)
        )

    def replace_timesheet_links(self, invoice_id: UUID, links: Iterable[Row]) -> None:
        self.tx.execute("DELETE FROM invoice_timesheets WHERE invoice_id = %s", (invoice_id,))
        self.tx.execute_many(
            """
            INSERT INTO invoice_timesheets (
                invoice_id, timesheet_id, billed_minutes, billed_amount,
                hourly_rate, source_currency
            ) VALUES (%s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    invoice_id, link["timesheet_id"], link["billed_minutes"],
                    link["billed_amount"], link["hourly_rate"], link["source_currency"],
                )
                for link in links
            ]
        )

    def update_timesheet_link(self, invoice_id: UUID, timesheet_id: int, fields: Row) -> Row:
        for field in fields:
            if field not in _TIMESHEET_LINK_COLUMNS:
                raise ValueError(f"Unknown timesheet link column: {field}")

        set_parts = [f"{field} = %s" for field in fields]
        params = list(fields.values()) + [invoice_id, timesheet_id]

        row = self.tx.execute_single(
            f"""
            UPDATE invoice_timesheets
            SET {', '.join(set_parts)}
            WHERE invoice_id = %s AND timesheet_id = %s
            RETURNING invoice_id, timesheet_id, billed_minutes, billed_amount,
                      hourly_rate, source_currency
            """,
            tuple(params)
        )
        if row is None:
            raise LookupError(f"Timesheet {timesheet_id} is not linked to invoice {invoice_id}")
        return row

    def find_invoiced_timesheets(
        self,
        timesheet_ids: list[int],
        exclude_invoice_id: UUID | None = None,
    ) -> list[Row]:
        if not timesheet_ids:
            return []

        query = """
            SELECT it.timesheet_id, it.invoice_id, i.invoice_number
            FROM invoice_timesheets it
            JOIN invoices i ON i.id = it.invoice_id
            WHERE it.timesheet_id = ANY(%s)
        """
        params: list[Any] = [list(timesheet_ids)]
        if exclude_invoice_id is not None:
            query += " AND it.invoice_id <> %s"
            params.append(exclude_invoice_id)

        return self.tx.execute(query + " ORDER BY i.invoice_number", tuple(params))

    def list_expense_links(self, invoice_id: UUID) -> list[Row]:
        return self.tx.execute(
            """
            SELECT invoice_id, expense_id, billed_amount, billed_currency,
                   original_amount, original_currency, exchange_rate
            FROM invoice_expenses
            WHERE invoice_id = %s
            ORDER BY expense_id
            """,
            (invoice_id,)
        )

    def replace_expense_links(self, invoice_id: UUID, links: Iterable[Row]) -> None:
        self.tx.execute("DELETE FROM invoice_expenses WHERE invoice_id = %s", (invoice_id,))
        self.tx.execute_many(
            """
            INSERT INTO invoice_expenses (
                invoice_id, expense_id, billed_amount, billed_currency,
                original_amount, original_currency, exchange_rate
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    invoice_id, link["expense_id"], link["billed_amount"], link["billed_currency"],
                    link["original_amount"], link["original_currency"], link["exchange_rate"],
                )
                for link in links
            ]
        )

    # -------------------------------------------------------------------------
    # Partner shares and payments
    # -------------------------------------------------------------------------

    def insert_partner_shares(self, rows: Iterable[Row]) -> None:
        self.tx.execute_many(
            """
            INSERT INTO invoice_partner_shares (id, invoice_id, partner_user_id, percentage, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            [
                (r["id"], r["invoice_id"], r["partner_user_id"], r["percentage"], r["created_at"])
                for r in rows
            ]
        )

    def list_partner_shares(self, invoice_id: UUID) -> list[Row]:
        return self.tx.execute(
            """
            SELECT * FROM invoice_partner_shares
            WHERE invoice_id = %s
            ORDER BY percentage DESC, partner_user_id
            """,
            (invoice_id,)
        )

    def insert_payment(self, row: Row) -> Row:
        return self.tx.execute(
            """
            INSERT INTO invoice_payments (
                id, invoice_id, amount, payment_date, payment_method,
                transaction_ref, notes, recorded_by, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                row["id"], row["invoice_id"], row["amount"], row["payment_date"],
                row["payment_method"], row.get("transaction_ref"), row.get("notes"),
                row["recorded_by"], row["created_at"],
            )
        )[0]

    def list_payments(self, invoice_ids: list[UUID]) -> list[Row]:
        if not invoice_ids:
            return []
        return self.tx.execute(
            """
            SELECT * FROM invoice_payments
            WHERE invoice_id = ANY(%s::uuid[])
            ORDER BY payment_date DESC, created_at DESC
            """,
            (list(invoice_ids),)
        )

    def payments_between(self, start: date, end: date, top_level_only: bool = False) -> list[Row]:
        parent_filter = " AND i.parent_invoice_id IS NULL" if top_level_only else ""
        return self.tx.execute(
            f"""
            SELECT p.*
            FROM invoice_payments p
            JOIN invoices i ON i.id = p.invoice_id
            WHERE p.payment_date >= %s AND p.payment_date <= %s{parent_filter}
            ORDER BY p.payment_date DESC, p.created_at DESC
            """,
            (start, end)
        )

    # -------------------------------------------------------------------------
    # Billing sources (read-only)
    # -------------------------------------------------------------------------

    def get_clients(self, client_ids: list[int]) -> list[Row]:
        if not client_ids:
            return []
        return self.tx.execute(
            "SELECT client_id, client_name, group_id, address FROM clients WHERE client_id = ANY(%s)",
            (list(client_ids),)
        )

    def get_matters(self, matter_ids: list[int]) -> list[Row]:
        if not matter_ids:
            return []
        return self.tx.execute(
            """
            SELECT matter_id, client_id, matter_title, currency
            FROM matters
            WHERE matter_id = ANY(%s)
            ORDER BY matter_id
            """,
            (list(matter_ids),)
        )

    def get_timesheets(self, timesheet_ids: list[int]) -> list[Row]:
        if not timesheet_ids:
            return []
        return self.tx.execute(
            """
            SELECT timesheet_id, matter_id, billable_minutes, hourly_rate,
                   calculated_amount, currency
            FROM timesheets
            WHERE timesheet_id = ANY(%s)
            ORDER BY timesheet_id
            """,
            (list(timesheet_ids),)
        )

    def get_expenses(self, expense_ids: list[int]) -> list[Row]:
        if not expense_ids:
            return []
        return self.tx.execute(
            """
            SELECT expense_id, matter_id, amount, currency
            FROM onetime_expenses
            WHERE expense_id = ANY(%s) AND matter_id IS NOT NULL
            ORDER BY expense_id
            """,
            (list(expense_ids),)
        )

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def insert_audit_entry(self, row: Row) -> None:
        self.tx.execute(
            """
            INSERT INTO audit_log (id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                row["id"], row["user_id"], row["entity_type"], row["entity_id"],
                row["action"], Json(row["changes"]), row["created_at"],
            )
        )

    def list_audit_entries(self, entity_type: str, entity_id: UUID) -> list[Row]:
        return self.tx.execute(
            """
            SELECT id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )


class PostgresInvoiceStore(InvoiceStore):
    """InvoiceStore backed by PostgreSQL."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def transaction(self) -> Iterator[PostgresStoreTransaction]:
        with self.postgres.transaction() as tx:
            yield PostgresStoreTransaction(tx)
