"""
Integration tests for PostgresInvoiceStore.

Runs the real services against PostgreSQL. Skipped unless
BILLING_TEST_DATABASE_URL points at a disposable database; the schema in
db/schema.sql is applied and every table truncated before each test.
"""

import os
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from api.app import build_services
from clients.postgres_client import PostgresClient
from core.models import FinalizeRequest, InvoiceCreate, PartnerShareInput, PaymentCreate, SplitTarget
from core.postgres_store import PostgresInvoiceStore

DATABASE_URL = os.getenv("BILLING_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DATABASE_URL, reason="BILLING_TEST_DATABASE_URL not set")

SCHEMA = Path(__file__).parent.parent.parent / "db" / "schema.sql"

TABLES = (
    "audit_log", "invoice_payments", "invoice_partner_shares", "invoice_expenses",
    "invoice_timesheets", "invoice_matters", "invoices",
    "onetime_expenses", "timesheets", "matters", "clients",
)


@pytest.fixture
def db():
    client = PostgresClient(DATABASE_URL)
    with client.transaction() as tx:
        tx.execute(SCHEMA.read_text())
        tx.execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
        tx.execute(
            "INSERT INTO clients (client_id, client_name, group_id) VALUES "
            "(1, 'Acme Ltd', 10), (2, 'Acme Holdings', 10)"
        )
        tx.execute(
            "INSERT INTO matters (matter_id, client_id, matter_title, currency) VALUES "
            "(100, 1, 'Acme v. Beta', 'INR')"
        )
        tx.execute(
            "INSERT INTO timesheets (timesheet_id, matter_id, billable_minutes, hourly_rate, calculated_amount) "
            "VALUES (1, 100, 60, 1000, 1000)"
        )
    yield client
    client.close()


@pytest.fixture
def pg_services(db):
    return build_services(PostgresInvoiceStore(db))


@pytest.fixture
def pg_invoice(as_test_user, pg_services):
    return pg_services["invoice"].create(InvoiceCreate(
        client_id=1,
        matter_ids=[100],
        invoice_date=date(2026, 1, 8),
        due_date=date(2099, 12, 31),
        invoice_amount=Decimal("1000"),
        description="Professional fees",
        billing_location="mumbai",
        timesheet_ids=[1],
    ))


class TestPostgresLifecycle:

    def test_create_snapshots_timesheets(self, db, pg_invoice):
        assert pg_invoice.invoice_number == "08012026-M"
        assert pg_invoice.subtotal == Decimal("1000.0000")
        assert db.execute_scalar(
            "SELECT billed_amount FROM invoice_timesheets WHERE invoice_id = %s", (pg_invoice.id,)
        ) == Decimal("1000.0000")

    def test_second_number_gets_suffix(self, pg_services, as_test_user):
        first = pg_services["invoice"].create(InvoiceCreate(
            client_id=1, matter_ids=[100], invoice_date=date(2026, 1, 8), due_date=date(2099, 12, 31),
            invoice_amount=Decimal("10"), description="a", billing_location="mumbai",
        ))
        second = pg_services["invoice"].create(InvoiceCreate(
            client_id=1, matter_ids=[100], invoice_date=date(2026, 1, 8), due_date=date(2099, 12, 31),
            invoice_amount=Decimal("10"), description="b", billing_location="mumbai",
        ))

        assert [first.invoice_number, second.invoice_number] == ["08012026-M", "08012026-M-A"]

    def test_split_and_pay(self, db, pg_services, pg_invoice, test_user_id):
        view = pg_services["invoice"].finalize(pg_invoice.id, FinalizeRequest(
            splits=[SplitTarget(client_id=1, percentage=Decimal("60")),
                    SplitTarget(client_id=2, percentage=Decimal("40"))],
            partner_shares=[PartnerShareInput(partner_user_id=test_user_id, percentage=Decimal("100"))],
        ))
        first_child = view.split_summary.splits[0].invoice_id

        pg_services["payment"].record(first_child, PaymentCreate(
            amount=Decimal("600"), payment_date=date(2026, 1, 20), payment_method="upi",
        ))

        parent = pg_services["invoice"].get_by_id(pg_invoice.id)
        assert parent.display_status == "partially_paid"
        assert parent.split_summary.total_paid == Decimal("600")
        assert db.execute_scalar("SELECT count(*) FROM invoice_partner_shares") == 2
        assert db.execute_scalar(
            "SELECT count(*) FROM audit_log WHERE entity_type = 'payment'"
        ) == 1
